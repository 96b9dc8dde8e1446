"""
OmniFlow CRM - Routes Auth
Signup / Login / Logout / Session / User CRUD with granular permissions.
"""

from fastapi import APIRouter, HTTPException, Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from datetime import datetime, timezone, timedelta
import uuid

from models.auth import UserLogin, UserCreate, UserUpdate, SignupRequest
from config import db, hash_password, generate_token, now_iso
from services.companies import create_company
from services.event_logger import log_event
from services.permissions import (
    get_preset_permissions,
    VALID_ROLES,
    ALL_PERMISSION_KEYS,
    ROLE_PRESETS,
    get_company_scope,
    require_permission,
)
from services.plans import get_plan

router = APIRouter(prefix="/auth", tags=["Auth"])
security = HTTPBearer(auto_error=False)

SESSION_DAYS = 7


# ==================== HELPERS ====================

async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """Resolve the logged-in user from the bearer token."""
    if not credentials:
        raise HTTPException(status_code=401, detail="Not authenticated")

    session = await db.sessions.find_one({
        "token": credentials.credentials,
        "expires_at": {"$gt": now_iso()}
    })
    if not session:
        raise HTTPException(status_code=401, detail="Session expired")

    user = await db.users.find_one({"id": session["user_id"]}, {"_id": 0, "password": 0})
    if not user:
        raise HTTPException(status_code=401, detail="User not found")

    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")

    if not user.get("permissions"):
        user["permissions"] = get_preset_permissions(user.get("role", "viewer"))

    return user


async def _open_session(user: dict) -> str:
    token = generate_token()
    await db.sessions.insert_one({
        "token": token,
        "user_id": user["id"],
        "company_id": user.get("company_id", ""),
        "created_at": now_iso(),
        "expires_at": (datetime.now(timezone.utc) + timedelta(days=SESSION_DAYS)).isoformat(),
    })
    return token


def _session_user(user: dict) -> dict:
    return {
        "id": user["id"],
        "email": user["email"],
        "name": user.get("name", ""),
        "company_id": user.get("company_id", ""),
        "role": user.get("role", "viewer"),
        "permissions": user.get("permissions") or get_preset_permissions(user.get("role", "viewer")),
    }


# ==================== SIGNUP / LOGIN / LOGOUT ====================

@router.post("/signup")
async def signup(data: SignupRequest):
    """Create a company on the free plan and its first admin."""
    email = data.email.lower().strip()
    if await db.users.find_one({"email": email}):
        raise HTTPException(status_code=409, detail="Email already registered")

    user_id = str(uuid.uuid4())
    company = await create_company(data.company_name, owner_id=user_id)

    user = {
        "id": user_id,
        "email": email,
        "password": hash_password(data.password),
        "name": data.name,
        "company_id": company["id"],
        "role": "admin",
        "permissions": get_preset_permissions("admin"),
        "is_active": True,
        "created_at": now_iso(),
    }
    await db.users.insert_one(user)

    await log_event(
        action="signup",
        entity_type="company",
        entity_id=company["id"],
        user=email,
        company_id=company["id"],
        details={"plan_id": company["plan_id"]},
    )

    token = await _open_session(user)
    return {"token": token, "user": _session_user(user), "company": {"id": company["id"], "name": company["name"]}}


@router.post("/login")
async def login(data: UserLogin):
    user = await db.users.find_one({"email": data.email.lower().strip()}, {"_id": 0})

    if not user or user.get("password") != hash_password(data.password):
        raise HTTPException(status_code=401, detail="Invalid email or password")

    if not user.get("is_active", True):
        raise HTTPException(status_code=403, detail="Account disabled")

    token = await _open_session(user)
    return {"token": token, "user": _session_user(user)}


@router.post("/logout")
async def logout(
    user: dict = Depends(get_current_user),
    credentials: HTTPAuthorizationCredentials = Depends(security)
):
    if credentials:
        await db.sessions.delete_one({"token": credentials.credentials})
    return {"success": True}


@router.get("/me")
async def get_me(user: dict = Depends(get_current_user)):
    user["permissions"] = user.get("permissions") or get_preset_permissions(user.get("role", "viewer"))
    return user


# ==================== USER CRUD (users.manage, company scoped) ====================

@router.get("/users")
async def list_users(request: Request, user: dict = Depends(require_permission("users.manage"))):
    company_id = get_company_scope(user, request)
    users = await db.users.find({"company_id": company_id}, {"_id": 0, "password": 0}).to_list(500)
    return {"users": users}


@router.post("/users")
async def create_user(data: UserCreate, user: dict = Depends(require_permission("users.manage"))):
    company_id = user["scope_company_id"]

    if await db.users.find_one({"email": data.email.lower().strip()}):
        raise HTTPException(status_code=409, detail="Email already registered")

    company = await db.companies.find_one({"id": company_id}, {"_id": 0, "plan_id": 1})
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    plan = await get_plan(company.get("plan_id")) or {}
    user_count = await db.users.count_documents({"company_id": company_id, "is_active": True})
    if user_count >= plan.get("max_users", 1):
        raise HTTPException(
            status_code=402,
            detail=f"User limit reached for your plan ({plan.get('max_users', 1)} users)"
        )

    new_user = {
        "id": str(uuid.uuid4()),
        "email": data.email.lower().strip(),
        "password": hash_password(data.password),
        "name": data.name,
        "company_id": company_id,
        "role": data.role,
        "permissions": data.permissions or get_preset_permissions(data.role),
        "is_active": True,
        "created_at": now_iso(),
        "created_by": user.get("id"),
    }
    await db.users.insert_one(new_user)

    await log_event(
        action="create_user",
        entity_type="user",
        entity_id=new_user["id"],
        user=user.get("email", "system"),
        company_id=company_id,
        details={"role": data.role, "email": new_user["email"]},
    )

    new_user.pop("password", None)
    new_user.pop("_id", None)
    return {"success": True, "user": new_user}


@router.put("/users/{user_id}")
async def update_user(user_id: str, data: UserUpdate, user: dict = Depends(require_permission("users.manage"))):
    target = await db.users.find_one({"id": user_id, "company_id": user["scope_company_id"]})
    if not target:
        raise HTTPException(status_code=404, detail="User not found")

    if target.get("role") == "super_admin" and user.get("role") != "super_admin":
        raise HTTPException(status_code=403, detail="Cannot modify a super_admin")

    update_data = {}
    if data.name is not None:
        update_data["name"] = data.name
    if data.role is not None:
        update_data["role"] = data.role
        if data.permissions is None:
            update_data["permissions"] = get_preset_permissions(data.role)
    if data.permissions is not None:
        update_data["permissions"] = data.permissions
    if data.is_active is not None:
        update_data["is_active"] = data.is_active
    update_data["updated_at"] = now_iso()

    await db.users.update_one({"id": user_id}, {"$set": update_data})

    await log_event(
        action="update_user",
        entity_type="user",
        entity_id=user_id,
        user=user.get("email", "system"),
        company_id=user["scope_company_id"],
        details={k: v for k, v in update_data.items() if k not in ("updated_at", "permissions")},
    )

    updated = await db.users.find_one({"id": user_id}, {"_id": 0, "password": 0})
    return {"success": True, "user": updated}


@router.delete("/users/{user_id}")
async def deactivate_user(user_id: str, user: dict = Depends(require_permission("users.manage"))):
    target = await db.users.find_one({"id": user_id, "company_id": user["scope_company_id"]})
    if not target:
        raise HTTPException(status_code=404, detail="User not found")

    if user_id == user.get("id"):
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")

    if target.get("role") == "super_admin" and user.get("role") != "super_admin":
        raise HTTPException(status_code=403, detail="Cannot deactivate a super_admin")

    await db.users.update_one({"id": user_id}, {"$set": {"is_active": False, "deactivated_at": now_iso()}})
    await db.sessions.delete_many({"user_id": user_id})

    await log_event(
        action="deactivate_user",
        entity_type="user",
        entity_id=user_id,
        user=user.get("email", "system"),
        company_id=user["scope_company_id"],
    )
    return {"success": True}


# ==================== PERMISSION INTROSPECTION ====================

@router.get("/permission-keys")
async def list_permission_keys(user: dict = Depends(require_permission("users.manage"))):
    """All permission keys and role presets (user management UI)."""
    return {"keys": ALL_PERMISSION_KEYS, "presets": ROLE_PRESETS, "roles": VALID_ROLES}
