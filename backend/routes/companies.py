"""
OmniFlow CRM - Routes Companies
Current company settings, provider API keys, BYOK, plans.
Plan changes and bonus credits are super_admin only.
"""

from fastapi import APIRouter, HTTPException, Depends

from config import db
from models.company import CompanyUpdate, ApiKeysUpdate, PlanAssignment, ByokUpdate, BonusCredits, API_KEY_PROVIDERS
from services.ai_credits import add_bonus_credits, get_credit_balance
from services.companies import (
    get_company,
    update_company,
    set_company_plan,
    update_api_keys,
    remove_api_keys,
    mask_api_keys,
    public_company,
)
from services.encryption import encrypt_api_key
from services.event_logger import log_event
from services.permissions import require_permission, require_super_admin
from services.plans import get_plan, list_plans

router = APIRouter(prefix="/companies", tags=["Companies"])


async def _company_or_404(company_id: str) -> dict:
    company = await get_company(company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    return company


# ==================== PLANS ====================

@router.get("/plans")
async def get_plans():
    """Public plan catalog"""
    return {"plans": await list_plans()}


# ==================== CURRENT COMPANY ====================

@router.get("/current")
async def get_current_company(user: dict = Depends(require_permission("dashboard.view"))):
    company = await _company_or_404(user["scope_company_id"])
    data = public_company(company)
    data["plan"] = await get_plan(company.get("plan_id"))
    return {"company": data}


@router.put("/current")
async def update_current_company(data: CompanyUpdate, user: dict = Depends(require_permission("settings.access"))):
    company_id = user["scope_company_id"]
    await _company_or_404(company_id)

    payload = data.model_dump(exclude_none=True)
    if "status" in payload and user.get("role") != "super_admin":
        raise HTTPException(status_code=403, detail="Only a super admin can change the company status")

    company = await update_company(company_id, payload)
    if "status" in payload:
        await log_event(
            action="company_status_change",
            entity_type="company",
            entity_id=company_id,
            user=user.get("email", "system"),
            company_id=company_id,
            details={"status": payload["status"]},
        )
    return {"success": True, "company": public_company(company)}


@router.get("/current/api-keys")
async def get_api_keys(user: dict = Depends(require_permission("settings.access"))):
    company = await _company_or_404(user["scope_company_id"])
    return {"api_keys": mask_api_keys(company), "providers": list(API_KEY_PROVIDERS.keys())}


@router.put("/current/api-keys/{provider}")
async def set_api_keys(provider: str, data: ApiKeysUpdate, user: dict = Depends(require_permission("settings.access"))):
    company_id = user["scope_company_id"]
    await _company_or_404(company_id)

    result = await update_api_keys(company_id, provider, data.values)
    if not result["success"]:
        raise HTTPException(status_code=400, detail=result["error"])

    # Never log the values themselves
    await log_event(
        action="api_keys_update",
        entity_type="company",
        entity_id=company_id,
        user=user.get("email", "system"),
        company_id=company_id,
        details={"provider": provider, "fields": result["fields"]},
    )
    company = await get_company(company_id)
    return {"success": True, "api_keys": mask_api_keys(company)}


@router.delete("/current/api-keys/{provider}")
async def delete_api_keys(provider: str, user: dict = Depends(require_permission("settings.access"))):
    company_id = user["scope_company_id"]
    result = await remove_api_keys(company_id, provider)
    if not result["success"]:
        raise HTTPException(status_code=400, detail=result["error"])

    await log_event(
        action="api_keys_remove",
        entity_type="company",
        entity_id=company_id,
        user=user.get("email", "system"),
        company_id=company_id,
        details={"provider": provider},
    )
    return {"success": True}


@router.put("/current/byok")
async def set_byok(data: ByokUpdate, user: dict = Depends(require_permission("settings.access"))):
    """Bring your own OpenAI key: AI calls are no longer charged against credits."""
    company_id = user["scope_company_id"]
    company = await _company_or_404(company_id)

    if data.enabled:
        plan = await get_plan(company.get("plan_id")) or {}
        if not plan.get("allow_byok"):
            raise HTTPException(status_code=403, detail="Your plan does not allow using your own API key")
        if not data.api_key:
            raise HTTPException(status_code=400, detail="api_key is required to enable BYOK")

    byok = {"enabled": data.enabled, "api_key": encrypt_api_key(data.api_key) if data.enabled else ""}
    await db.companies.update_one({"id": company_id}, {"$set": {"byok": byok}})

    await log_event(
        action="byok_update",
        entity_type="company",
        entity_id=company_id,
        user=user.get("email", "system"),
        company_id=company_id,
        details={"enabled": data.enabled},
    )
    return {"success": True, "enabled": data.enabled}


# ==================== SUPER ADMIN ====================

@router.get("")
async def list_companies(user: dict = Depends(require_super_admin())):
    companies = await db.companies.find({}, {"_id": 0}).sort("created_at", -1).to_list(1000)
    return {"companies": [public_company(c) for c in companies], "count": len(companies)}


@router.put("/{company_id}/plan")
async def change_plan(company_id: str, data: PlanAssignment, user: dict = Depends(require_super_admin())):
    result = await set_company_plan(company_id, data.plan_id)
    if not result["success"]:
        status = 404 if result["error"] == "Company not found" else 400
        raise HTTPException(status_code=status, detail=result["error"])

    await log_event(
        action="plan_change",
        entity_type="company",
        entity_id=company_id,
        user=user.get("email", "system"),
        company_id=company_id,
        details={"old_value": result["old_plan_id"], "new_value": data.plan_id},
    )
    return result


@router.post("/{company_id}/bonus-credits")
async def grant_bonus_credits(company_id: str, data: BonusCredits, user: dict = Depends(require_super_admin())):
    await _company_or_404(company_id)
    result = await add_bonus_credits(company_id, data.credits, data.type)
    if not result["success"]:
        raise HTTPException(status_code=400, detail=result["error"])

    await log_event(
        action="bonus_credits",
        entity_type="company",
        entity_id=company_id,
        user=user.get("email", "system"),
        company_id=company_id,
        details={"credits": data.credits, "type": data.type},
    )
    return {"success": True, "ai_credit_balance": await get_credit_balance(company_id)}
