"""
OmniFlow CRM - Permission System
Granular permission keys + role presets + FastAPI dependencies.
Permissions are the source of truth. Roles are presets only.
"""

import logging
from typing import Dict
from fastapi import Depends, HTTPException, Request

logger = logging.getLogger("permissions")

# ════════════════════════════════════════════════════════════════════════
# ALL PERMISSION KEYS
# ════════════════════════════════════════════════════════════════════════

ALL_PERMISSION_KEYS = [
    "dashboard.view",

    "leads.view",
    "leads.create",
    "leads.edit",
    "leads.delete",
    "leads.import",

    "deals.view",
    "deals.manage",

    "activities.view",
    "activities.create",

    "automations.view",
    "automations.manage",

    "messaging.send",
    "campaigns.view",

    "ai.generate",

    "templates.view",
    "templates.manage",

    "cards.manage",

    "settings.access",
    "users.manage",

    "audit.view",
]

_ALL = {k: True for k in ALL_PERMISSION_KEYS}

# ════════════════════════════════════════════════════════════════════════
# ROLE PRESETS (defaults when creating a user with a role)
# ════════════════════════════════════════════════════════════════════════

ROLE_PRESETS: Dict[str, Dict[str, bool]] = {
    "super_admin": dict(_ALL),

    "admin": {**_ALL, "audit.view": False},

    "manager": {
        **_ALL,
        "leads.delete": False,
        "settings.access": False, "users.manage": False,
        "audit.view": False,
    },

    "agent": {
        "dashboard.view": True,
        "leads.view": True, "leads.create": True, "leads.edit": True,
        "leads.delete": False, "leads.import": False,
        "deals.view": True, "deals.manage": True,
        "activities.view": True, "activities.create": True,
        "automations.view": True, "automations.manage": False,
        "messaging.send": True, "campaigns.view": True,
        "ai.generate": True,
        "templates.view": True, "templates.manage": False,
        "cards.manage": True,
        "settings.access": False, "users.manage": False,
        "audit.view": False,
    },

    "viewer": {
        **{k: False for k in ALL_PERMISSION_KEYS},
        "dashboard.view": True,
        "leads.view": True,
        "deals.view": True,
        "activities.view": True,
        "automations.view": True,
        "campaigns.view": True,
        "templates.view": True,
    },
}

VALID_ROLES = list(ROLE_PRESETS.keys())


def get_preset_permissions(role: str) -> Dict[str, bool]:
    """Returns the default permissions for a role."""
    return dict(ROLE_PRESETS.get(role, ROLE_PRESETS["viewer"]))


# ════════════════════════════════════════════════════════════════════════
# PERMISSION CHECK HELPERS
# ════════════════════════════════════════════════════════════════════════

def user_has_permission(user: dict, key: str) -> bool:
    """Check if user has a specific permission."""
    if user.get("role") == "super_admin":
        return True
    perms = user.get("permissions", {})
    return perms.get(key, False) is True


def get_company_scope(user: dict, request: Request = None) -> str:
    """
    Resolve the tenant for the current request.
    - super_admin: reads X-Company-Scope header, defaults to own company
    - others: always forced to user.company_id
    """
    own = user.get("company_id", "")
    if user.get("role") == "super_admin" and request is not None:
        scope = request.headers.get("x-company-scope", "").strip()
        if scope:
            return scope
    return own


# ════════════════════════════════════════════════════════════════════════
# FASTAPI DEPENDENCIES
# ════════════════════════════════════════════════════════════════════════

def require_permission(permission_key: str):
    """
    FastAPI dependency factory.
    Usage: user: dict = Depends(require_permission("leads.view"))
    The returned user carries `scope_company_id` (tenant for this request).
    """
    from routes.auth import get_current_user

    async def _check(request: Request, user: dict = Depends(get_current_user)):
        if not user_has_permission(user, permission_key):
            logger.warning(
                f"[PERMISSION_DENIED] user={user.get('email')} "
                f"key={permission_key} role={user.get('role')}"
            )
            raise HTTPException(
                status_code=403,
                detail=f"Permission required: {permission_key}"
            )
        user["scope_company_id"] = get_company_scope(user, request)
        return user

    return _check


def require_super_admin():
    """FastAPI dependency: only super_admin allowed."""
    from routes.auth import get_current_user

    async def _check(user: dict = Depends(get_current_user)):
        if user.get("role") != "super_admin":
            raise HTTPException(status_code=403, detail="Super admin access required")
        return user

    return _check
