"""
OmniFlow CRM - Companies (tenants)

Creation, plan assignment and third-party API keys.
Secrets are encrypted on write and decrypted only when a sender needs them.
"""

import logging
import uuid
from typing import Optional, Dict, Any

from config import db, now_iso
from models.company import API_KEY_PROVIDERS
from services.encryption import encrypt_api_key, decrypt_api_key, mask_secret
from services.plans import get_plan, DEFAULT_PLAN_ID
from services.ai_credits import build_credit_balance, get_credit_balance

logger = logging.getLogger("companies")


def initial_quota_tracking() -> Dict[str, Any]:
    now = now_iso()
    return {
        "emails_sent_today": 0,
        "emails_sent_this_hour": 0,
        "last_daily_reset": now,
        "last_hourly_reset": now,
        "consecutive_failures": 0,
        "circuit_breaker_tripped_at": None,
        "last_email_sent_at": None,
    }


async def create_company(name: str, owner_id: str, plan_id: str = DEFAULT_PLAN_ID) -> Dict:
    plan = await get_plan(plan_id)
    if not plan:
        raise ValueError(f"Unknown plan: {plan_id}")

    company = {
        "id": str(uuid.uuid4()),
        "name": name,
        "owner_id": owner_id,
        "plan_id": plan_id,
        "status": "active",
        "api_keys": {},
        "quota_tracking": initial_quota_tracking(),
        "ai_credit_balance": build_credit_balance(plan),
        "byok": {"enabled": False, "api_key": ""},
        "created_at": now_iso(),
        "updated_at": now_iso(),
    }
    await db.companies.insert_one(company)
    company.pop("_id", None)
    logger.info(f"[COMPANY] Created {name} ({company['id']}) on {plan_id}")
    return company


async def get_company(company_id: str) -> Optional[Dict]:
    return await db.companies.find_one({"id": company_id}, {"_id": 0})


async def update_company(company_id: str, data: Dict[str, Any]) -> Optional[Dict]:
    update = {k: v for k, v in data.items() if v is not None}
    if update:
        update["updated_at"] = now_iso()
        await db.companies.update_one({"id": company_id}, {"$set": update})
    return await get_company(company_id)


async def set_company_plan(company_id: str, plan_id: str) -> Dict:
    plan = await get_plan(plan_id)
    if not plan:
        return {"success": False, "error": f"Unknown plan: {plan_id}"}

    company = await get_company(company_id)
    if not company:
        return {"success": False, "error": "Company not found"}

    await db.companies.update_one(
        {"id": company_id},
        {"$set": {"plan_id": plan_id, "updated_at": now_iso()}}
    )
    # Re-sync allocations with the new plan
    balance = await get_credit_balance(company_id)
    return {"success": True, "old_plan_id": company.get("plan_id"), "plan_id": plan_id, "ai_credit_balance": balance}


# ════════════════════════════════════════════════════════════════════════
# API KEYS
# ════════════════════════════════════════════════════════════════════════

async def update_api_keys(company_id: str, provider: str, values: Dict[str, Any]) -> Dict:
    """
    Store one provider's credentials. Secret fields are encrypted.
    Unknown fields are ignored, empty values clear the field.
    """
    provider_def = API_KEY_PROVIDERS.get(provider)
    if not provider_def:
        return {"success": False, "error": f"Unknown provider: {provider}"}

    updates = {}
    for field in provider_def["fields"]:
        if field not in values:
            continue
        value = values[field]
        if field in provider_def["secrets"]:
            value = encrypt_api_key(str(value)) if value else ""
        updates[f"api_keys.{provider}.{field}"] = value

    if not updates:
        return {"success": False, "error": "No known fields provided"}

    updates["updated_at"] = now_iso()
    await db.companies.update_one({"id": company_id}, {"$set": updates})
    return {"success": True, "provider": provider, "fields": sorted(k.split(".")[-1] for k in updates if k != "updated_at")}


async def remove_api_keys(company_id: str, provider: str) -> Dict:
    if provider not in API_KEY_PROVIDERS:
        return {"success": False, "error": f"Unknown provider: {provider}"}
    await db.companies.update_one(
        {"id": company_id},
        {"$unset": {f"api_keys.{provider}": ""}, "$set": {"updated_at": now_iso()}}
    )
    return {"success": True}


def get_api_keys(company: Dict, provider: str) -> Dict[str, Any]:
    """Decrypted copy of one provider's credentials ({} when absent)."""
    provider_def = API_KEY_PROVIDERS.get(provider)
    stored = (company.get("api_keys") or {}).get(provider) or {}
    if not provider_def or not stored:
        return {}

    result = {}
    for field in provider_def["fields"]:
        value = stored.get(field, "")
        if field in provider_def["secrets"]:
            value = decrypt_api_key(value)
        result[field] = value
    return result


def mask_api_keys(company: Dict) -> Dict[str, Dict[str, Any]]:
    """Credentials for display: secrets masked, plain fields as stored."""
    masked = {}
    for provider, provider_def in API_KEY_PROVIDERS.items():
        keys = get_api_keys(company, provider)
        if not keys:
            continue
        masked[provider] = {
            field: (mask_secret(value) if field in provider_def["secrets"] else value)
            for field, value in keys.items()
        }
        masked[provider]["configured"] = is_provider_configured(company, provider)
    return masked


def is_provider_configured(company: Dict, provider: str) -> bool:
    keys = get_api_keys(company, provider)
    if not keys:
        return False
    if provider == "smtp":
        return bool(keys.get("host") and keys.get("username") and keys.get("password"))
    if provider == "twilio":
        return bool(keys.get("account_sid") and keys.get("auth_token"))
    if provider == "meta_whatsapp":
        return bool(keys.get("access_token") and keys.get("phone_number_id"))
    if provider == "gupshup":
        return bool(keys.get("api_key") and keys.get("app_name"))
    secret = API_KEY_PROVIDERS[provider]["secrets"][0]
    return bool(keys.get(secret))


def public_company(company: Dict) -> Dict:
    """Company document safe to return over the API."""
    data = {k: v for k, v in company.items() if k not in ("api_keys", "byok")}
    byok = company.get("byok") or {}
    data["byok"] = {"enabled": bool(byok.get("enabled")), "api_key": mask_secret(decrypt_api_key(byok.get("api_key")))}
    data["api_keys"] = mask_api_keys(company)
    return data
