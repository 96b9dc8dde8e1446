"""
OmniFlow CRM - Service Settings

Platform-wide dynamic settings.
Collection: settings (one doc per key)

Available settings:
- automation_quotas: per-plan overrides of the email automation quotas
"""

import logging
from typing import Optional, Dict, Any
from config import db, now_iso

logger = logging.getLogger("settings")


async def get_setting(key: str) -> Optional[Dict]:
    """Fetch a setting by key"""
    return await db.settings.find_one({"key": key}, {"_id": 0})


async def upsert_setting(key: str, data: Dict[str, Any], updated_by: str = "system") -> Dict:
    """Create or update a setting"""
    data["key"] = key
    data["updated_at"] = now_iso()
    data["updated_by"] = updated_by

    existing = await db.settings.find_one({"key": key})
    if existing:
        await db.settings.update_one({"key": key}, {"$set": data})
    else:
        data["created_at"] = now_iso()
        await db.settings.insert_one(data)

    return await db.settings.find_one({"key": key}, {"_id": 0})


# ---- Automation quota helpers ----

async def get_automation_quota_overrides() -> Dict[str, Dict[str, int]]:
    """
    Returns {plan_id: {max_emails_per_day, max_emails_per_hour, max_failures_before_stop}}
    for plans that have an override. Empty dict when nothing is configured.
    """
    doc = await get_setting("automation_quotas")
    if not doc:
        return {}
    return doc.get("plans", {}) or {}
