"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  OmniFlow CRM - AI credit balance                                            ║
║                                                                              ║
║  Dual pool:                                                                  ║
║  - lifetime: one-time credits (free plan), never refills                     ║
║  - monthly: renewable credits (paid plans), reset when the month changes     ║
║                                                                              ║
║  RULES:                                                                      ║
║  - lifetime pool is authoritative whenever lifetime_allocated > 0            ║
║  - allocations follow the plan (+ bonus), usage is preserved                 ║
║  - BYOK companies bypass the balance entirely                                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from typing import Optional, Dict

from config import db, now_iso, current_month
from services.plans import get_plan, get_plan_monthly_credits
from services.ai_cost import (
    calculate_credits_consumed,
    calculate_text_generation_cost,
    calculate_image_generation_cost,
    calculate_tts_cost,
)

logger = logging.getLogger("ai_credits")


class CreditLimitError(Exception):
    """Raised when a company has no credits left for an AI operation."""

    def __init__(self, reason: str, check: Optional[Dict] = None):
        super().__init__(reason)
        self.reason = reason
        self.check = check or {}


def build_credit_balance(plan: Dict) -> Dict:
    return {
        "lifetime_allocated": int(plan.get("ai_lifetime_credits") or 0),
        "lifetime_used": 0,
        "monthly_allocated": get_plan_monthly_credits(plan),
        "monthly_used": 0,
        "bonus_lifetime": 0,
        "bonus_monthly": 0,
        "current_month": current_month(),
        "last_reset_at": now_iso(),
    }


def uses_own_api_key(company: Dict) -> bool:
    byok = company.get("byok") or {}
    return bool(byok.get("enabled") and byok.get("api_key"))


async def initialize_credit_balance(company_id: str, plan: Dict) -> Dict:
    balance = build_credit_balance(plan)
    await db.companies.update_one({"id": company_id}, {"$set": {"ai_credit_balance": balance}})
    return balance


async def get_credit_balance(company_id: str) -> Optional[Dict]:
    """
    Get or create the balance for a company.
    Allocations are re-synced with the current plan (plus bonus), usage is kept.
    """
    company = await db.companies.find_one({"id": company_id}, {"_id": 0})
    if not company:
        return None

    plan = await get_plan(company.get("plan_id"))
    if not plan:
        return None

    balance = company.get("ai_credit_balance")
    if not balance:
        return await initialize_credit_balance(company_id, plan)

    expected_lifetime = int(plan.get("ai_lifetime_credits") or 0) + int(balance.get("bonus_lifetime", 0))
    expected_monthly = get_plan_monthly_credits(plan) + int(balance.get("bonus_monthly", 0))

    if (balance.get("lifetime_allocated") != expected_lifetime
            or balance.get("monthly_allocated") != expected_monthly):
        balance["lifetime_allocated"] = expected_lifetime
        balance["monthly_allocated"] = expected_monthly
        await db.companies.update_one(
            {"id": company_id},
            {"$set": {
                "ai_credit_balance.lifetime_allocated": expected_lifetime,
                "ai_credit_balance.monthly_allocated": expected_monthly,
            }}
        )

    return balance


async def reset_monthly_credits(company_id: str) -> None:
    await db.companies.update_one(
        {"id": company_id},
        {"$set": {
            "ai_credit_balance.monthly_used": 0,
            "ai_credit_balance.current_month": current_month(),
            "ai_credit_balance.last_reset_at": now_iso(),
        }}
    )


async def check_credits(company_id: str, credits_required: int = 1) -> Dict:
    """
    Returns {available, reason?, lifetime_remaining, monthly_remaining, unlimited?}
    """
    company = await db.companies.find_one({"id": company_id}, {"_id": 0})
    if not company:
        return {"available": False, "reason": "Company not found"}

    if uses_own_api_key(company):
        return {"available": True, "unlimited": True, "reason": "Using own API key - unlimited"}

    balance = await get_credit_balance(company_id)
    if not balance:
        return {"available": False, "reason": "Credit balance not found"}

    if balance.get("current_month") != current_month():
        await reset_monthly_credits(company_id)
        balance["monthly_used"] = 0
        balance["current_month"] = current_month()

    if balance["lifetime_allocated"] > 0:
        lifetime_remaining = balance["lifetime_allocated"] - balance.get("lifetime_used", 0)
        if lifetime_remaining >= credits_required:
            return {"available": True, "lifetime_remaining": lifetime_remaining, "monthly_remaining": 0}
        return {
            "available": False,
            "reason": f"All {balance['lifetime_allocated']} free credits used. Upgrade for more!",
            "lifetime_remaining": 0,
            "monthly_remaining": 0,
        }

    monthly_remaining = balance["monthly_allocated"] - balance.get("monthly_used", 0)
    if monthly_remaining >= credits_required:
        return {"available": True, "monthly_remaining": monthly_remaining, "lifetime_remaining": 0}
    return {
        "available": False,
        "reason": f"Monthly credit limit reached ({balance['monthly_allocated']}). Resets next month.",
        "monthly_remaining": 0,
        "lifetime_remaining": 0,
    }


async def deduct_credits(company_id: str, credits_used: int) -> Dict:
    balance = await get_credit_balance(company_id)
    if not balance:
        return {"success": False, "error": "Credit balance not found"}

    if balance["lifetime_allocated"] > 0:
        await db.companies.update_one(
            {"id": company_id},
            {"$inc": {"ai_credit_balance.lifetime_used": credits_used}}
        )
    else:
        await db.companies.update_one(
            {"id": company_id},
            {"$inc": {"ai_credit_balance.monthly_used": credits_used}}
        )
    return {"success": True}


async def add_bonus_credits(company_id: str, credits: int, credit_type: str = "lifetime") -> Dict:
    balance = await get_credit_balance(company_id)
    if not balance:
        return {"success": False, "error": "Credit balance not found"}

    pool = "lifetime" if credit_type == "lifetime" else "monthly"
    await db.companies.update_one(
        {"id": company_id},
        {"$inc": {
            f"ai_credit_balance.bonus_{pool}": credits,
            f"ai_credit_balance.{pool}_allocated": credits,
        }}
    )
    return {"success": True}


async def consume_credits(company_id: str, operation_type: str, user_id: str = "system",
                          metadata: Optional[Dict] = None, credits: Optional[int] = None) -> int:
    """
    Check + deduct for one operation. Raises CreditLimitError when the
    balance is insufficient. BYOK companies are recorded but never charged.
    Returns the credits charged (0 for BYOK).
    """
    required = credits if credits is not None else calculate_credits_consumed(operation_type, metadata=metadata)
    check = await check_credits(company_id, required)
    if not check["available"]:
        raise CreditLimitError(check.get("reason", "Insufficient credits"), check)

    own_key = bool(check.get("unlimited"))
    if not own_key:
        await deduct_credits(company_id, required)

    await record_ai_usage(company_id, user_id, operation_type, required,
                          metadata=metadata, own_key=own_key)
    return 0 if own_key else required


async def record_ai_usage(company_id: str, user_id: str, operation_type: str, credits: int,
                          metadata: Optional[Dict] = None, own_key: bool = False) -> Dict:
    metadata = metadata or {}
    if operation_type == "image_generation":
        cost = calculate_image_generation_cost(metadata.get("images") or 1, metadata.get("model", "imagen-4"))
    elif operation_type == "text_to_speech":
        cost = calculate_tts_cost(metadata.get("characters") or 0)
    else:
        cost = calculate_text_generation_cost(metadata.get("input_tokens") or 0, metadata.get("output_tokens") or 0)

    record = {
        "id": str(uuid.uuid4()),
        "company_id": company_id,
        "user_id": user_id,
        "operation_type": operation_type,
        "credits_used": 0 if own_key else credits,
        "own_api_key": own_key,
        "raw_cost": cost["raw_cost"],
        "platform_cost": cost["platform_cost"],
        "metadata": metadata,
        "month": current_month(),
        "created_at": now_iso(),
    }
    await db.ai_usage.insert_one(record)
    record.pop("_id", None)
    return record


async def reset_all_monthly_credits() -> int:
    """Monthly job: reset monthly usage for every company still on a previous month."""
    month = current_month()
    companies = await db.companies.find(
        {"ai_credit_balance": {"$exists": True}, "ai_credit_balance.current_month": {"$ne": month}},
        {"_id": 0, "id": 1}
    ).to_list(10000)
    for company in companies:
        await reset_monthly_credits(company["id"])
    if companies:
        logger.info(f"[AI_CREDITS] Monthly reset for {len(companies)} companies ({month})")
    return len(companies)
