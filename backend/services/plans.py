"""
OmniFlow CRM - Plans

Plan catalog (collection: plans), digital card limits and
email automation quotas per plan.
"""

import logging
import math
from typing import Optional, Dict, List
from config import db, now_iso
from services.settings import get_automation_quota_overrides

logger = logging.getLogger("plans")

DEFAULT_PLAN_ID = "plan_free"

DEFAULT_PLANS: List[Dict] = [
    {
        "id": "plan_free",
        "name": "Free",
        "description": "Get started with the essentials",
        "price_monthly_usd": 0,
        "max_users": 1,
        "ai_credits_per_month": 0,
        "ai_lifetime_credits": 20,
        "ai_monthly_credits": 0,
        "allow_byok": False,
        "digital_cards_per_user": 0,
        "max_digital_cards": 1,
    },
    {
        "id": "plan_starter",
        "name": "Starter",
        "description": "For small teams",
        "price_monthly_usd": 29,
        "max_users": 3,
        "ai_credits_per_month": 2000,
        "ai_lifetime_credits": 0,
        "ai_monthly_credits": 2000,
        "allow_byok": False,
        "digital_cards_per_user": 1,
    },
    {
        "id": "plan_pro",
        "name": "Pro",
        "description": "For growing businesses",
        "price_monthly_usd": 79,
        "max_users": 10,
        "ai_credits_per_month": 10000,
        "ai_lifetime_credits": 0,
        "ai_monthly_credits": 10000,
        "allow_byok": True,
        "digital_cards_per_user": 2,
    },
    {
        "id": "plan_enterprise",
        "name": "Enterprise",
        "description": "Unlimited scale",
        "price_monthly_usd": 199,
        "max_users": 50,
        "ai_credits_per_month": 50000,
        "ai_lifetime_credits": 0,
        "ai_monthly_credits": 50000,
        "allow_byok": True,
        "digital_cards_per_user": 5,
        "max_digital_cards_cap": 200,
    },
]

# ════════════════════════════════════════════════════════════════════════
# EMAIL AUTOMATION QUOTAS
# ════════════════════════════════════════════════════════════════════════

PLAN_QUOTAS: Dict[str, Dict[str, int]] = {
    "plan_free": {"max_emails_per_day": 100, "max_emails_per_hour": 20, "max_failures_before_stop": 5},
    "plan_starter": {"max_emails_per_day": 1000, "max_emails_per_hour": 100, "max_failures_before_stop": 10},
    "plan_pro": {"max_emails_per_day": 5000, "max_emails_per_hour": 500, "max_failures_before_stop": 20},
    "plan_enterprise": {"max_emails_per_day": 20000, "max_emails_per_hour": 2000, "max_failures_before_stop": 50},
}

DEFAULT_QUOTAS = PLAN_QUOTAS["plan_free"]


async def seed_default_plans():
    """Insert missing catalog plans. Existing plans are left as edited."""
    created = 0
    for plan in DEFAULT_PLANS:
        existing = await db.plans.find_one({"id": plan["id"]})
        if not existing:
            await db.plans.insert_one({**plan, "created_at": now_iso()})
            created += 1
    if created:
        logger.info(f"[PLANS] Seeded {created} default plans")
    return created


async def get_plan(plan_id: str) -> Optional[Dict]:
    plan = await db.plans.find_one({"id": plan_id}, {"_id": 0})
    if plan:
        return plan
    # Catalog not seeded yet (fresh DB / tests)
    for p in DEFAULT_PLANS:
        if p["id"] == plan_id:
            return dict(p)
    return None


async def list_plans() -> List[Dict]:
    plans = await db.plans.find({}, {"_id": 0}).sort("price_monthly_usd", 1).to_list(50)
    return plans or [dict(p) for p in DEFAULT_PLANS]


def get_plan_monthly_credits(plan: Dict) -> int:
    """ai_monthly_credits, falling back to the older ai_credits_per_month."""
    value = plan.get("ai_monthly_credits")
    if value is None:
        value = plan.get("ai_credits_per_month")
    return int(value or 0)


def calculate_digital_card_limit(plan: Dict, user_count: int) -> int:
    """
    Free plan: fixed limit (does not scale with users).
    Paid plans: users * cards_per_user, capped by max_digital_cards_cap.
    """
    per_user = plan.get("digital_cards_per_user") or 0
    if plan.get("id") == "plan_free" or per_user == 0:
        return plan.get("max_digital_cards") or 1

    calculated = user_count * per_user
    cap = plan.get("max_digital_cards_cap") or math.inf
    return int(min(calculated, cap))


async def get_quotas_for_plan(plan_id: str) -> Dict[str, int]:
    overrides = await get_automation_quota_overrides()
    if plan_id in overrides:
        return {**PLAN_QUOTAS.get(plan_id, DEFAULT_QUOTAS), **overrides[plan_id]}
    quotas = PLAN_QUOTAS.get(plan_id)
    if quotas:
        return dict(quotas)
    logger.warning(f"[PLANS] Unknown plan {plan_id}, using default quotas")
    return dict(DEFAULT_QUOTAS)
