"""
OmniFlow CRM - Dashboard analytics
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import List, Dict, Any

from config import db
from models.lead import LEAD_STATUSES
from models.activity import ACTIVITY_TYPES
from services.ai_credits import get_credit_balance
from services.automations import count_states_by_status
from services.deals import calculate_deal_stats

logger = logging.getLogger("analytics")


def format_metric_change(current: float, previous: float) -> Dict[str, Any]:
    if not previous:
        if current > 0:
            return {"text": "Getting started", "is_positive": True}
        return {"text": "No activity yet", "is_positive": True}

    change = round((current - previous) / previous * 100)
    if change > 0:
        return {"text": f"+{change}% from last period", "is_positive": True}
    if change < 0:
        return {"text": f"{change}% from last period", "is_positive": False}
    return {"text": "No change", "is_positive": True}


def usage_percent(used: float, limit: float) -> float:
    if not limit or limit <= 0:
        return 0
    return round(used / limit * 100, 1)


def lead_source_breakdown(leads: List[Dict]) -> List[Dict[str, Any]]:
    counts: Dict[str, int] = {}
    for lead in leads:
        source = lead.get("source") or "Unknown"
        counts[source] = counts.get(source, 0) + 1
    total = len(leads)
    breakdown = [
        {"source": source, "count": count, "percentage": round(count / total * 100, 1) if total else 0}
        for source, count in counts.items()
    ]
    breakdown.sort(key=lambda x: x["count"], reverse=True)
    return breakdown


async def get_dashboard_stats(company_id: str) -> Dict[str, Any]:
    now = datetime.now(timezone.utc)
    since = (now - timedelta(days=30)).isoformat()
    previous_since = (now - timedelta(days=60)).isoformat()

    leads = await db.leads.find(
        {"company_id": company_id}, {"_id": 0, "status": 1, "source": 1, "created_at": 1}
    ).to_list(100000)

    by_status = {status: 0 for status in LEAD_STATUSES}
    for lead in leads:
        if lead.get("status") in by_status:
            by_status[lead["status"]] += 1

    new_leads = sum(1 for lead in leads if (lead.get("created_at") or "") >= since)
    previous_new_leads = sum(1 for lead in leads if previous_since <= (lead.get("created_at") or "") < since)

    deals = await db.deals.find({"company_id": company_id}, {"_id": 0}).to_list(100000)

    activities = await db.activities.find(
        {"company_id": company_id, "occurred_at": {"$gte": since}}, {"_id": 0, "type": 1}
    ).to_list(100000)
    activity_counts = {t: 0 for t in ACTIVITY_TYPES}
    for activity in activities:
        activity_counts[activity["type"]] = activity_counts.get(activity["type"], 0) + 1

    balance = await get_credit_balance(company_id) or {}
    lifetime_pool = balance.get("lifetime_allocated", 0) > 0
    credits_used = balance.get("lifetime_used", 0) if lifetime_pool else balance.get("monthly_used", 0)
    credits_limit = balance.get("lifetime_allocated", 0) if lifetime_pool else balance.get("monthly_allocated", 0)

    cards = await db.digital_cards.find({"company_id": company_id}, {"_id": 0, "analytics": 1}).to_list(1000)

    return {
        "leads": {
            "total": len(leads),
            "by_status": by_status,
            "new_last_30_days": new_leads,
            "change": format_metric_change(new_leads, previous_new_leads),
            "sources": lead_source_breakdown(leads),
        },
        "deals": calculate_deal_stats(deals),
        "activities": {
            "last_30_days": len(activities),
            "by_type": activity_counts,
        },
        "automations": await count_states_by_status(company_id),
        "ai_credits": {
            "used": credits_used,
            "limit": credits_limit,
            "pool": "lifetime" if lifetime_pool else "monthly",
            "percent_used": usage_percent(credits_used, credits_limit),
        },
        "digital_cards": {
            "total": len(cards),
            "views": sum((c.get("analytics") or {}).get("views", 0) for c in cards),
            "leads_generated": sum((c.get("analytics") or {}).get("leads_generated", 0) for c in cards),
        },
    }
