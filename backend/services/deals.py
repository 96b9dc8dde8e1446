"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  OmniFlow CRM - Deals pipeline                                               ║
║                                                                              ║
║  RULES:                                                                      ║
║  - status drives probability (DEFAULT_PROBABILITIES) unless given explicitly ║
║  - won / lost sets actual_close_date                                         ║
║  - won / lost writes the linked contact status (Won / Lost)                  ║
║  - every create / effective update is written to the contact timeline       ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import uuid
from typing import Optional, List, Dict, Any

from config import db, now_iso
from models.deal import DEFAULT_PROBABILITIES, CLOSED_DEAL_STATUSES, DEAL_STATUSES
from services.activity_logger import log_activity

logger = logging.getLogger("deals")

CONTACT_STATUS_FOR_DEAL = {"won": "Won", "lost": "Lost"}


def _fmt_amount(value) -> str:
    value = float(value or 0)
    return str(int(value)) if value == int(value) else f"{value:.2f}"


async def create_deal(company_id: str, data: Dict[str, Any], created_by: str = "system") -> Dict:
    contact = await db.leads.find_one(
        {"id": data.get("contact_id"), "company_id": company_id},
        {"_id": 0, "id": 1, "name": 1}
    )
    if not contact:
        return {"success": False, "error": "Contact not found"}

    status = data.get("status") or "proposal"
    probability = data.get("probability")
    if probability is None:
        probability = DEFAULT_PROBABILITIES[status]

    now = now_iso()
    deal = {
        "id": str(uuid.uuid4()),
        "company_id": company_id,
        "contact_id": contact["id"],
        "contact_name": contact.get("name", ""),
        "name": data["name"],
        "amount": float(data.get("amount") or 0),
        "currency": data.get("currency") or "USD",
        "status": status,
        "probability": probability,
        "expected_close_date": data.get("expected_close_date"),
        "actual_close_date": now if status in CLOSED_DEAL_STATUSES else None,
        "notes": data.get("notes") or "",
        "created_by": created_by,
        "created_at": now,
        "updated_at": now,
    }
    await db.deals.insert_one(deal)
    deal.pop("_id", None)

    await log_activity(
        company_id,
        contact["id"],
        "deal_created",
        f'Deal "{deal["name"]}" created with value {deal["currency"]} {_fmt_amount(deal["amount"])}',
        metadata={"deal_id": deal["id"], "status": status, "amount": deal["amount"]},
        created_by=created_by,
    )

    if status in CONTACT_STATUS_FOR_DEAL:
        await _sync_contact_status(company_id, contact["id"], CONTACT_STATUS_FOR_DEAL[status])

    return {"success": True, "deal": deal}


async def get_deal(company_id: str, deal_id: str) -> Optional[Dict]:
    return await db.deals.find_one({"id": deal_id, "company_id": company_id}, {"_id": 0})


async def list_deals(company_id: str, status: str = None, contact_id: str = None, limit: int = 1000) -> List[Dict]:
    query = {"company_id": company_id}
    if status:
        query["status"] = status
    if contact_id:
        query["contact_id"] = contact_id
    return await db.deals.find(query, {"_id": 0}).sort("created_at", -1).to_list(limit)


async def _sync_contact_status(company_id: str, contact_id: str, status: str) -> bool:
    result = await db.leads.update_one(
        {"id": contact_id, "company_id": company_id},
        {"$set": {"status": status, "updated_at": now_iso()}}
    )
    return result.matched_count > 0


async def update_deal(company_id: str, deal_id: str, data: Dict[str, Any], updated_by: str = "system") -> Dict:
    deal = await get_deal(company_id, deal_id)
    if not deal:
        return {"success": False, "error": "Deal not found"}

    data = {k: v for k, v in data.items() if v is not None}
    update: Dict[str, Any] = {}
    changes: List[str] = []

    for field in ("name", "currency", "expected_close_date", "notes"):
        if field in data and data[field] != deal.get(field):
            update[field] = data[field]

    if "amount" in data and float(data["amount"]) != float(deal.get("amount") or 0):
        update["amount"] = float(data["amount"])
        changes.append(f"amount changed from {_fmt_amount(deal.get('amount'))} to {_fmt_amount(data['amount'])}")

    new_status = data.get("status")
    status_changed = new_status is not None and new_status != deal.get("status")

    if status_changed:
        update["status"] = new_status
        changes.append(f'status changed from "{deal.get("status")}" to "{new_status}"')
        update["probability"] = data.get("probability", DEFAULT_PROBABILITIES[new_status])
        if new_status in CLOSED_DEAL_STATUSES:
            update["actual_close_date"] = now_iso()
        else:
            update["actual_close_date"] = None
    elif "probability" in data and data["probability"] != deal.get("probability"):
        update["probability"] = data["probability"]

    if "probability" in update and update["probability"] != deal.get("probability") and not status_changed:
        changes.append(f"probability changed from {deal.get('probability')}% to {update['probability']}%")

    if not update:
        return {"success": True, "deal": deal, "changed": False}

    update["updated_at"] = now_iso()
    await db.deals.update_one({"id": deal_id, "company_id": company_id}, {"$set": update})

    if status_changed and new_status in CONTACT_STATUS_FOR_DEAL:
        contact_status = CONTACT_STATUS_FOR_DEAL[new_status]
        if await _sync_contact_status(company_id, deal["contact_id"], contact_status):
            changes.append(f"contact status updated to {contact_status}")

    if changes:
        await log_activity(
            company_id,
            deal["contact_id"],
            "deal_updated",
            f'Deal "{update.get("name", deal["name"])}" updated: ' + ", ".join(changes),
            metadata={"deal_id": deal_id, "changes": changes},
            created_by=updated_by,
        )

    return {"success": True, "deal": await get_deal(company_id, deal_id), "changed": True, "changes": changes}


async def delete_deal(company_id: str, deal_id: str) -> bool:
    result = await db.deals.delete_one({"id": deal_id, "company_id": company_id})
    return result.deleted_count > 0


# ════════════════════════════════════════════════════════════════════════
# STATS (pure)
# ════════════════════════════════════════════════════════════════════════

def calculate_deal_stats(deals: List[Dict]) -> Dict[str, Any]:
    open_deals = [d for d in deals if d.get("status") not in CLOSED_DEAL_STATUSES]
    won = [d for d in deals if d.get("status") == "won"]
    lost = [d for d in deals if d.get("status") == "lost"]

    total_value = sum(float(d.get("amount") or 0) for d in deals)
    pipeline_value = sum(float(d.get("amount") or 0) for d in open_deals)
    won_value = sum(float(d.get("amount") or 0) for d in won)
    weighted = sum(float(d.get("amount") or 0) * (d.get("probability") or 0) / 100 for d in open_deals)

    closed = len(won) + len(lost)

    return {
        "total_deals": len(deals),
        "open_deals": len(open_deals),
        "won_deals": len(won),
        "lost_deals": len(lost),
        "total_pipeline_value": pipeline_value,
        "won_value": won_value,
        "average_deal_size": total_value / len(deals) if deals else 0,
        "average_probability": (
            sum(d.get("probability") or 0 for d in open_deals) / len(open_deals) if open_deals else 0
        ),
        "conversion_rate": (len(won) / closed * 100) if closed else 0,
        "weighted_pipeline_value": weighted,
    }


def group_deals_by_status(deals: List[Dict]) -> Dict[str, Dict[str, Any]]:
    pipeline = {s: {"deals": [], "count": 0, "value": 0.0} for s in DEAL_STATUSES}
    for deal in deals:
        column = pipeline.get(deal.get("status"))
        if column is None:
            continue
        column["deals"].append(deal)
        column["count"] += 1
        column["value"] += float(deal.get("amount") or 0)
    return pipeline
