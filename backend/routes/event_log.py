"""
OmniFlow CRM - Routes Event Log (audit trail)
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from typing import Optional
from config import db
from services.permissions import require_permission

router = APIRouter(prefix="/event-log", tags=["EventLog"])


def _tenant_filter(current_user: dict, company_id: Optional[str]) -> dict:
    """super_admin sees every tenant (optionally one), others only their own"""
    if current_user.get("role") == "super_admin":
        return {"company_id": company_id} if company_id else {}
    return {"company_id": current_user["scope_company_id"]}


@router.get("")
async def list_events(
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    company_id: Optional[str] = None,
    user: Optional[str] = Query(None, alias="user_filter"),
    search: Optional[str] = None,
    limit: int = 100,
    skip: int = 0,
    current_user: dict = Depends(require_permission("audit.view"))
):
    """Events with filters, newest first"""
    query = _tenant_filter(current_user, company_id)
    if action:
        query["action"] = action
    if entity_type:
        query["entity_type"] = entity_type
    if entity_id:
        query["entity_id"] = entity_id
    if user:
        query["user"] = {"$regex": user, "$options": "i"}
    if search:
        query["$or"] = [
            {"action": {"$regex": search, "$options": "i"}},
            {"details.provider": {"$regex": search, "$options": "i"}},
            {"user": {"$regex": search, "$options": "i"}}
        ]

    limit = min(limit, 500)
    events = await db.event_log.find(
        query, {"_id": 0}
    ).sort("created_at", -1).skip(skip).limit(limit).to_list(limit)

    total = await db.event_log.count_documents(query)

    return {"events": events, "count": len(events), "total": total}


@router.get("/actions")
async def list_action_types(
    current_user: dict = Depends(require_permission("audit.view"))
):
    """Distinct action names in the log"""
    actions = await db.event_log.distinct("action", _tenant_filter(current_user, None))
    return {"actions": sorted(actions)}


@router.get("/{event_id}")
async def get_event(
    event_id: str,
    current_user: dict = Depends(require_permission("audit.view"))
):
    event = await db.event_log.find_one({"id": event_id, **_tenant_filter(current_user, None)}, {"_id": 0})
    if not event:
        raise HTTPException(status_code=404, detail="Event not found")
    return event
