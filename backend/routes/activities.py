"""
OmniFlow CRM - Routes Activities (contact timeline)
Append-only: manual entries (call, meeting, note, task) and reads.
"""

from fastapi import APIRouter, HTTPException, Depends
from typing import Optional

from models.activity import ActivityCreate, ACTIVITY_TYPES
from services.activity_logger import log_activity, get_recent_activities
from services.leads import get_lead
from services.permissions import require_permission

router = APIRouter(prefix="/activities", tags=["Activities"])


@router.post("")
async def post_activity(data: ActivityCreate, user: dict = Depends(require_permission("activities.create"))):
    company_id = user["scope_company_id"]
    if not await get_lead(company_id, data.contact_id):
        raise HTTPException(status_code=404, detail="Contact not found")

    activity = await log_activity(
        company_id,
        data.contact_id,
        data.type,
        data.content,
        subject=data.subject,
        metadata=data.metadata,
        created_by=user.get("id", "system"),
        occurred_at=data.occurred_at,
    )
    return {"success": True, "activity": activity}


@router.get("/recent")
async def recent_activities(
    limit: int = 20,
    type: Optional[str] = None,
    user: dict = Depends(require_permission("activities.view"))
):
    if type and type not in ACTIVITY_TYPES:
        raise HTTPException(status_code=400, detail=f"Invalid activity type: {type}")
    activities = await get_recent_activities(user["scope_company_id"], limit=min(limit, 200), activity_type=type)
    return {"activities": activities, "count": len(activities)}
