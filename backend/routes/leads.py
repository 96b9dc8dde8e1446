"""
OmniFlow CRM - Routes Leads / Contacts
"""

from fastapi import APIRouter, HTTPException, Depends, UploadFile, File, Response
from typing import Optional

from models.lead import LeadCreate, LeadUpdate, LeadStatusUpdate
from services.activity_logger import get_contact_activities
from services.event_logger import log_event
from services.leads import (
    create_lead,
    get_lead,
    list_leads,
    update_lead,
    update_lead_status,
    delete_lead,
    find_lead_by_email,
    filter_leads,
    paginate_leads,
    import_leads_csv,
    export_leads_csv,
)
from services.permissions import require_permission

router = APIRouter(prefix="/leads", tags=["Leads"])

MAX_CSV_SIZE = 5 * 1024 * 1024


@router.get("")
async def get_leads(
    search: Optional[str] = None,
    status: Optional[str] = None,
    source: Optional[str] = None,
    assigned_to: Optional[str] = None,
    page: int = 1,
    page_size: int = 25,
    user: dict = Depends(require_permission("leads.view"))
):
    """Search + filter + pagination over the company's leads"""
    leads = await list_leads(user["scope_company_id"])
    filtered = filter_leads(leads, search=search, status=status, source=source, assigned_to=assigned_to)
    return paginate_leads(filtered, page=page, page_size=min(page_size, 200))


@router.post("")
async def post_lead(data: LeadCreate, user: dict = Depends(require_permission("leads.create"))):
    company_id = user["scope_company_id"]
    if await find_lead_by_email(company_id, data.email):
        raise HTTPException(status_code=409, detail=f"A lead with email {data.email} already exists")
    lead = await create_lead(company_id, data.model_dump())
    return {"success": True, "lead": lead}


@router.get("/export")
async def export_leads(user: dict = Depends(require_permission("leads.view"))):
    leads = await list_leads(user["scope_company_id"], limit=100000)
    return Response(
        content=export_leads_csv(leads).encode("utf-8"),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": 'attachment; filename="leads.csv"'}
    )


@router.post("/import")
async def import_leads(file: UploadFile = File(...), user: dict = Depends(require_permission("leads.import"))):
    if not (file.filename or "").lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Only .csv files are accepted")

    content = await file.read()
    if len(content) > MAX_CSV_SIZE:
        raise HTTPException(status_code=400, detail="File too large. Maximum: 5 MB")

    company_id = user["scope_company_id"]
    result = await import_leads_csv(
        company_id, content.decode("utf-8", errors="replace"), user=user.get("email", "system")
    )

    await log_event(
        action="leads_import",
        entity_type="company",
        entity_id=company_id,
        user=user.get("email", "system"),
        company_id=company_id,
        details={k: result[k] for k in ("imported", "updated", "skipped")},
    )
    return result


@router.get("/{lead_id}")
async def get_single_lead(lead_id: str, user: dict = Depends(require_permission("leads.view"))):
    lead = await get_lead(user["scope_company_id"], lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return {"lead": lead}


@router.put("/{lead_id}")
async def put_lead(lead_id: str, data: LeadUpdate, user: dict = Depends(require_permission("leads.edit"))):
    company_id = user["scope_company_id"]
    if not await get_lead(company_id, lead_id):
        raise HTTPException(status_code=404, detail="Lead not found")

    if data.email:
        other = await find_lead_by_email(company_id, data.email)
        if other and other["id"] != lead_id:
            raise HTTPException(status_code=409, detail=f"A lead with email {data.email} already exists")

    lead = await update_lead(company_id, lead_id, data.model_dump(exclude_none=True))
    return {"success": True, "lead": lead}


@router.put("/{lead_id}/status")
async def put_lead_status(lead_id: str, data: LeadStatusUpdate, user: dict = Depends(require_permission("leads.edit"))):
    result = await update_lead_status(
        user["scope_company_id"], lead_id, data.status, user=user.get("email", "system")
    )
    if not result["success"]:
        raise HTTPException(status_code=404 if result["error"] == "Lead not found" else 400, detail=result["error"])
    return result


@router.delete("/{lead_id}")
async def remove_lead(lead_id: str, user: dict = Depends(require_permission("leads.delete"))):
    company_id = user["scope_company_id"]
    if not await delete_lead(company_id, lead_id):
        raise HTTPException(status_code=404, detail="Lead not found")

    await log_event(
        action="lead_delete",
        entity_type="lead",
        entity_id=lead_id,
        user=user.get("email", "system"),
        company_id=company_id,
    )
    return {"success": True}


@router.get("/{lead_id}/activities")
async def lead_activities(lead_id: str, limit: int = 50, user: dict = Depends(require_permission("activities.view"))):
    company_id = user["scope_company_id"]
    if not await get_lead(company_id, lead_id):
        raise HTTPException(status_code=404, detail="Lead not found")
    activities = await get_contact_activities(company_id, lead_id, limit=min(limit, 500))
    return {"activities": activities, "count": len(activities)}
