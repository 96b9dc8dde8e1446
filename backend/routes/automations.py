"""
OmniFlow CRM - Routes Email Automations
Sequences, email lists, list contacts, CSV contact upload.
"""

from fastapi import APIRouter, HTTPException, Depends, UploadFile, File
from typing import Optional

from models.automation import (
    AutomationCreate,
    AutomationUpdate,
    EmailListCreate,
    EmailListLink,
    EmailContactCreate,
    EmailContactUpdate,
    STATE_STATUSES,
)
from services.automations import (
    AutomationConfigError,
    create_automation,
    get_automation,
    list_automations,
    update_automation,
    delete_automation,
    activate_automation,
    deactivate_automation,
    get_automation_states,
    count_states_by_status,
    create_list,
    get_list,
    list_lists,
    link_list,
    delete_list,
    add_contact,
    list_contacts,
    get_contact,
    update_contact,
    delete_contact,
    import_contacts_csv,
)
from services.event_logger import log_event
from services.permissions import require_permission

router = APIRouter(prefix="/automations", tags=["Automations"])

MAX_CSV_SIZE = 5 * 1024 * 1024


# ==================== LISTS ====================
# Declared before /{automation_id} so "lists" is not read as an id

@router.get("/lists")
async def get_lists(user: dict = Depends(require_permission("automations.view"))):
    lists = await list_lists(user["scope_company_id"])
    return {"lists": lists, "count": len(lists)}


@router.post("/lists")
async def post_list(data: EmailListCreate, user: dict = Depends(require_permission("automations.manage"))):
    result = await create_list(user["scope_company_id"], data.model_dump())
    if not result["success"]:
        raise HTTPException(status_code=404, detail=result["error"])
    return result


@router.get("/lists/{list_id}")
async def get_single_list(list_id: str, user: dict = Depends(require_permission("automations.view"))):
    email_list = await get_list(user["scope_company_id"], list_id)
    if not email_list:
        raise HTTPException(status_code=404, detail="List not found")
    return {"list": email_list}


@router.put("/lists/{list_id}/link")
async def put_list_link(list_id: str, data: EmailListLink, user: dict = Depends(require_permission("automations.manage"))):
    """Link the list to an automation, or unlink with automation_id=null"""
    result = await link_list(user["scope_company_id"], list_id, data.automation_id)
    if not result["success"]:
        raise HTTPException(status_code=404, detail=result["error"])
    return result


@router.delete("/lists/{list_id}")
async def remove_list(list_id: str, user: dict = Depends(require_permission("automations.manage"))):
    if not await delete_list(user["scope_company_id"], list_id):
        raise HTTPException(status_code=404, detail="List not found")
    return {"success": True}


@router.get("/lists/{list_id}/contacts")
async def get_list_contacts(
    list_id: str,
    status: Optional[str] = None,
    user: dict = Depends(require_permission("automations.view"))
):
    company_id = user["scope_company_id"]
    if not await get_list(company_id, list_id):
        raise HTTPException(status_code=404, detail="List not found")
    contacts = await list_contacts(company_id, list_id, status=status)
    return {"contacts": contacts, "count": len(contacts)}


@router.post("/lists/{list_id}/contacts")
async def post_list_contact(list_id: str, data: EmailContactCreate, user: dict = Depends(require_permission("automations.manage"))):
    result = await add_contact(user["scope_company_id"], list_id, data.model_dump())
    if not result["success"]:
        status = 404 if result["error"] == "List not found" else 409
        raise HTTPException(status_code=status, detail=result["error"])
    return result


@router.post("/lists/{list_id}/contacts/upload")
async def upload_list_contacts(
    list_id: str,
    file: UploadFile = File(...),
    user: dict = Depends(require_permission("automations.manage"))
):
    if not (file.filename or "").lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Only .csv files are accepted")

    content = await file.read()
    if len(content) > MAX_CSV_SIZE:
        raise HTTPException(status_code=400, detail="File too large. Maximum: 5 MB")

    company_id = user["scope_company_id"]
    result = await import_contacts_csv(company_id, list_id, content.decode("utf-8", errors="replace"))
    if not result["success"]:
        raise HTTPException(status_code=404, detail=result["error"])

    await log_event(
        action="contacts_import",
        entity_type="email_list",
        entity_id=list_id,
        user=user.get("email", "system"),
        company_id=company_id,
        details={"added": result["added"], "skipped": result["skipped"]},
    )
    return result


@router.put("/contacts/{contact_id}")
async def put_contact(contact_id: str, data: EmailContactUpdate, user: dict = Depends(require_permission("automations.manage"))):
    company_id = user["scope_company_id"]
    if not await get_contact(company_id, contact_id):
        raise HTTPException(status_code=404, detail="Contact not found")
    contact = await update_contact(company_id, contact_id, data.model_dump(exclude_none=True))
    return {"success": True, "contact": contact}


@router.delete("/contacts/{contact_id}")
async def remove_contact(contact_id: str, user: dict = Depends(require_permission("automations.manage"))):
    if not await delete_contact(user["scope_company_id"], contact_id):
        raise HTTPException(status_code=404, detail="Contact not found")
    return {"success": True}


# ==================== AUTOMATIONS ====================

@router.get("")
async def get_automations(status: Optional[str] = None, user: dict = Depends(require_permission("automations.view"))):
    automations = await list_automations(user["scope_company_id"], status=status)
    return {"automations": automations, "count": len(automations)}


@router.post("")
async def post_automation(data: AutomationCreate, user: dict = Depends(require_permission("automations.manage"))):
    try:
        automation = await create_automation(
            user["scope_company_id"], data.model_dump(), created_by=user.get("id", "system")
        )
    except AutomationConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "automation": automation}


@router.get("/{automation_id}")
async def get_single_automation(automation_id: str, user: dict = Depends(require_permission("automations.view"))):
    company_id = user["scope_company_id"]
    automation = await get_automation(company_id, automation_id)
    if not automation:
        raise HTTPException(status_code=404, detail="Automation not found")
    automation["state_counts"] = await count_states_by_status(company_id, automation_id)
    return {"automation": automation}


@router.put("/{automation_id}")
async def put_automation(automation_id: str, data: AutomationUpdate, user: dict = Depends(require_permission("automations.manage"))):
    try:
        automation = await update_automation(user["scope_company_id"], automation_id, data.model_dump(exclude_none=True))
    except AutomationConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))
    if not automation:
        raise HTTPException(status_code=404, detail="Automation not found")
    return {"success": True, "automation": automation}


@router.delete("/{automation_id}")
async def remove_automation(automation_id: str, user: dict = Depends(require_permission("automations.manage"))):
    company_id = user["scope_company_id"]
    if not await delete_automation(company_id, automation_id):
        raise HTTPException(status_code=404, detail="Automation not found")

    await log_event(
        action="automation_delete",
        entity_type="automation",
        entity_id=automation_id,
        user=user.get("email", "system"),
        company_id=company_id,
    )
    return {"success": True}


@router.post("/{automation_id}/activate")
async def post_activate(automation_id: str, user: dict = Depends(require_permission("automations.manage"))):
    result = await activate_automation(user["scope_company_id"], automation_id)
    if not result["success"]:
        status = 404 if result["error"] == "Automation not found" else 400
        raise HTTPException(status_code=status, detail=result["error"])
    return result


@router.post("/{automation_id}/deactivate")
async def post_deactivate(automation_id: str, user: dict = Depends(require_permission("automations.manage"))):
    result = await deactivate_automation(user["scope_company_id"], automation_id)
    if not result["success"]:
        raise HTTPException(status_code=404, detail=result["error"])
    return result


@router.get("/{automation_id}/states")
async def get_states(
    automation_id: str,
    status: Optional[str] = None,
    limit: int = 500,
    user: dict = Depends(require_permission("automations.view"))
):
    if status and status not in STATE_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}. Valid: {STATE_STATUSES}")
    company_id = user["scope_company_id"]
    if not await get_automation(company_id, automation_id):
        raise HTTPException(status_code=404, detail="Automation not found")
    states = await get_automation_states(company_id, automation_id, status=status, limit=min(limit, 5000))
    return {"states": states, "count": len(states), "by_status": await count_states_by_status(company_id, automation_id)}
