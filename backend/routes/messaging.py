"""
OmniFlow CRM - Routes Messaging
One-off email / SMS / WhatsApp to a lead and bulk SMS.
Every successful send is written to the lead's timeline.
"""

import logging
from fastapi import APIRouter, HTTPException, Depends

from config import db
from models.campaign import SendEmailRequest, SendSmsRequest, BulkSmsRequest, SendWhatsAppRequest
from models.lead import LEAD_STATUSES
from services.activity_logger import log_email, log_sms, log_whatsapp
from services.automation_runner import resolve_sender
from services.batch_processor import process_in_batches
from services.companies import get_company, get_api_keys, is_provider_configured
from services.email_sender import send_email, sync_brevo_contact, EMAIL_PROVIDER_ORDER
from services.event_logger import log_event
from services.leads import get_lead
from services.permissions import require_permission
from services.sms_sender import send_sms
from services.whatsapp_sender import send_whatsapp

logger = logging.getLogger("messaging")

router = APIRouter(prefix="/messaging", tags=["Messaging"])


async def _load(user: dict, lead_id: str):
    company_id = user["scope_company_id"]
    company = await get_company(company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    lead = await get_lead(company_id, lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return company, lead


def _require_provider(company: dict, provider: str):
    if not is_provider_configured(company, provider):
        raise HTTPException(status_code=400, detail=f"{provider} is not configured for this company")
    return get_api_keys(company, provider)


# ==================== EMAIL ====================

@router.post("/email")
async def send_lead_email(data: SendEmailRequest, user: dict = Depends(require_permission("messaging.send"))):
    company, lead = await _load(user, data.lead_id)

    provider = data.provider
    if not provider:
        provider = next((p for p in EMAIL_PROVIDER_ORDER if is_provider_configured(company, p)), None)
        if not provider:
            raise HTTPException(status_code=400, detail="No email provider configured")
    keys = _require_provider(company, provider)

    sender_email, sender_name = resolve_sender(
        company, {"delivery_config": {"sender_email": data.sender_email, "sender_name": data.sender_name}}, provider
    )
    if not sender_email:
        raise HTTPException(status_code=400, detail="No sender email configured")

    result = await send_email(provider, keys, sender_email, sender_name,
                              lead["email"], lead.get("name", ""), data.subject, data.html_content)
    if not result["success"]:
        raise HTTPException(status_code=502, detail=result.get("error", "Email sending failed"))

    await log_email(company["id"], lead["id"], data.subject, data.html_content,
                    created_by=user.get("id", "system"),
                    metadata={"provider": provider, "message_id": result.get("message_id")})
    return {"success": True, "provider": provider, "message_id": result.get("message_id")}


@router.post("/brevo/contacts/{lead_id}")
async def sync_lead_to_brevo(lead_id: str, user: dict = Depends(require_permission("messaging.send"))):
    """Create or update the lead as a Brevo contact (FIRSTNAME / LASTNAME / SMS attributes)"""
    company, lead = await _load(user, lead_id)
    keys = _require_provider(company, "brevo")

    first, _, last = (lead.get("name") or "").partition(" ")
    attributes = {"FIRSTNAME": first, "LASTNAME": last}
    if lead.get("phone"):
        attributes["SMS"] = lead["phone"]

    result = await sync_brevo_contact(keys["api_key"], lead["email"], attributes)
    if not result["success"]:
        raise HTTPException(status_code=502, detail=result["error"])
    return result


# ==================== SMS ====================

@router.post("/sms")
async def send_lead_sms(data: SendSmsRequest, user: dict = Depends(require_permission("messaging.send"))):
    company, lead = await _load(user, data.lead_id)
    if not lead.get("phone"):
        raise HTTPException(status_code=400, detail="Lead has no phone number")
    keys = _require_provider(company, data.provider)

    result = await send_sms(data.provider, keys, lead["phone"], data.message,
                            template_id=data.template_id, dlt_template_id=data.dlt_template_id)
    if not result["success"]:
        raise HTTPException(status_code=502, detail=result.get("error", "SMS sending failed"))

    await log_sms(company["id"], lead["id"], data.message, created_by=user.get("id", "system"),
                  metadata={"provider": data.provider, "message_id": result.get("message_id")})
    return {"success": True, "provider": data.provider, "message_id": result.get("message_id")}


@router.post("/sms/bulk")
async def send_bulk_sms(data: BulkSmsRequest, user: dict = Depends(require_permission("messaging.send"))):
    """Send to explicit lead_ids, or to every lead with the given status"""
    company_id = user["scope_company_id"]
    company = await get_company(company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")
    keys = _require_provider(company, data.provider)

    query = {"company_id": company_id}
    if data.lead_ids:
        query["id"] = {"$in": data.lead_ids}
    elif data.status:
        if data.status not in LEAD_STATUSES:
            raise HTTPException(status_code=400, detail=f"Invalid status: {data.status}")
        query["status"] = data.status
    else:
        raise HTTPException(status_code=400, detail="Provide lead_ids or status")

    leads = await db.leads.find(query, {"_id": 0, "id": 1, "phone": 1}).to_list(100000)
    recipients = [lead for lead in leads if lead.get("phone")]
    if not recipients:
        raise HTTPException(status_code=400, detail="No recipients with a phone number")

    async def handler(lead):
        result = await send_sms(data.provider, keys, lead["phone"], data.message,
                                template_id=data.template_id, dlt_template_id=data.dlt_template_id)
        if result["success"]:
            await log_sms(company_id, lead["id"], data.message, created_by=user.get("id", "system"),
                          metadata={"provider": data.provider, "bulk": True, "message_id": result.get("message_id")})
        return result

    summary = await process_in_batches(recipients, handler)
    summary["errors"] = [{"lead_id": e["item"]["id"], "error": e["error"]} for e in summary["errors"]]
    summary["skipped_no_phone"] = len(leads) - len(recipients)

    await log_event(
        action="bulk_sms",
        entity_type="company",
        entity_id=company_id,
        user=user.get("email", "system"),
        company_id=company_id,
        details={"provider": data.provider, "sent": summary["success_count"], "failed": summary["failure_count"]},
    )
    logger.info(f"[BULK_SMS] company={company_id} sent={summary['success_count']} failed={summary['failure_count']}")
    return {"success": True, **summary}


# ==================== WHATSAPP ====================

@router.post("/whatsapp")
async def send_lead_whatsapp(data: SendWhatsAppRequest, user: dict = Depends(require_permission("messaging.send"))):
    company, lead = await _load(user, data.lead_id)
    if not lead.get("phone"):
        raise HTTPException(status_code=400, detail="Lead has no phone number")
    keys = _require_provider(company, data.provider)

    result = await send_whatsapp(data.provider, keys, lead["phone"], lead.get("name", ""),
                                 data.template_name, data.language_code, data.params)
    if not result["success"]:
        raise HTTPException(status_code=502, detail=result.get("error", "WhatsApp sending failed"))

    await log_whatsapp(company["id"], lead["id"], f"Template {data.template_name}",
                       created_by=user.get("id", "system"),
                       metadata={"provider": data.provider, "template": data.template_name,
                                 "params": data.params, "message_id": result.get("message_id")})
    return {"success": True, "provider": data.provider, "message_id": result.get("message_id")}
