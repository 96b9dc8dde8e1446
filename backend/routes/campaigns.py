"""
OmniFlow CRM - Routes Campaign Jobs
Queue bulk email / SMS / WhatsApp campaigns to leads, follow their
progress, retry the recipients that failed.
"""

from fastapi import APIRouter, HTTPException, Depends
from typing import Optional

from models.campaign import EmailCampaignRequest, SmsCampaignRequest, WhatsAppCampaignRequest
from services.campaigns import (
    CHANNELS,
    CREATORS,
    select_lead_recipients,
    get_campaign_job,
    list_campaign_jobs,
    process_campaign_job,
    retry_failed_recipients,
)
from services.companies import get_company
from services.permissions import require_permission

router = APIRouter(prefix="/campaigns", tags=["Campaigns"])


async def _queue(channel: str, data, user: dict):
    company_id = user["scope_company_id"]
    company = await get_company(company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")

    selection = await select_lead_recipients(company_id, channel, data.lead_ids, data.status)
    if not selection["success"]:
        raise HTTPException(status_code=400, detail=selection["error"])
    if not selection["recipients"]:
        address = "an email address" if channel == "email" else "a phone number"
        raise HTTPException(status_code=400, detail=f"No recipients with {address}")

    fields = data.model_dump(exclude={"name", "lead_ids", "status", "send_now"})
    result = await CREATORS[channel](company, data.name, fields, selection["recipients"],
                                     created_by=user.get("email", "system"))
    if not result["success"]:
        raise HTTPException(status_code=400, detail=result["error"])

    job = result["job"]
    if data.send_now:
        await process_campaign_job(job["id"])
        job = await get_campaign_job(company_id, job["id"])
    else:
        job.pop("recipients", None)
    return {"success": True, "job": job, "skipped_no_address": selection["skipped"]}


@router.post("/email")
async def queue_email_campaign(data: EmailCampaignRequest, user: dict = Depends(require_permission("messaging.send"))):
    return await _queue("email", data, user)


@router.post("/sms")
async def queue_sms_campaign(data: SmsCampaignRequest, user: dict = Depends(require_permission("messaging.send"))):
    return await _queue("sms", data, user)


@router.post("/whatsapp")
async def queue_whatsapp_campaign(data: WhatsAppCampaignRequest,
                                  user: dict = Depends(require_permission("messaging.send"))):
    return await _queue("whatsapp", data, user)


@router.get("")
async def get_campaign_jobs(
    channel: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 50,
    user: dict = Depends(require_permission("campaigns.view")),
):
    if channel and channel not in CHANNELS:
        raise HTTPException(status_code=400, detail=f"Invalid channel: {channel}")
    jobs = await list_campaign_jobs(user["scope_company_id"], channel=channel, status=status,
                                    limit=max(1, min(limit, 200)))
    return {"jobs": jobs, "count": len(jobs)}


@router.get("/{job_id}")
async def get_single_campaign_job(job_id: str, user: dict = Depends(require_permission("campaigns.view"))):
    job = await get_campaign_job(user["scope_company_id"], job_id)
    if not job:
        raise HTTPException(status_code=404, detail="Campaign job not found")
    return job


@router.post("/{job_id}/retry")
async def retry_campaign_failures(job_id: str, user: dict = Depends(require_permission("messaging.send"))):
    """Queue a new job for the failed recipients of a finished one"""
    result = await retry_failed_recipients(user["scope_company_id"], job_id, created_by=user.get("email", "system"))
    if not result["success"]:
        status_code = 404 if result["error"] == "Campaign job not found" else 400
        raise HTTPException(status_code=status_code, detail=result["error"])
    job = result["job"]
    job.pop("recipients", None)
    return {"success": True, "job": job}
