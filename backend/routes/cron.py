"""
OmniFlow CRM - Routes Cron
External triggers for the automation executor and the campaign job queue.
Authorization: Bearer <CRON_SECRET>
"""

import logging
from fastapi import APIRouter, HTTPException, Depends, Header
from typing import Optional

import config
from services.automation_runner import run_all_automations, enroll_contacts
from services.campaigns import run_pending_campaign_jobs
from services.event_logger import log_event

logger = logging.getLogger("cron")

router = APIRouter(prefix="/cron", tags=["Cron"])


async def verify_cron_secret(authorization: Optional[str] = Header(None)):
    """Valide le secret partage avec le planificateur externe"""
    if not config.CRON_SECRET:
        logger.error("[CRON] CRON_SECRET is not configured")
        raise HTTPException(status_code=500, detail="Cron secret not configured")

    if not authorization:
        raise HTTPException(status_code=401, detail="Missing authorization")

    parts = authorization.split(" ")
    if len(parts) != 2 or parts[0] != "Bearer" or parts[1] != config.CRON_SECRET:
        logger.warning("[CRON] Rejected call with invalid secret")
        raise HTTPException(status_code=401, detail="Unauthorized")
    return True


@router.post("/process-email-automations")
async def process_email_automations(authorized: bool = Depends(verify_cron_secret)):
    result = await run_all_automations()
    await log_event(
        action="cron_process_automations",
        entity_type="cron",
        entity_id="process-email-automations",
        details={k: v for k, v in result.items() if k != "errors"},
    )
    return {"success": True, **result}


@router.post("/enroll-contacts")
async def enroll_all_contacts(authorized: bool = Depends(verify_cron_secret)):
    result = await enroll_contacts()
    await log_event(
        action="cron_enroll_contacts",
        entity_type="cron",
        entity_id="enroll-contacts",
        details=result,
    )
    return {"success": True, **result}


@router.post("/process-campaign-jobs")
async def process_campaign_jobs(authorized: bool = Depends(verify_cron_secret)):
    result = await run_pending_campaign_jobs()
    await log_event(
        action="cron_process_campaign_jobs",
        entity_type="cron",
        entity_id="process-campaign-jobs",
        details={k: v for k, v in result.items() if k != "details"},
    )
    return {"success": True, **result}
