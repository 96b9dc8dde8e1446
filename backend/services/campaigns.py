"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  OmniFlow CRM - Campaign jobs                                                ║
║                                                                              ║
║  Bulk email / SMS / WhatsApp sends queued in campaign_jobs and worked off    ║
║  by the scheduler, POST /api/cron/process-campaign-jobs or send_now.         ║
║                                                                              ║
║  STATUS:                                                                     ║
║    pending -> processing -> completed | partially_completed | failed         ║
║    processing error -> retrying (backoff 5 min, doubling, max 1h) -> ...     ║
║    3 attempts -> failed                                                      ║
║                                                                              ║
║  PROGRESS:                                                                   ║
║    recipients are sent in batches of 100 through process_in_batches;         ║
║    sent / failed / processed are written after every batch, a retried        ║
║    job resumes at progress.processed                                         ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import math
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any

from config import db, now_iso, parse_iso
from models.lead import LEAD_STATUSES
from services.activity_logger import log_email, log_sms, log_whatsapp
from services.automation_runner import personalize, resolve_sender
from services.batch_processor import process_in_batches
from services.companies import get_company, get_api_keys, is_provider_configured
from services.email_sender import send_email, EMAIL_PROVIDER_ORDER
from services.event_logger import log_event
from services.sms_sender import send_sms
from services.whatsapp_sender import send_whatsapp

logger = logging.getLogger("campaigns")

CAMPAIGN_BATCH_SIZE = 100
CAMPAIGN_BATCH_DELAY_MS = 500
MAX_ATTEMPTS = 3
INITIAL_BACKOFF = timedelta(minutes=5)
MAX_BACKOFF = timedelta(hours=1)
JOB_TIMEOUT = timedelta(hours=1)

CHANNELS = ("email", "sms", "whatsapp")
CLAIMABLE_STATUSES = ["pending", "retrying"]
FINISHED_STATUSES = ["completed", "partially_completed", "failed"]
DEFAULT_PROVIDERS = {"sms": "twilio", "whatsapp": "meta_whatsapp"}

# recipients can be large, list views leave them out
SUMMARY_PROJECTION = {"_id": 0, "recipients": 0, "failed_recipients": 0}


def final_status(sent: int, failed: int) -> str:
    if failed == 0:
        return "completed"
    if sent == 0:
        return "failed"
    return "partially_completed"


def retry_backoff(attempts: int) -> timedelta:
    """Wait before retry number `attempts` (1-based)."""
    return min(INITIAL_BACKOFF * (2 ** (attempts - 1)), MAX_BACKOFF)


# ════════════════════════════════════════════════════════════════════════
# RECIPIENTS
# ════════════════════════════════════════════════════════════════════════

async def select_lead_recipients(company_id: str, channel: str, lead_ids: List[str] = None,
                                 status: str = None) -> Dict[str, Any]:
    """Explicit lead_ids, or every lead with `status`. Leads without an address for the channel are skipped."""
    query: Dict[str, Any] = {"company_id": company_id}
    if lead_ids:
        query["id"] = {"$in": lead_ids}
    elif status:
        if status not in LEAD_STATUSES:
            return {"success": False, "error": f"Invalid status: {status}"}
        query["status"] = status
    else:
        return {"success": False, "error": "Provide lead_ids or status"}

    leads = await db.leads.find(
        query, {"_id": 0, "id": 1, "name": 1, "email": 1, "phone": 1}
    ).to_list(100000)

    address = "email" if channel == "email" else "phone"
    recipients = [
        {
            "lead_id": lead["id"],
            "name": lead.get("name") or "",
            "email": lead.get("email") or "",
            "phone": lead.get("phone") or "",
        }
        for lead in leads if lead.get(address)
    ]
    return {"success": True, "recipients": recipients, "skipped": len(leads) - len(recipients)}


# ════════════════════════════════════════════════════════════════════════
# CREATE
# ════════════════════════════════════════════════════════════════════════

async def _create_job(company_id: str, channel: str, name: str, provider: str,
                      payload: Dict, recipients: List[Dict], created_by: str) -> Dict[str, Any]:
    if not recipients:
        return {"success": False, "error": "No recipients"}

    now = now_iso()
    job = {
        "id": str(uuid.uuid4()),
        "company_id": company_id,
        "created_by": created_by,
        "channel": channel,
        "name": name,
        "provider": provider,
        "payload": payload,
        "status": "pending",
        "recipients": recipients,
        "progress": {
            "total": len(recipients),
            "sent": 0,
            "failed": 0,
            "processed": 0,
            "current_batch": 0,
            "total_batches": math.ceil(len(recipients) / CAMPAIGN_BATCH_SIZE),
        },
        "failed_recipients": [],
        "retry": {
            "attempts": 0,
            "max_attempts": MAX_ATTEMPTS,
            "last_attempt_at": None,
            "next_retry_at": None,
        },
        "retry_of": None,
        "error": None,
        "created_at": now,
        "updated_at": now,
        "started_at": None,
        "completed_at": None,
    }
    await db.campaign_jobs.insert_one(job)
    job.pop("_id", None)

    await log_event(
        action="campaign_created",
        entity_type="campaign",
        entity_id=job["id"],
        user=created_by,
        company_id=company_id,
        details={"channel": channel, "provider": provider, "recipients": len(recipients)},
    )
    logger.info(f"[CAMPAIGN] Created {channel} job {job['id']} for company {company_id} "
                f"with {len(recipients)} recipients")
    return {"success": True, "job": job}


def _check_provider(company: Dict, provider: Optional[str]) -> Optional[str]:
    if not provider:
        return "No provider configured"
    if not is_provider_configured(company, provider):
        return f"{provider} is not configured for this company"
    return None


async def create_email_campaign_job(company: Dict, name: str, data: Dict, recipients: List[Dict],
                                    created_by: str = "system") -> Dict[str, Any]:
    """data: subject, html_content, provider?, sender_email?, sender_name?"""
    provider = data.get("provider") or next(
        (p for p in EMAIL_PROVIDER_ORDER if is_provider_configured(company, p)), None
    )
    if not provider:
        return {"success": False, "error": "No email provider configured"}
    error = _check_provider(company, provider)
    if error:
        return {"success": False, "error": error}

    sender_email, sender_name = resolve_sender(
        company,
        {"delivery_config": {"sender_email": data.get("sender_email"), "sender_name": data.get("sender_name")}},
        provider,
    )
    if not sender_email:
        return {"success": False, "error": "No sender email configured"}

    payload = {
        "subject": data["subject"],
        "html_content": data["html_content"],
        "sender_email": sender_email,
        "sender_name": sender_name,
    }
    recipients = [r for r in recipients if r.get("email")]
    return await _create_job(company["id"], "email", name, provider, payload, recipients, created_by)


async def create_sms_campaign_job(company: Dict, name: str, data: Dict, recipients: List[Dict],
                                  created_by: str = "system") -> Dict[str, Any]:
    """data: message, provider?, template_id?, dlt_template_id?"""
    provider = data.get("provider") or DEFAULT_PROVIDERS["sms"]
    error = _check_provider(company, provider)
    if error:
        return {"success": False, "error": error}

    payload = {
        "message": data["message"],
        "template_id": data.get("template_id"),
        "dlt_template_id": data.get("dlt_template_id"),
    }
    recipients = [r for r in recipients if r.get("phone")]
    return await _create_job(company["id"], "sms", name, provider, payload, recipients, created_by)


async def create_whatsapp_campaign_job(company: Dict, name: str, data: Dict, recipients: List[Dict],
                                       created_by: str = "system") -> Dict[str, Any]:
    """data: template_name, provider?, language_code?, params?"""
    provider = data.get("provider") or DEFAULT_PROVIDERS["whatsapp"]
    error = _check_provider(company, provider)
    if error:
        return {"success": False, "error": error}

    payload = {
        "template_name": data["template_name"],
        "language_code": data.get("language_code") or "en",
        "params": list(data.get("params") or []),
    }
    recipients = [r for r in recipients if r.get("phone")]
    return await _create_job(company["id"], "whatsapp", name, provider, payload, recipients, created_by)


CREATORS = {
    "email": create_email_campaign_job,
    "sms": create_sms_campaign_job,
    "whatsapp": create_whatsapp_campaign_job,
}


# ════════════════════════════════════════════════════════════════════════
# READ
# ════════════════════════════════════════════════════════════════════════

async def get_campaign_job(company_id: str, job_id: str) -> Optional[Dict]:
    """Full job without the recipient list."""
    return await db.campaign_jobs.find_one(
        {"id": job_id, "company_id": company_id}, {"_id": 0, "recipients": 0}
    )


async def list_campaign_jobs(company_id: str, channel: str = None, status: str = None,
                             limit: int = 50) -> List[Dict]:
    query: Dict[str, Any] = {"company_id": company_id}
    if channel:
        query["channel"] = channel
    if status:
        query["status"] = status
    return await db.campaign_jobs.find(query, SUMMARY_PROJECTION).sort("created_at", -1).to_list(limit)


# ════════════════════════════════════════════════════════════════════════
# STATUS TRANSITIONS
# ════════════════════════════════════════════════════════════════════════

async def _finish_job(job: Dict, status: str, error: str = None) -> None:
    fields = {"status": status, "completed_at": now_iso(), "updated_at": now_iso()}
    if error:
        fields["error"] = error
    await db.campaign_jobs.update_one({"id": job["id"]}, {"$set": fields})


async def retry_campaign_job(job_id: str, error: str, now: Optional[datetime] = None) -> bool:
    """
    Schedule another attempt after a processing error.
    Returns False when the job is gone or out of attempts (then failed).
    """
    now = now or datetime.now(timezone.utc)
    job = await db.campaign_jobs.find_one({"id": job_id}, {"_id": 0, "recipients": 0})
    if not job:
        return False

    retry = job.get("retry") or {}
    attempts = (retry.get("attempts") or 0) + 1
    max_attempts = retry.get("max_attempts") or MAX_ATTEMPTS

    if attempts >= max_attempts:
        await _finish_job(job, "failed", f"Failed after {attempts} attempts: {error}")
        logger.error(f"[CAMPAIGN] Job {job_id} failed after {attempts} attempts: {error}")
        return False

    next_retry_at = now + retry_backoff(attempts)
    await db.campaign_jobs.update_one({"id": job_id}, {"$set": {
        "status": "retrying",
        "retry.attempts": attempts,
        "retry.last_attempt_at": now.isoformat(),
        "retry.next_retry_at": next_retry_at.isoformat(),
        "error": error,
        "started_at": None,
        "updated_at": now_iso(),
    }})
    logger.warning(f"[CAMPAIGN] Job {job_id} retry {attempts}/{max_attempts} at {next_retry_at.isoformat()}: {error}")
    return True


def is_ready_for_retry(job: Dict, now: datetime) -> bool:
    if job.get("status") != "retrying":
        return False
    next_retry_at = parse_iso((job.get("retry") or {}).get("next_retry_at"))
    return next_retry_at is not None and now >= next_retry_at


def is_timed_out(job: Dict, now: datetime) -> bool:
    started_at = parse_iso(job.get("started_at"))
    return job.get("status") == "processing" and started_at is not None and now - started_at > JOB_TIMEOUT


# ════════════════════════════════════════════════════════════════════════
# PROCESSING
# ════════════════════════════════════════════════════════════════════════

async def _send_to_recipient(job: Dict, company: Dict, keys: Dict, recipient: Dict) -> Dict:
    """One send, logged on the lead's timeline when it succeeds."""
    channel = job["channel"]
    provider = job["provider"]
    payload = job["payload"]

    if channel == "email":
        subject = personalize(payload["subject"], recipient, company)
        html = personalize(payload["html_content"], recipient, company)
        result = await send_email(provider, keys, payload["sender_email"], payload["sender_name"],
                                  recipient["email"], recipient.get("name", ""), subject, html)
    elif channel == "sms":
        body = personalize(payload["message"], recipient, company)
        result = await send_sms(provider, keys, recipient["phone"], body,
                                template_id=payload.get("template_id"),
                                dlt_template_id=payload.get("dlt_template_id"))
    else:
        result = await send_whatsapp(provider, keys, recipient["phone"], recipient.get("name", ""),
                                     payload["template_name"], payload.get("language_code", "en"),
                                     payload.get("params"))

    lead_id = recipient.get("lead_id")
    if result.get("success") and lead_id:
        metadata = {"provider": provider, "campaign_job_id": job["id"], "message_id": result.get("message_id")}
        if channel == "email":
            await log_email(company["id"], lead_id, subject, html, created_by=job["created_by"], metadata=metadata)
        elif channel == "sms":
            await log_sms(company["id"], lead_id, body, created_by=job["created_by"], metadata=metadata)
        else:
            await log_whatsapp(company["id"], lead_id, f"Template {payload['template_name']}",
                               created_by=job["created_by"], metadata=metadata)
    return result


async def _run_claimed_job(job: Dict, now: datetime) -> Dict[str, Any]:
    company = await get_company(job["company_id"])
    if not company:
        error = "Company not found"
    elif company.get("status") != "active":
        error = "Company is not active"
    else:
        error = _check_provider(company, job["provider"])
    if error:
        await _finish_job(job, "failed", error)
        logger.warning(f"[CAMPAIGN] Job {job['id']} failed: {error}")
        return {"success": False, "job_id": job["id"], "status": "failed", "error": error}

    keys = get_api_keys(company, job["provider"])
    progress = job["progress"]
    pending = job["recipients"][progress.get("processed", 0):]

    async def handler(recipient):
        return await _send_to_recipient(job, company, keys, recipient)

    async def on_batch(index, batch, outcomes):
        sent = sum(1 for o in outcomes if o["success"])
        failures = [
            {"recipient": recipient, "error": outcome["error"]}
            for recipient, outcome in zip(batch, outcomes) if not outcome["success"]
        ]
        update: Dict[str, Any] = {
            "$inc": {
                "progress.sent": sent,
                "progress.failed": len(failures),
                "progress.processed": len(batch),
                "progress.current_batch": 1,
            },
            "$set": {"updated_at": now_iso()},
        }
        if failures:
            update["$push"] = {"failed_recipients": {"$each": failures}}
        await db.campaign_jobs.update_one({"id": job["id"]}, update)

    await process_in_batches(pending, handler, batch_size=CAMPAIGN_BATCH_SIZE,
                             delay_ms=CAMPAIGN_BATCH_DELAY_MS, on_batch=on_batch)

    done = await db.campaign_jobs.find_one({"id": job["id"]}, {"_id": 0, "progress": 1})
    sent, failed = done["progress"]["sent"], done["progress"]["failed"]
    status = final_status(sent, failed)
    await _finish_job(job, status, None if status != "failed" else f"All {failed} recipients failed")

    await log_event(
        action="campaign_completed",
        entity_type="campaign",
        entity_id=job["id"],
        company_id=job["company_id"],
        details={"channel": job["channel"], "status": status, "sent": sent, "failed": failed},
    )
    logger.info(f"[CAMPAIGN] Job {job['id']} {status} - sent={sent} failed={failed} total={done['progress']['total']}")
    return {"success": True, "job_id": job["id"], "status": status, "sent": sent, "failed": failed}


async def process_campaign_job(job_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Claim a pending/retrying job and send to its remaining recipients.
    Only one worker can claim a job: the status flip to processing is atomic.
    """
    now = now or datetime.now(timezone.utc)
    job = await db.campaign_jobs.find_one_and_update(
        {"id": job_id, "status": {"$in": CLAIMABLE_STATUSES}},
        {"$set": {"status": "processing", "started_at": now.isoformat(), "updated_at": now_iso()}},
        projection={"_id": 0},
    )
    if not job:
        return {"success": False, "job_id": job_id, "error": "Job not found or already claimed"}
    job["status"] = "processing"

    try:
        return await _run_claimed_job(job, now)
    except Exception as e:
        logger.error(f"[CAMPAIGN] Job {job_id} processing error: {e}")
        await retry_campaign_job(job_id, str(e) or "Unknown error", now)
        return {"success": False, "job_id": job_id, "error": str(e)}


async def run_pending_campaign_jobs(now: Optional[datetime] = None) -> Dict[str, Any]:
    """Scheduler / cron entry point: due jobs are processed, stuck ones are retried."""
    now = now or datetime.now(timezone.utc)
    jobs = await db.campaign_jobs.find(
        {"status": {"$in": CLAIMABLE_STATUSES + ["processing"]}}, SUMMARY_PROJECTION
    ).sort("created_at", 1).to_list(1000)

    totals = {"jobs_found": len(jobs), "jobs_processed": 0, "jobs_failed": 0, "details": []}

    for job in jobs:
        if job["status"] == "processing":
            if is_timed_out(job, now):
                await retry_campaign_job(job["id"], "Job timeout exceeded", now)
                totals["jobs_failed"] += 1
                totals["details"].append(f"Job {job['id']} ({job['channel']}) timed out")
            continue
        if job["status"] == "retrying" and not is_ready_for_retry(job, now):
            continue

        result = await process_campaign_job(job["id"], now)
        if result["success"]:
            totals["jobs_processed"] += 1
            totals["details"].append(
                f"Job {job['id']} ({job['channel']}): {result['sent']} sent, {result['failed']} failed"
            )
        else:
            totals["jobs_failed"] += 1
            totals["details"].append(f"Job {job['id']} ({job['channel']}) failed: {result.get('error')}")

    if jobs:
        logger.info(f"[CAMPAIGN] Processed {totals['jobs_processed']} jobs, {totals['jobs_failed']} failed")
    return totals


async def retry_failed_recipients(company_id: str, job_id: str, created_by: str = "system") -> Dict[str, Any]:
    """New job for the recipients that failed in a finished job."""
    job = await db.campaign_jobs.find_one({"id": job_id, "company_id": company_id}, {"_id": 0})
    if not job:
        return {"success": False, "error": "Campaign job not found"}
    if job["status"] not in FINISHED_STATUSES:
        return {"success": False, "error": f"Campaign job is {job['status']}"}
    recipients = [f["recipient"] for f in job.get("failed_recipients") or []]
    if not recipients:
        return {"success": False, "error": "No failed recipients to retry"}

    company = await get_company(company_id)
    error = _check_provider(company or {}, job["provider"])
    if error:
        return {"success": False, "error": error}

    result = await _create_job(company_id, job["channel"], f"{job['name']} (retry)", job["provider"],
                               job["payload"], recipients, created_by)
    if result["success"]:
        await db.campaign_jobs.update_one({"id": result["job"]["id"]}, {"$set": {"retry_of": job_id}})
        result["job"]["retry_of"] = job_id
    return result
