"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  OmniFlow CRM - Email automation runner                                      ║
║                                                                              ║
║  Called by the scheduler and by POST /api/cron/*                             ║
║                                                                              ║
║  FLOW (per company):                                                         ║
║    1. refresh quota counters (daily on UTC date change, hourly after 1h)     ║
║    2. circuit breaker open -> skip the company                               ║
║    3. up to 50 active states with next_step_time <= now                      ║
║    4. delay step -> advance, email step -> personalize + send + advance      ║
║                                                                              ║
║  CIRCUIT BREAKER:                                                            ║
║    consecutive failures >= max_failures_before_stop -> tripped               ║
║    open for 30 minutes, a success closes it                                  ║
║    after the cooldown the failure count restarts from 0                      ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any, Tuple

from config import db, now_iso, parse_iso
from services.automations import step_delay
from services.companies import get_api_keys, is_provider_configured
from services.email_sender import send_email, EMAIL_PROVIDER_ORDER
from services.activity_logger import log_email
from services.event_logger import log_event
from services.leads import find_lead_by_email
from services.plans import get_quotas_for_plan

logger = logging.getLogger("automation_runner")

PROCESS_BATCH_LIMIT = 50
CIRCUIT_BREAKER_COOLDOWN = timedelta(minutes=30)
NEXT_EMAIL_GAP = timedelta(seconds=60)
MAX_RUN_ERRORS = 20


# ════════════════════════════════════════════════════════════════════════
# QUOTA TRACKER
# ════════════════════════════════════════════════════════════════════════

def refresh_quota_tracking(tracking: Dict[str, Any], now: datetime) -> Tuple[Dict[str, Any], bool]:
    """
    Reset daily/hourly counters when their window has passed and close an
    expired circuit breaker (failure streak back to 0). Returns (tracking, changed).
    """
    tracking = dict(tracking or {})
    changed = _close_expired_breaker(tracking, now)

    last_daily = parse_iso(tracking.get("last_daily_reset"))
    if last_daily is None or last_daily.date() != now.date():
        tracking["emails_sent_today"] = 0
        tracking["last_daily_reset"] = now.isoformat()
        changed = True

    last_hourly = parse_iso(tracking.get("last_hourly_reset"))
    if last_hourly is None or now - last_hourly >= timedelta(hours=1):
        tracking["emails_sent_this_hour"] = 0
        tracking["last_hourly_reset"] = now.isoformat()
        changed = True

    return tracking, changed


def is_circuit_breaker_open(tracking: Dict[str, Any], now: datetime) -> bool:
    tripped_at = parse_iso((tracking or {}).get("circuit_breaker_tripped_at"))
    if tripped_at is None:
        return False
    return now - tripped_at < CIRCUIT_BREAKER_COOLDOWN


def _close_expired_breaker(tracking: Dict[str, Any], now: datetime) -> bool:
    """In place. True when a trip older than the cooldown was cleared."""
    tripped_at = parse_iso(tracking.get("circuit_breaker_tripped_at"))
    if tripped_at is None or now - tripped_at < CIRCUIT_BREAKER_COOLDOWN:
        return False
    tracking["circuit_breaker_tripped_at"] = None
    tracking["consecutive_failures"] = 0
    return True

def check_quota(tracking: Dict[str, Any], quotas: Dict[str, int], now: datetime) -> Dict[str, Any]:
    if is_circuit_breaker_open(tracking, now):
        return {"allowed": False, "reason": "circuit_breaker"}
    if (tracking.get("emails_sent_today") or 0) >= quotas["max_emails_per_day"]:
        return {"allowed": False, "reason": "daily_limit"}
    if (tracking.get("emails_sent_this_hour") or 0) >= quotas["max_emails_per_hour"]:
        return {"allowed": False, "reason": "hourly_limit"}
    return {"allowed": True, "reason": None}


def apply_send_success(tracking: Dict[str, Any], now: datetime) -> Dict[str, Any]:
    tracking = dict(tracking)
    tracking["emails_sent_today"] = (tracking.get("emails_sent_today") or 0) + 1
    tracking["emails_sent_this_hour"] = (tracking.get("emails_sent_this_hour") or 0) + 1
    tracking["consecutive_failures"] = 0
    tracking["circuit_breaker_tripped_at"] = None
    tracking["last_email_sent_at"] = now.isoformat()
    return tracking


def apply_send_failure(tracking: Dict[str, Any], quotas: Dict[str, int], now: datetime) -> Tuple[Dict[str, Any], bool]:
    """Returns (tracking, tripped_now). After the cooldown a new streak starts from zero."""
    tracking = dict(tracking)
    _close_expired_breaker(tracking, now)
    tracking["consecutive_failures"] = (tracking.get("consecutive_failures") or 0) + 1
    tripped_now = False
    if (tracking["consecutive_failures"] >= quotas["max_failures_before_stop"]
            and not is_circuit_breaker_open(tracking, now)):
        tracking["circuit_breaker_tripped_at"] = now.isoformat()
        tripped_now = True
    return tracking, tripped_now


async def _save_tracking(company_id: str, tracking: Dict[str, Any]) -> None:
    await db.companies.update_one({"id": company_id}, {"$set": {"quota_tracking": tracking}})


async def _notify_circuit_breaker(company: Dict, tracking: Dict, last_error: str) -> None:
    logger.error(
        f"[CIRCUIT_BREAKER] Tripped for company {company['id']} "
        f"after {tracking['consecutive_failures']} consecutive failures: {last_error}"
    )
    await log_event(
        action="circuit_breaker_tripped",
        entity_type="company",
        entity_id=company["id"],
        company_id=company["id"],
        details={"consecutive_failures": tracking["consecutive_failures"], "last_error": last_error},
    )
    from email_service import email_service
    email_service.send_critical_alert(
        "CIRCUIT_BREAKER",
        f"Email automations paused for {company.get('name', company['id'])}",
        {"company_id": company["id"], "consecutive_failures": tracking["consecutive_failures"],
         "last_error": last_error, "cooldown": "30 minutes"},
    )


# ════════════════════════════════════════════════════════════════════════
# PERSONALIZATION / PROVIDER
# ════════════════════════════════════════════════════════════════════════

def _placeholder(name: str) -> re.Pattern:
    return re.compile(r"\{\{\s*" + name + r"\s*\}\}", re.IGNORECASE)


def personalize(text: str, contact: Dict, company: Dict) -> str:
    if not text:
        return text
    full_name = (contact.get("name") or "").strip()
    parts = full_name.split()
    values = {
        "first_name": parts[0] if parts else "there",
        "last_name": " ".join(parts[1:]),
        "name": full_name or "there",
        "email": contact.get("email") or "",
        "company_name": company.get("name") or "",
    }
    for key, value in values.items():
        text = _placeholder(key).sub(lambda _m, v=value: v, text)
    return text


def select_email_provider(company: Dict, automation: Dict) -> Optional[str]:
    """Automation's delivery_config provider when configured, else brevo -> sender -> smtp."""
    preferred = (automation.get("delivery_config") or {}).get("provider")
    if preferred and is_provider_configured(company, preferred):
        return preferred
    for provider in EMAIL_PROVIDER_ORDER:
        if is_provider_configured(company, provider):
            return provider
    return None


def has_email_provider(company: Dict) -> bool:
    return any(is_provider_configured(company, p) for p in EMAIL_PROVIDER_ORDER)


def resolve_sender(company: Dict, automation: Dict, provider: str) -> Tuple[str, str]:
    delivery = automation.get("delivery_config") or {}
    keys = get_api_keys(company, provider)
    sender_email = delivery.get("sender_email") or company.get("sender_email") or keys.get("from_email") or ""
    sender_name = delivery.get("sender_name") or company.get("sender_name") or keys.get("from_name") or company.get("name", "")
    return sender_email, sender_name


# ════════════════════════════════════════════════════════════════════════
# STATE TRANSITIONS
# ════════════════════════════════════════════════════════════════════════

async def _set_state(state_id: str, fields: Dict[str, Any]) -> None:
    fields["updated_at"] = now_iso()
    await db.automation_states.update_one({"id": state_id}, {"$set": fields})


async def _finish_state(state: Dict, status: str, error: str = None) -> None:
    fields = {"status": status}
    if error:
        fields["last_error"] = error
    await _set_state(state["id"], fields)


async def _advance_state(state: Dict, steps: List[Dict], now: datetime, sent_email: bool) -> str:
    """Move to the next step. Returns the resulting status."""
    next_index = state.get("current_step_index", 0) + 1
    fields: Dict[str, Any] = {"current_step_index": next_index}
    if sent_email:
        fields["emails_sent_in_sequence"] = (state.get("emails_sent_in_sequence") or 0) + 1

    if next_index >= len(steps):
        fields["status"] = "completed"
    else:
        next_step = steps[next_index]
        if next_step.get("type") == "delay":
            fields["next_step_time"] = (now + step_delay(next_step)).isoformat()
        else:
            fields["next_step_time"] = (now + NEXT_EMAIL_GAP).isoformat()

    await _set_state(state["id"], fields)
    return fields.get("status", "active")


# ════════════════════════════════════════════════════════════════════════
# ENROLLMENT
# ════════════════════════════════════════════════════════════════════════

async def enroll_contacts(company_id: str = None) -> Dict[str, int]:
    """Create an AutomationState for every active contact of lists linked to active automations."""
    query = {"status": "active"}
    if company_id:
        query["company_id"] = company_id
    automations = await db.email_automations.find(query, {"_id": 0}).to_list(1000)

    enrolled = already_enrolled = 0
    now = datetime.now(timezone.utc)

    for automation in automations:
        steps = automation.get("steps") or []
        if not steps:
            continue

        first_step = steps[0]
        first_time = now + step_delay(first_step) if first_step.get("type") == "delay" else now

        lists = await db.email_lists.find(
            {"company_id": automation["company_id"], "automation_id": automation["id"]}, {"_id": 0}
        ).to_list(500)

        enrolled_ids = {
            s["contact_id"] for s in await db.automation_states.find(
                {"automation_id": automation["id"]}, {"_id": 0, "contact_id": 1}
            ).to_list(100000)
        }

        for email_list in lists:
            contacts = await db.email_contacts.find(
                {"company_id": automation["company_id"], "list_id": email_list["id"], "status": "active"},
                {"_id": 0, "id": 1}
            ).to_list(100000)

            for contact in contacts:
                if contact["id"] in enrolled_ids:
                    already_enrolled += 1
                    continue
                state = {
                    "id": str(uuid.uuid4()),
                    "company_id": automation["company_id"],
                    "contact_id": contact["id"],
                    "automation_id": automation["id"],
                    "list_id": email_list["id"],
                    "status": "active",
                    "current_step_index": 0,
                    "next_step_time": first_time.isoformat(),
                    "emails_sent_in_sequence": 0,
                    "last_error": None,
                    "created_at": now.isoformat(),
                    "updated_at": now.isoformat(),
                }
                await db.automation_states.insert_one(state)
                enrolled_ids.add(contact["id"])
                enrolled += 1

    if enrolled:
        logger.info(f"[AUTOMATION] Enrolled {enrolled} contacts (company={company_id or 'all'})")
    return {"automations_checked": len(automations), "enrolled": enrolled, "already_enrolled": already_enrolled}


# ════════════════════════════════════════════════════════════════════════
# PROCESSING
# ════════════════════════════════════════════════════════════════════════

async def process_company_automations(company: Dict, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or datetime.now(timezone.utc)
    result = {
        "company_id": company["id"],
        "states_processed": 0,
        "emails_sent": 0,
        "errors": 0,
        "skipped_quota": 0,
        "skipped_circuit_breaker": 0,
        "error_messages": [],
    }

    quotas = await get_quotas_for_plan(company.get("plan_id"))
    tracking, changed = refresh_quota_tracking(company.get("quota_tracking"), now)
    if changed:
        await _save_tracking(company["id"], tracking)

    states = await db.automation_states.find(
        {"company_id": company["id"], "status": "active", "next_step_time": {"$lte": now.isoformat()}},
        {"_id": 0}
    ).sort("next_step_time", 1).to_list(PROCESS_BATCH_LIMIT)

    if is_circuit_breaker_open(tracking, now):
        result["skipped_circuit_breaker"] = len(states)
        logger.warning(f"[CIRCUIT_BREAKER] Company {company['id']} is paused, skipping {len(states)} states")
        return result

    automations: Dict[str, Optional[Dict]] = {}

    for index, state in enumerate(states):
        automation_id = state["automation_id"]
        if automation_id not in automations:
            automations[automation_id] = await db.email_automations.find_one(
                {"id": automation_id, "company_id": company["id"]}, {"_id": 0}
            )
        automation = automations[automation_id]

        if not automation:
            await _finish_state(state, "error", "Automation not found")
            result["errors"] += 1
            continue
        if automation.get("status") != "active":
            await _finish_state(state, "paused")
            continue

        contact = await db.email_contacts.find_one({"id": state["contact_id"], "company_id": company["id"]}, {"_id": 0})
        if not contact:
            await _finish_state(state, "error", "Contact not found")
            result["errors"] += 1
            continue
        if contact.get("status") != "active":
            await _finish_state(state, "completed")
            continue

        steps = automation.get("steps") or []
        step_index = state.get("current_step_index", 0)
        if step_index >= len(steps):
            await _finish_state(state, "completed")
            continue

        step = steps[step_index]
        result["states_processed"] += 1

        if step.get("type") == "delay":
            await _advance_state(state, steps, now, sent_email=False)
            continue

        if not step.get("subject") or not step.get("content"):
            await _finish_state(state, "error", f"Step {step_index + 1} has no subject or content")
            result["errors"] += 1
            continue

        provider = select_email_provider(company, automation)
        if not provider:
            await _finish_state(state, "error", "No email provider configured")
            result["errors"] += 1
            continue

        quota = check_quota(tracking, quotas, now)
        if not quota["allowed"]:
            if quota["reason"] == "circuit_breaker":
                result["skipped_circuit_breaker"] += len(states) - index
                break
            result["skipped_quota"] += 1
            continue

        subject = personalize(step["subject"], contact, company)
        html = personalize(step["content"], contact, company)
        sender_email, sender_name = resolve_sender(company, automation, provider)

        send = await send_email(
            provider, get_api_keys(company, provider), sender_email, sender_name,
            contact["email"], contact.get("name", ""), subject, html,
        )

        if not send.get("success"):
            error = send.get("error") or "Unknown error"
            await _finish_state(state, "error", error)
            result["errors"] += 1
            result["error_messages"].append(f"{contact['email']}: {error}")
            tracking, tripped = apply_send_failure(tracking, quotas, now)
            await _save_tracking(company["id"], tracking)
            if tripped:
                await _notify_circuit_breaker(company, tracking, error)
            continue

        tracking = apply_send_success(tracking, now)
        await _save_tracking(company["id"], tracking)
        result["emails_sent"] += 1

        await db.email_contacts.update_one(
            {"id": contact["id"]},
            {"$inc": {"emails_sent": 1}, "$set": {"last_email_sent": now.isoformat(), "updated_at": now_iso()}}
        )

        lead = await find_lead_by_email(company["id"], contact["email"])
        if lead:
            await log_email(
                company["id"], lead["id"], subject, html,
                metadata={"automation_id": automation["id"], "step_index": step_index,
                          "provider": provider, "message_id": send.get("message_id")},
            )

        await _advance_state(state, steps, now, sent_email=True)

    return result


async def run_all_automations() -> Dict[str, Any]:
    """Enroll + process for every active company with an email provider."""
    totals = {
        "companies_processed": 0,
        "total_states_processed": 0,
        "total_emails_sent": 0,
        "total_new_enrollments": 0,
        "total_errors": 0,
        "skipped_quota": 0,
        "skipped_circuit_breaker": 0,
        "errors": [],
    }

    companies = await db.companies.find({"status": "active"}, {"_id": 0}).to_list(10000)

    for company in companies:
        if not has_email_provider(company):
            continue
        try:
            enrollment = await enroll_contacts(company["id"])
            result = await process_company_automations(company)
        except Exception as e:
            logger.error(f"[AUTOMATION] Company {company['id']} failed: {e}")
            totals["total_errors"] += 1
            totals["errors"].append(f"{company.get('name', company['id'])}: {e}")
            continue

        totals["companies_processed"] += 1
        totals["total_new_enrollments"] += enrollment["enrolled"]
        totals["total_states_processed"] += result["states_processed"]
        totals["total_emails_sent"] += result["emails_sent"]
        totals["total_errors"] += result["errors"]
        totals["skipped_quota"] += result["skipped_quota"]
        totals["skipped_circuit_breaker"] += result["skipped_circuit_breaker"]
        totals["errors"].extend(f"{company.get('name', company['id'])}: {m}" for m in result["error_messages"])

    totals["errors"] = totals["errors"][:MAX_RUN_ERRORS]
    logger.info(
        f"[AUTOMATION] Run done: companies={totals['companies_processed']} "
        f"sent={totals['total_emails_sent']} errors={totals['total_errors']}"
    )
    return totals
