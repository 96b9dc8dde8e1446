"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  OmniFlow CRM - Email automations                                            ║
║                                                                              ║
║  Collections:                                                                ║
║    email_automations   sequences of email / delay steps                      ║
║    email_lists         segments, linked to at most one automation            ║
║    email_contacts      members of a list                                     ║
║    automation_states   one per (contact, automation), driven by the runner   ║
║                                                                              ║
║  RULES:                                                                      ║
║  - steps are validated on every save (AutomationConfigError)                 ║
║  - activation needs at least one email step                                  ║
║  - deactivate pauses active states, activate resumes paused ones             ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import csv
import io
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional, List, Dict, Any

from config import db, now_iso
from models.automation import CONTACT_STATUSES
from models.lead import is_valid_email_format

logger = logging.getLogger("automations")


class AutomationConfigError(Exception):
    """Invalid step definitions."""


# ════════════════════════════════════════════════════════════════════════
# STEPS
# ════════════════════════════════════════════════════════════════════════

def validate_steps(steps: List[Dict[str, Any]]) -> None:
    for index, step in enumerate(steps, start=1):
        step_type = step.get("type")
        if step_type == "email":
            if not (step.get("subject") or "").strip() or not (step.get("content") or "").strip():
                raise AutomationConfigError(f"Step {index}: email steps need a subject and content")
        elif step_type == "delay":
            days = step.get("delay_days") or 0
            hours = step.get("delay_hours") or 0
            if days < 0 or hours < 0:
                raise AutomationConfigError(f"Step {index}: delay cannot be negative")
            if days == 0 and hours == 0:
                raise AutomationConfigError(f"Step {index}: delay must be at least 1 hour or 1 day")
        else:
            raise AutomationConfigError(f"Step {index}: unknown step type {step_type!r}")


def step_delay(step: Dict[str, Any]) -> timedelta:
    return timedelta(days=step.get("delay_days") or 0, hours=step.get("delay_hours") or 0)


def calculate_next_step_time(step: Dict[str, Any], now: Optional[datetime] = None) -> str:
    """now + delay_days*24h + delay_hours*1h"""
    now = now or datetime.now(timezone.utc)
    return (now + step_delay(step)).isoformat()


def has_email_step(steps: List[Dict[str, Any]]) -> bool:
    return any(s.get("type") == "email" for s in steps or [])


# ════════════════════════════════════════════════════════════════════════
# AUTOMATIONS
# ════════════════════════════════════════════════════════════════════════

async def create_automation(company_id: str, data: Dict[str, Any], created_by: str = "system") -> Dict:
    steps = data.get("steps") or []
    validate_steps(steps)

    now = now_iso()
    automation = {
        "id": str(uuid.uuid4()),
        "company_id": company_id,
        "name": data["name"],
        "description": data.get("description") or "",
        "status": "draft",
        "steps": steps,
        "delivery_config": data.get("delivery_config"),
        "created_by": created_by,
        "created_at": now,
        "updated_at": now,
    }
    await db.email_automations.insert_one(automation)
    automation.pop("_id", None)
    return automation


async def get_automation(company_id: str, automation_id: str) -> Optional[Dict]:
    return await db.email_automations.find_one({"id": automation_id, "company_id": company_id}, {"_id": 0})


async def list_automations(company_id: str, status: str = None) -> List[Dict]:
    query = {"company_id": company_id}
    if status:
        query["status"] = status
    return await db.email_automations.find(query, {"_id": 0}).sort("created_at", -1).to_list(500)


async def update_automation(company_id: str, automation_id: str, data: Dict[str, Any]) -> Optional[Dict]:
    automation = await get_automation(company_id, automation_id)
    if not automation:
        return None

    update = {k: v for k, v in data.items() if v is not None}
    if "steps" in update:
        validate_steps(update["steps"])
        if automation["status"] == "active" and not has_email_step(update["steps"]):
            raise AutomationConfigError("An active automation needs at least one email step")

    if update:
        update["updated_at"] = now_iso()
        await db.email_automations.update_one({"id": automation_id, "company_id": company_id}, {"$set": update})
    return await get_automation(company_id, automation_id)


async def delete_automation(company_id: str, automation_id: str) -> bool:
    result = await db.email_automations.delete_one({"id": automation_id, "company_id": company_id})
    if result.deleted_count == 0:
        return False
    # Unlink lists and drop progress
    await db.email_lists.update_many(
        {"company_id": company_id, "automation_id": automation_id},
        {"$set": {"automation_id": None, "updated_at": now_iso()}}
    )
    await db.automation_states.delete_many({"company_id": company_id, "automation_id": automation_id})
    return True


async def activate_automation(company_id: str, automation_id: str) -> Dict:
    automation = await get_automation(company_id, automation_id)
    if not automation:
        return {"success": False, "error": "Automation not found"}
    if not has_email_step(automation.get("steps")):
        return {"success": False, "error": "Add at least one email step before activating"}
    if automation["status"] == "active":
        return {"success": True, "status": "active", "changed": False, "resumed": 0}

    now = now_iso()
    await db.email_automations.update_one(
        {"id": automation_id, "company_id": company_id},
        {"$set": {"status": "active", "updated_at": now}}
    )
    resumed = await db.automation_states.update_many(
        {"company_id": company_id, "automation_id": automation_id, "status": "paused"},
        {"$set": {"status": "active", "updated_at": now}}
    )
    logger.info(f"[AUTOMATION] Activated {automation_id} (resumed {resumed.modified_count} states)")
    return {"success": True, "status": "active", "changed": True, "resumed": resumed.modified_count}


async def deactivate_automation(company_id: str, automation_id: str) -> Dict:
    automation = await get_automation(company_id, automation_id)
    if not automation:
        return {"success": False, "error": "Automation not found"}
    if automation["status"] == "inactive":
        return {"success": True, "status": "inactive", "changed": False, "paused": 0}

    now = now_iso()
    await db.email_automations.update_one(
        {"id": automation_id, "company_id": company_id},
        {"$set": {"status": "inactive", "updated_at": now}}
    )
    paused = await db.automation_states.update_many(
        {"company_id": company_id, "automation_id": automation_id, "status": "active"},
        {"$set": {"status": "paused", "updated_at": now}}
    )
    logger.info(f"[AUTOMATION] Deactivated {automation_id} (paused {paused.modified_count} states)")
    return {"success": True, "status": "inactive", "changed": True, "paused": paused.modified_count}


async def get_automation_states(company_id: str, automation_id: str, status: str = None, limit: int = 500) -> List[Dict]:
    query = {"company_id": company_id, "automation_id": automation_id}
    if status:
        query["status"] = status
    return await db.automation_states.find(query, {"_id": 0}).sort("created_at", -1).to_list(limit)


async def count_states_by_status(company_id: str, automation_id: str = None) -> Dict[str, int]:
    query = {"company_id": company_id}
    if automation_id:
        query["automation_id"] = automation_id
    counts = {}
    for status in ("active", "paused", "completed", "error"):
        counts[status] = await db.automation_states.count_documents({**query, "status": status})
    return counts


# ════════════════════════════════════════════════════════════════════════
# EMAIL LISTS
# ════════════════════════════════════════════════════════════════════════

async def create_list(company_id: str, data: Dict[str, Any]) -> Dict:
    automation_id = data.get("automation_id")
    if automation_id and not await get_automation(company_id, automation_id):
        return {"success": False, "error": "Automation not found"}

    now = now_iso()
    email_list = {
        "id": str(uuid.uuid4()),
        "company_id": company_id,
        "name": data["name"],
        "description": data.get("description") or "",
        "automation_id": automation_id,
        "created_at": now,
        "updated_at": now,
    }
    await db.email_lists.insert_one(email_list)
    email_list.pop("_id", None)
    return {"success": True, "list": email_list}


async def get_list(company_id: str, list_id: str) -> Optional[Dict]:
    return await db.email_lists.find_one({"id": list_id, "company_id": company_id}, {"_id": 0})


async def list_lists(company_id: str) -> List[Dict]:
    lists = await db.email_lists.find({"company_id": company_id}, {"_id": 0}).sort("created_at", -1).to_list(500)
    for email_list in lists:
        email_list["contact_count"] = await db.email_contacts.count_documents(
            {"company_id": company_id, "list_id": email_list["id"]}
        )
    return lists


async def link_list(company_id: str, list_id: str, automation_id: Optional[str]) -> Dict:
    """Link a list to an automation (replacing any previous link), or unlink with None."""
    email_list = await get_list(company_id, list_id)
    if not email_list:
        return {"success": False, "error": "List not found"}
    if automation_id and not await get_automation(company_id, automation_id):
        return {"success": False, "error": "Automation not found"}

    await db.email_lists.update_one(
        {"id": list_id, "company_id": company_id},
        {"$set": {"automation_id": automation_id, "updated_at": now_iso()}}
    )
    return {"success": True, "list_id": list_id, "automation_id": automation_id,
            "previous_automation_id": email_list.get("automation_id")}


async def delete_list(company_id: str, list_id: str) -> bool:
    result = await db.email_lists.delete_one({"id": list_id, "company_id": company_id})
    if result.deleted_count == 0:
        return False
    await db.email_contacts.delete_many({"company_id": company_id, "list_id": list_id})
    await db.automation_states.delete_many({"company_id": company_id, "list_id": list_id})
    return True


# ════════════════════════════════════════════════════════════════════════
# CONTACTS
# ════════════════════════════════════════════════════════════════════════

def _contact_doc(company_id: str, list_id: str, name: str, email: str, status: str = "active") -> Dict:
    now = now_iso()
    return {
        "id": str(uuid.uuid4()),
        "company_id": company_id,
        "list_id": list_id,
        "name": (name or "").strip(),
        "email": email.strip().lower(),
        "status": status,
        "emails_sent": 0,
        "last_email_sent": None,
        "created_at": now,
        "updated_at": now,
    }


async def add_contact(company_id: str, list_id: str, data: Dict[str, Any]) -> Dict:
    if not await get_list(company_id, list_id):
        return {"success": False, "error": "List not found"}

    email = (data.get("email") or "").strip().lower()
    existing = await db.email_contacts.find_one(
        {"company_id": company_id, "list_id": list_id, "email": email}, {"_id": 0, "id": 1}
    )
    if existing:
        return {"success": False, "error": f"{email} is already in this list"}

    contact = _contact_doc(company_id, list_id, data.get("name"), email, data.get("status") or "active")
    await db.email_contacts.insert_one(contact)
    contact.pop("_id", None)
    return {"success": True, "contact": contact}


async def list_contacts(company_id: str, list_id: str, status: str = None, limit: int = 5000) -> List[Dict]:
    query = {"company_id": company_id, "list_id": list_id}
    if status:
        query["status"] = status
    return await db.email_contacts.find(query, {"_id": 0}).sort("created_at", -1).to_list(limit)


async def get_contact(company_id: str, contact_id: str) -> Optional[Dict]:
    return await db.email_contacts.find_one({"id": contact_id, "company_id": company_id}, {"_id": 0})


async def update_contact(company_id: str, contact_id: str, data: Dict[str, Any]) -> Optional[Dict]:
    update = {k: v for k, v in data.items() if v is not None}
    if "status" in update and update["status"] not in CONTACT_STATUSES:
        raise ValueError(f"Invalid status: {update['status']}")
    if update:
        update["updated_at"] = now_iso()
        await db.email_contacts.update_one({"id": contact_id, "company_id": company_id}, {"$set": update})
    return await get_contact(company_id, contact_id)


async def delete_contact(company_id: str, contact_id: str) -> bool:
    result = await db.email_contacts.delete_one({"id": contact_id, "company_id": company_id})
    if result.deleted_count == 0:
        return False
    await db.automation_states.delete_many({"company_id": company_id, "contact_id": contact_id})
    return True


async def import_contacts_csv(company_id: str, list_id: str, content: str) -> Dict:
    """Columns Name, Email (case-insensitive). Duplicates in the list are skipped."""
    if not await get_list(company_id, list_id):
        return {"success": False, "error": "List not found"}

    reader = csv.DictReader(io.StringIO(content.lstrip("\ufeff")))
    existing = {
        c["email"] for c in await db.email_contacts.find(
            {"company_id": company_id, "list_id": list_id}, {"_id": 0, "email": 1}
        ).to_list(100000)
    }

    added, skipped, errors = 0, 0, []
    for line_no, raw in enumerate(reader, start=2):
        row = {(k or "").strip().lower(): (v or "").strip() for k, v in raw.items() if isinstance(v, str)}
        email = row.get("email", "").lower()
        if not email or not is_valid_email_format(email):
            skipped += 1
            if email:
                errors.append(f"Line {line_no}: invalid email {email}")
            continue
        if email in existing:
            skipped += 1
            continue
        await db.email_contacts.insert_one(_contact_doc(company_id, list_id, row.get("name", ""), email))
        existing.add(email)
        added += 1

    logger.info(f"[AUTOMATION] CSV contacts list={list_id} added={added} skipped={skipped}")
    return {"success": True, "added": added, "skipped": skipped, "errors": errors[:50]}
