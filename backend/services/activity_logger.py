"""
Contact timeline (activities collection)

Append-only: activities are inserted as a side effect of other mutations
(messages sent, status changes, deals) and never updated.
Every insert refreshes the contact's last_contacted.
"""

from config import db, now_iso
import uuid


async def log_activity(
    company_id: str,
    contact_id: str,
    activity_type: str,
    content: str,
    subject: str = None,
    direction: str = None,
    metadata: dict = None,
    created_by: str = "system",
    occurred_at: str = None
):
    """
    Types: email, sms, whatsapp, call, meeting, note, task,
           deal_created, deal_updated, status_change
    """
    entry = {
        "id": str(uuid.uuid4()),
        "company_id": company_id,
        "contact_id": contact_id,
        "type": activity_type,
        "content": content,
        "subject": subject,
        "direction": direction,
        "metadata": metadata or {},
        "created_by": created_by,
        "occurred_at": occurred_at or now_iso(),
        "created_at": now_iso()
    }

    await db.activities.insert_one(entry)
    entry.pop("_id", None)

    await db.leads.update_one(
        {"id": contact_id, "company_id": company_id},
        {"$set": {"last_contacted": entry["occurred_at"]}}
    )
    return entry


# ---- Helpers per channel ----

async def log_email(company_id, contact_id, subject, content, created_by="system", metadata=None):
    return await log_activity(company_id, contact_id, "email", content, subject=subject,
                              direction="outbound", metadata=metadata, created_by=created_by)


async def log_sms(company_id, contact_id, content, created_by="system", metadata=None):
    return await log_activity(company_id, contact_id, "sms", content,
                              direction="outbound", metadata=metadata, created_by=created_by)


async def log_whatsapp(company_id, contact_id, content, created_by="system", metadata=None):
    return await log_activity(company_id, contact_id, "whatsapp", content,
                              direction="outbound", metadata=metadata, created_by=created_by)


async def log_note(company_id, contact_id, content, created_by="system"):
    return await log_activity(company_id, contact_id, "note", content, created_by=created_by)


async def log_call(company_id, contact_id, content, duration_minutes: int = None, created_by="system"):
    metadata = {"duration_minutes": duration_minutes} if duration_minutes is not None else None
    return await log_activity(company_id, contact_id, "call", content,
                              metadata=metadata, created_by=created_by)


async def log_meeting(company_id, contact_id, content, subject=None, created_by="system", metadata=None):
    return await log_activity(company_id, contact_id, "meeting", content, subject=subject,
                              metadata=metadata, created_by=created_by)


async def log_task(company_id, contact_id, content, subject=None, created_by="system", metadata=None):
    return await log_activity(company_id, contact_id, "task", content, subject=subject,
                              metadata=metadata, created_by=created_by)


async def log_status_change(company_id, contact_id, old_status, new_status, created_by="system"):
    return await log_activity(
        company_id,
        contact_id,
        "status_change",
        f'Status changed from "{old_status}" to "{new_status}"',
        metadata={"old_status": old_status, "new_status": new_status},
        created_by=created_by
    )


# ---- Queries ----

async def get_contact_activities(company_id: str, contact_id: str, limit: int = 50):
    return await db.activities.find(
        {"company_id": company_id, "contact_id": contact_id},
        {"_id": 0}
    ).sort("occurred_at", -1).limit(limit).to_list(limit)


async def get_recent_activities(company_id: str, limit: int = 20, activity_type: str = None):
    query = {"company_id": company_id}
    if activity_type:
        query["type"] = activity_type

    return await db.activities.find(query, {"_id": 0}) \
        .sort("occurred_at", -1) \
        .limit(limit) \
        .to_list(limit)
