"""
OmniFlow CRM - Event Logger

Centralized audit trail for sensitive actions (API keys, plans,
circuit breaker trips, imports, cron runs).
Single function to call from any route/service.
"""

import uuid
from config import db, now_iso


async def log_event(
    action: str,
    entity_type: str,
    entity_id: str,
    user: str = "system",
    company_id: str = "",
    details: dict = None,
    related: dict = None
):
    """
    Write a single event to the event_log collection.

    Args:
        action: e.g. api_keys_update, plan_change, circuit_breaker_trip, leads_import
        entity_type: company | lead | automation | campaign | cron | user
        entity_id: ID of the primary entity
        user: email of user performing action
        company_id: tenant the event belongs to
        details: free-form dict (reason, old_value, new_value, etc.)
        related: linked entity IDs
    """
    await db.event_log.insert_one({
        "id": str(uuid.uuid4()),
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "company_id": company_id,
        "user": user,
        "details": details or {},
        "related": related or {},
        "created_at": now_iso()
    })
