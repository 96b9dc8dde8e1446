"""
OmniFlow CRM - Activity models (contact timeline, append-only)
"""

from typing import Optional, Dict, Any
from pydantic import BaseModel, field_validator


ACTIVITY_TYPES = [
    "email",
    "sms",
    "whatsapp",
    "call",
    "meeting",
    "note",
    "task",
    "deal_created",
    "deal_updated",
    "status_change",
]

# Types a user may log by hand; the others are written by the system
MANUAL_ACTIVITY_TYPES = ["call", "meeting", "note", "task"]


class ActivityCreate(BaseModel):
    contact_id: str
    type: str
    content: str
    subject: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    occurred_at: Optional[str] = None

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v not in MANUAL_ACTIVITY_TYPES:
            raise ValueError(f"Invalid activity type: {v}. Valid: {MANUAL_ACTIVITY_TYPES}")
        return v

    @field_validator("content")
    @classmethod
    def not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("content cannot be empty")
        return v
