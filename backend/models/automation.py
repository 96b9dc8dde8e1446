"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  OmniFlow CRM - Email automation models                                      ║
║                                                                              ║
║  EmailAutomation: ordered steps (email | delay)                              ║
║  EmailList: segment, linked to at most one automation                        ║
║  AutomationState: progress of one contact through one automation            ║
║                                                                              ║
║  STATE MACHINE:                                                              ║
║    active -> completed | error | paused                                      ║
║    paused -> active (automation re-activated)                                ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import Optional, List, Literal
from pydantic import BaseModel, Field, field_validator


AUTOMATION_STATUSES = ["active", "inactive", "draft"]
STATE_STATUSES = ["active", "paused", "completed", "error"]
CONTACT_STATUSES = ["active", "unsubscribed", "bounced"]
EMAIL_PROVIDERS = ["brevo", "sender", "smtp"]


class AutomationStep(BaseModel):
    type: Literal["email", "delay"]
    subject: Optional[str] = None
    content: Optional[str] = None
    delay_days: int = 0
    delay_hours: int = 0

    @field_validator("delay_days", "delay_hours")
    @classmethod
    def non_negative(cls, v):
        if v < 0:
            raise ValueError("delay values must be >= 0")
        return v


class DeliveryConfig(BaseModel):
    provider: Literal["brevo", "sender", "smtp"]
    sender_email: Optional[str] = ""
    sender_name: Optional[str] = ""


class AutomationCreate(BaseModel):
    name: str
    description: Optional[str] = ""
    steps: List[AutomationStep] = Field(default_factory=list)
    delivery_config: Optional[DeliveryConfig] = None


class AutomationUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    steps: Optional[List[AutomationStep]] = None
    delivery_config: Optional[DeliveryConfig] = None


class EmailListCreate(BaseModel):
    name: str
    description: Optional[str] = ""
    automation_id: Optional[str] = None


class EmailListLink(BaseModel):
    automation_id: Optional[str] = None


class EmailContactCreate(BaseModel):
    name: Optional[str] = ""
    email: str
    status: str = "active"

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v):
        v = (v or "").strip().lower()
        if "@" not in v:
            raise ValueError(f"Invalid email: {v}")
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in CONTACT_STATUSES:
            raise ValueError(f"Invalid status: {v}. Valid: {CONTACT_STATUSES}")
        return v


class EmailContactUpdate(BaseModel):
    name: Optional[str] = None
    status: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v is not None and v not in CONTACT_STATUSES:
            raise ValueError(f"Invalid status: {v}. Valid: {CONTACT_STATUSES}")
        return v
