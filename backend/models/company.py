"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  OmniFlow CRM - Company model (tenant root)                                  ║
║                                                                              ║
║  - Every tenant document carries company_id                                  ║
║  - Companies are never hard-deleted (status=inactive|suspended)              ║
║  - Third-party secrets are stored encrypted (see services.encryption)        ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

from typing import Optional, Dict, List
from pydantic import BaseModel, field_validator


COMPANY_STATUSES = ["active", "inactive", "suspended"]

# provider -> (all fields, secret fields)
API_KEY_PROVIDERS: Dict[str, Dict[str, List[str]]] = {
    "brevo": {"fields": ["api_key"], "secrets": ["api_key"]},
    "sender": {"fields": ["api_key"], "secrets": ["api_key"]},
    "smtp": {
        "fields": ["host", "port", "username", "password", "from_email", "from_name"],
        "secrets": ["password"],
    },
    "twilio": {
        "fields": ["account_sid", "auth_token", "phone_number"],
        "secrets": ["auth_token"],
    },
    "msg91": {"fields": ["auth_key", "sender_id"], "secrets": ["auth_key"]},
    "fast2sms": {"fields": ["api_key", "sender_id"], "secrets": ["api_key"]},
    "meta_whatsapp": {
        "fields": ["access_token", "phone_number_id"],
        "secrets": ["access_token"],
    },
    "aisensy": {"fields": ["api_key", "campaign_name"], "secrets": ["api_key"]},
    "gupshup": {
        "fields": ["api_key", "app_name", "source_number"],
        "secrets": ["api_key"],
    },
}


class CompanyUpdate(BaseModel):
    name: Optional[str] = None
    status: Optional[str] = None
    # Default "From" for outbound email when an automation has no delivery_config
    sender_email: Optional[str] = None
    sender_name: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v is not None and v not in COMPANY_STATUSES:
            raise ValueError(f"Invalid status: {v}. Valid: {COMPANY_STATUSES}")
        return v


class ApiKeysUpdate(BaseModel):
    """Values for one provider. Missing fields are left untouched."""
    values: Dict[str, str]


class PlanAssignment(BaseModel):
    plan_id: str


class ByokUpdate(BaseModel):
    enabled: bool
    api_key: Optional[str] = ""


class BonusCredits(BaseModel):
    credits: int
    type: str = "lifetime"

    @field_validator("credits")
    @classmethod
    def positive(cls, v):
        if v <= 0:
            raise ValueError("credits must be > 0")
        return v

    @field_validator("type")
    @classmethod
    def validate_type(cls, v):
        if v not in ("lifetime", "monthly"):
            raise ValueError("type must be lifetime or monthly")
        return v
