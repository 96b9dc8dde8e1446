"""
OmniFlow CRM - Digital business card models

Public profile with nested links, branding and lead-capture config.
"""

from typing import Optional, List, Literal
from pydantic import BaseModel, Field, field_validator
import re


CARD_STATUSES = ["draft", "active", "inactive"]

USERNAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{2,39}$")


class BusinessInfo(BaseModel):
    name: str
    title: Optional[str] = ""
    bio: Optional[str] = ""
    phone: Optional[str] = ""
    email: Optional[str] = ""
    website: Optional[str] = ""
    address: Optional[str] = ""


class CardLink(BaseModel):
    id: str
    type: str = "website"
    label: str
    url: str


class Branding(BaseModel):
    primary_color: str = "#3F51B5"
    secondary_color: str = "#FFFFFF"
    logo_url: Optional[str] = ""
    cover_url: Optional[str] = ""


class LeadCaptureConfig(BaseModel):
    enabled: bool = True
    form_title: str = "Get in touch"
    fields: List[str] = Field(default_factory=lambda: ["name", "email", "phone", "message"])


def _normalize_username(v: str) -> str:
    v = (v or "").strip().lower()
    if not USERNAME_PATTERN.match(v):
        raise ValueError(
            "Username must be 3-40 chars: lowercase letters, digits, '-' or '_'"
        )
    return v


class DigitalCardCreate(BaseModel):
    username: str
    status: Literal["draft", "active", "inactive"] = "draft"
    business_info: BusinessInfo
    links: List[CardLink] = Field(default_factory=list)
    branding: Branding = Field(default_factory=Branding)
    lead_capture: LeadCaptureConfig = Field(default_factory=LeadCaptureConfig)

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        return _normalize_username(v)


class DigitalCardUpdate(BaseModel):
    username: Optional[str] = None
    business_info: Optional[BusinessInfo] = None
    links: Optional[List[CardLink]] = None
    branding: Optional[Branding] = None
    lead_capture: Optional[LeadCaptureConfig] = None

    @field_validator("username")
    @classmethod
    def validate_username(cls, v):
        if v is None:
            return v
        return _normalize_username(v)


class CardStatusUpdate(BaseModel):
    status: Literal["draft", "active", "inactive"]


class CardLeadSubmission(BaseModel):
    """Public contact form. Validation happens in the service so errors come back per-field."""
    name: Optional[str] = ""
    email: Optional[str] = None
    phone: Optional[str] = None
    message: Optional[str] = None
    honeypot: Optional[str] = None
