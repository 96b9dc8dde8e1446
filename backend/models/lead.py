"""
OmniFlow CRM - Lead / Contact models

Status pipeline: New -> Contacted -> Qualified -> Won | Lost
"""

from typing import Optional
from pydantic import BaseModel, field_validator
import re


LEAD_STATUSES = ["New", "Contacted", "Qualified", "Won", "Lost"]


def is_valid_email_format(email: str) -> bool:
    if not email:
        return False
    pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
    return bool(re.match(pattern, email))


def normalize_lead_status(value: Optional[str]) -> str:
    """Case-insensitive match against LEAD_STATUSES, default New."""
    if not value:
        return "New"
    for status in LEAD_STATUSES:
        if status.lower() == value.strip().lower():
            return status
    return "New"


class LeadCreate(BaseModel):
    name: str
    email: str
    phone: Optional[str] = ""
    status: str = "New"
    source: Optional[str] = ""
    assigned_to: Optional[str] = ""
    company_name: Optional[str] = ""
    role: Optional[str] = ""
    notes: Optional[str] = ""

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        v = (v or "").strip().lower()
        if not is_valid_email_format(v):
            raise ValueError(f"Invalid email: {v}")
        return v

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in LEAD_STATUSES:
            raise ValueError(f"Invalid status: {v}. Valid: {LEAD_STATUSES}")
        return v


class LeadUpdate(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    source: Optional[str] = None
    assigned_to: Optional[str] = None
    company_name: Optional[str] = None
    role: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if v is None:
            return v
        v = v.strip().lower()
        if not is_valid_email_format(v):
            raise ValueError(f"Invalid email: {v}")
        return v


class LeadStatusUpdate(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in LEAD_STATUSES:
            raise ValueError(f"Invalid status: {v}. Valid: {LEAD_STATUSES}")
        return v
