"""
OmniFlow CRM - Deal models

A deal is a pipeline opportunity linked to a contact (lead).
Status drives a fixed probability lookup; won/lost writes back to the contact.
"""

from typing import Optional
from pydantic import BaseModel, field_validator


DEAL_STATUSES = ["proposal", "negotiation", "closing", "won", "lost"]
CLOSED_DEAL_STATUSES = ("won", "lost")

DEFAULT_PROBABILITIES = {
    "proposal": 20,
    "negotiation": 50,
    "closing": 80,
    "won": 100,
    "lost": 0,
}


def _check_probability(v):
    if v is not None and not (0 <= v <= 100):
        raise ValueError("probability must be between 0 and 100")
    return v


class DealCreate(BaseModel):
    contact_id: str
    name: str
    amount: float = 0.0
    currency: str = "USD"
    status: str = "proposal"
    probability: Optional[int] = None
    expected_close_date: Optional[str] = None
    notes: Optional[str] = ""

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v not in DEAL_STATUSES:
            raise ValueError(f"Invalid status: {v}. Valid: {DEAL_STATUSES}")
        return v

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v):
        if v < 0:
            raise ValueError("amount must be >= 0")
        return v

    @field_validator("probability")
    @classmethod
    def validate_probability(cls, v):
        return _check_probability(v)


class DealUpdate(BaseModel):
    name: Optional[str] = None
    amount: Optional[float] = None
    currency: Optional[str] = None
    status: Optional[str] = None
    probability: Optional[int] = None
    expected_close_date: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("status")
    @classmethod
    def validate_status(cls, v):
        if v is not None and v not in DEAL_STATUSES:
            raise ValueError(f"Invalid status: {v}. Valid: {DEAL_STATUSES}")
        return v

    @field_validator("amount")
    @classmethod
    def validate_amount(cls, v):
        if v is not None and v < 0:
            raise ValueError("amount must be >= 0")
        return v

    @field_validator("probability")
    @classmethod
    def validate_probability(cls, v):
        return _check_probability(v)
