"""
OmniFlow CRM - Auth & user models
Role + Permission hybrid model.
Roles are presets. Permissions are the real authority.
"""

from pydantic import BaseModel, field_validator
from typing import Optional, Dict


VALID_ROLES = ["super_admin", "admin", "manager", "agent", "viewer"]


class UserLogin(BaseModel):
    email: str
    password: str


class SignupRequest(BaseModel):
    """Self-service signup: creates the company and its first admin."""
    company_name: str
    name: str
    email: str
    password: str

    @field_validator("company_name", "name")
    @classmethod
    def not_blank(cls, v):
        if not v or not v.strip():
            raise ValueError("Field cannot be empty")
        return v.strip()

    @field_validator("password")
    @classmethod
    def password_length(cls, v):
        if len(v) < 8:
            raise ValueError("Password must be at least 8 characters")
        return v


class UserCreate(BaseModel):
    email: str
    password: str
    name: str
    role: str = "agent"
    permissions: Optional[Dict[str, bool]] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        if v not in VALID_ROLES or v == "super_admin":
            raise ValueError(f"Invalid role: {v}")
        return v


class UserUpdate(BaseModel):
    name: Optional[str] = None
    role: Optional[str] = None
    permissions: Optional[Dict[str, bool]] = None
    is_active: Optional[bool] = None

    @field_validator("role")
    @classmethod
    def validate_role(cls, v):
        if v is not None and (v not in VALID_ROLES or v == "super_admin"):
            raise ValueError(f"Invalid role: {v}")
        return v
