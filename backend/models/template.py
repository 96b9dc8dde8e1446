"""
OmniFlow CRM - Template marketplace models
"""

from typing import Optional, List, Literal
from pydantic import BaseModel, Field, field_validator


TemplateType = Literal["email", "sms", "whatsapp"]


class TemplateCreate(BaseModel):
    name: str
    description: Optional[str] = ""
    type: TemplateType = "email"
    category: Optional[str] = "general"
    industry: List[str] = Field(default_factory=lambda: ["general"])
    subject: Optional[str] = None
    content: str
    tags: List[str] = Field(default_factory=list)
    is_public: bool = False


class TemplateUse(BaseModel):
    type: TemplateType = "email"


class TemplateRatingCreate(BaseModel):
    rating: int
    review: Optional[str] = None

    @field_validator("rating")
    @classmethod
    def validate_rating(cls, v):
        if v < 1 or v > 5:
            raise ValueError("Rating must be between 1 and 5")
        return v
