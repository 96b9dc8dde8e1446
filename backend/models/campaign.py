"""
OmniFlow CRM - AI content, messaging & campaign job request models
"""

from typing import Optional, List, Literal
from pydantic import BaseModel, Field


CampaignTone = Literal["Formal", "Informal", "Friendly", "Professional", "Enthusiastic", "Urgent"]


class EmailContentRequest(BaseModel):
    campaign_goal: str
    target_audience: str
    key_points: str
    tone: CampaignTone = "Professional"
    call_to_action: Optional[str] = ""
    call_to_action_link: Optional[str] = ""


class SubjectCtaRequest(BaseModel):
    campaign_goal: str
    target_audience: Optional[str] = ""
    subject_tone: Optional[str] = "Benefit-driven"
    cta_tone: Optional[str] = "Clear & Direct"
    num_suggestions: int = Field(default=3, ge=1, le=5)


class SmsContentRequest(BaseModel):
    message_context: str
    desired_outcome: str
    business_name: Optional[str] = ""
    recipient_name: Optional[str] = ""


class WhatsAppContentRequest(BaseModel):
    lead_name: str
    lead_context: str
    desired_outcome: str
    sender_business_name: Optional[str] = ""


class UnifiedCampaignRequest(BaseModel):
    campaign_goal: str
    target_audience: str
    key_points: str
    tone: CampaignTone = "Professional"
    call_to_action: str
    call_to_action_link: Optional[str] = ""
    business_context: Optional[str] = ""


class CostEstimateRequest(BaseModel):
    text_generations: int = 0
    avg_input_tokens: int = 0
    avg_output_tokens: int = 0
    image_generations: int = 0
    tts_requests: int = 0
    avg_characters: int = 0


class SendEmailRequest(BaseModel):
    lead_id: str
    subject: str
    html_content: str
    provider: Optional[Literal["brevo", "sender", "smtp"]] = None
    sender_email: Optional[str] = ""
    sender_name: Optional[str] = ""


class SendSmsRequest(BaseModel):
    lead_id: str
    message: str
    provider: Literal["twilio", "msg91", "fast2sms"] = "twilio"
    template_id: Optional[str] = None
    dlt_template_id: Optional[str] = None


class BulkSmsRequest(BaseModel):
    lead_ids: List[str] = Field(default_factory=list)
    status: Optional[str] = None
    message: str
    provider: Literal["twilio", "msg91", "fast2sms"] = "twilio"
    template_id: Optional[str] = None
    dlt_template_id: Optional[str] = None


class SendWhatsAppRequest(BaseModel):
    lead_id: str
    provider: Literal["meta_whatsapp", "aisensy", "gupshup"] = "meta_whatsapp"
    template_name: str
    language_code: str = "en"
    params: List[str] = Field(default_factory=list)


# ==================== CAMPAIGN JOBS ====================

class CampaignAudience(BaseModel):
    name: str = Field(..., min_length=1)
    lead_ids: List[str] = Field(default_factory=list)
    status: Optional[str] = None
    send_now: bool = False


class EmailCampaignRequest(CampaignAudience):
    subject: str = Field(..., min_length=1)
    html_content: str = Field(..., min_length=1)
    provider: Optional[Literal["brevo", "sender", "smtp"]] = None
    sender_email: Optional[str] = ""
    sender_name: Optional[str] = ""


class SmsCampaignRequest(CampaignAudience):
    message: str = Field(..., min_length=1)
    provider: Literal["twilio", "msg91", "fast2sms"] = "twilio"
    template_id: Optional[str] = None
    dlt_template_id: Optional[str] = None


class WhatsAppCampaignRequest(CampaignAudience):
    template_name: str = Field(..., min_length=1)
    provider: Literal["meta_whatsapp", "aisensy", "gupshup"] = "meta_whatsapp"
    language_code: str = "en"
    params: List[str] = Field(default_factory=list)
