"""
OmniFlow CRM - Routes AI
Content generation (email, subject/CTA, SMS, WhatsApp, unified campaign)
charged against the company's AI credits, plus cost estimation.
"""

import logging
from fastapi import APIRouter, HTTPException, Depends

from config import db, current_month
from models.campaign import (
    EmailContentRequest,
    SubjectCtaRequest,
    SmsContentRequest,
    WhatsAppContentRequest,
    UnifiedCampaignRequest,
    CostEstimateRequest,
)
from services.ai_content import (
    generate_email_content,
    generate_subject_and_ctas,
    generate_sms_content,
    generate_whatsapp_message,
    generate_unified_campaign,
    fallback_email_content,
    fallback_subject_and_ctas,
    fallback_sms_content,
    fallback_whatsapp_message,
)
from services.ai_cost import estimate_monthly_cost, suggest_plan_for_usage, estimate_token_count
from services.ai_credits import CreditLimitError, check_credits, consume_credits, get_credit_balance, uses_own_api_key
from services.companies import get_company
from services.encryption import decrypt_api_key
from services.permissions import require_permission

logger = logging.getLogger("ai")

router = APIRouter(prefix="/ai", tags=["AI"])

TEXT_GENERATION_CREDITS = 1
UNIFIED_CAMPAIGN_CREDITS = 4


async def _prepare(company_id: str, credits: int, payload: dict) -> dict:
    """Raise 402 when credits are short; inject the company's own key when BYOK is on."""
    company = await get_company(company_id)
    if not company:
        raise HTTPException(status_code=404, detail="Company not found")

    check = await check_credits(company_id, credits)
    if not check["available"]:
        raise HTTPException(status_code=402, detail=check.get("reason", "Insufficient credits"))

    if uses_own_api_key(company):
        payload["api_key"] = decrypt_api_key(company["byok"]["api_key"])
    return payload


async def _charge(company_id: str, user: dict, feature: str, credits: int, output: str) -> int:
    try:
        return await consume_credits(
            company_id,
            "text_generation",
            user_id=user.get("id", "system"),
            metadata={"feature": feature, "output_tokens": estimate_token_count(output)},
            credits=credits,
        )
    except CreditLimitError as e:
        raise HTTPException(status_code=402, detail=e.reason)


async def _generate(user: dict, feature: str, generator, fallback, payload: dict) -> dict:
    """Run one generator. Fallback content is returned free of charge."""
    company_id = user["scope_company_id"]
    payload = await _prepare(company_id, TEXT_GENERATION_CREDITS, payload)

    try:
        content = await generator(payload)
    except Exception as e:
        logger.error(f"[AI] {feature} generation failed for company {company_id}: {e}")
        return {**fallback(payload), "fallback": True, "credits_used": 0}

    used = await _charge(company_id, user, feature, TEXT_GENERATION_CREDITS, " ".join(str(v) for v in content.values()))
    return {**content, "fallback": False, "credits_used": used}


# ==================== CREDITS ====================

@router.get("/credits")
async def get_credits(user: dict = Depends(require_permission("dashboard.view"))):
    company_id = user["scope_company_id"]
    balance = await get_credit_balance(company_id)
    if balance is None:
        raise HTTPException(status_code=404, detail="Company not found")
    return {"balance": balance, "check": await check_credits(company_id, TEXT_GENERATION_CREDITS)}


@router.get("/usage")
async def get_usage(limit: int = 50, user: dict = Depends(require_permission("ai.generate"))):
    company_id = user["scope_company_id"]
    records = await db.ai_usage.find(
        {"company_id": company_id}, {"_id": 0}
    ).sort("created_at", -1).to_list(min(limit, 500))
    month_records = await db.ai_usage.find(
        {"company_id": company_id, "month": current_month()}, {"_id": 0, "credits_used": 1}
    ).to_list(100000)
    return {
        "usage": records,
        "credits_this_month": sum(r.get("credits_used", 0) for r in month_records),
    }


# ==================== GENERATION ====================

@router.post("/generate/email")
async def generate_email(data: EmailContentRequest, user: dict = Depends(require_permission("ai.generate"))):
    return await _generate(user, "email", generate_email_content, fallback_email_content, data.model_dump())


@router.post("/generate/subjects")
async def generate_subjects(data: SubjectCtaRequest, user: dict = Depends(require_permission("ai.generate"))):
    return await _generate(user, "subject_cta", generate_subject_and_ctas, fallback_subject_and_ctas, data.model_dump())


@router.post("/generate/sms")
async def generate_sms(data: SmsContentRequest, user: dict = Depends(require_permission("ai.generate"))):
    return await _generate(user, "sms", generate_sms_content, fallback_sms_content, data.model_dump())


@router.post("/generate/whatsapp")
async def generate_whatsapp(data: WhatsAppContentRequest, user: dict = Depends(require_permission("ai.generate"))):
    return await _generate(user, "whatsapp", generate_whatsapp_message, fallback_whatsapp_message, data.model_dump())


@router.post("/generate/campaign")
async def generate_campaign(data: UnifiedCampaignRequest, user: dict = Depends(require_permission("ai.generate"))):
    """Email + SMS + WhatsApp in one call"""
    company_id = user["scope_company_id"]
    payload = await _prepare(company_id, UNIFIED_CAMPAIGN_CREDITS, data.model_dump())

    campaign = await generate_unified_campaign(payload)
    output = " ".join([campaign["email"]["html_content"], campaign["sms"]["message"], campaign["whatsapp"]["message"]])
    used = await _charge(company_id, user, "unified_campaign", UNIFIED_CAMPAIGN_CREDITS, output)
    return {**campaign, "credits_used": used}


# ==================== ESTIMATION ====================

@router.post("/estimate")
async def estimate_cost(data: CostEstimateRequest, user: dict = Depends(require_permission("dashboard.view"))):
    return estimate_monthly_cost(**data.model_dump())


@router.get("/suggest-plan")
async def suggest_plan(credits_per_month: int, user: dict = Depends(require_permission("dashboard.view"))):
    if credits_per_month < 0:
        raise HTTPException(status_code=400, detail="credits_per_month must be >= 0")
    return suggest_plan_for_usage(credits_per_month)
