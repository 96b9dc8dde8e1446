"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  OmniFlow CRM - AI content generation                                        ║
║                                                                              ║
║  generate_* raise on provider / parsing errors.                              ║
║  Callers pair each generator with its fallback_* so a well-formed result     ║
║  is always returned (see generate_unified_campaign).                         ║
║                                                                              ║
║  Email HTML always carries the Brevo tag {{ contact.FIRSTNAME }}.            ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import asyncio
import json
import logging
import re
from typing import Dict, Any, List, Optional

from openai import AsyncOpenAI

import config

logger = logging.getLogger("ai_content")

FIRSTNAME_TAG = "{{ contact.FIRSTNAME }}"
WHATSAPP_NAME_PLACEHOLDER = "{{1}}"
SMS_MAX_LENGTH = 160

SUBJECT_TONE_MAP = {
    "Formal": "Professional",
    "Informal": "Friendly",
    "Friendly": "Friendly",
    "Professional": "Professional",
    "Enthusiastic": "Playful",
    "Urgent": "Urgent",
}

CTA_TONE_MAP = {
    "Formal": "Clear & Direct",
    "Informal": "Playful",
    "Friendly": "Reassuring",
    "Professional": "Benefit-driven",
    "Enthusiastic": "Urgent",
    "Urgent": "Urgent",
}

_client: Optional[AsyncOpenAI] = None


def map_tone_for_subject(tone: str) -> str:
    return SUBJECT_TONE_MAP.get(tone, "Benefit-driven")


def map_tone_for_cta(tone: str) -> str:
    return CTA_TONE_MAP.get(tone, "Clear & Direct")


# ════════════════════════════════════════════════════════════════════════
# CLIENT
# ════════════════════════════════════════════════════════════════════════

def get_ai_client(api_key: str = None) -> AsyncOpenAI:
    """Platform client, or a one-off client for a company using its own key."""
    global _client
    if api_key:
        return AsyncOpenAI(api_key=api_key)
    if not config.OPENAI_API_KEY:
        raise RuntimeError("OPENAI_API_KEY is not set")
    if _client is None:
        _client = AsyncOpenAI(api_key=config.OPENAI_API_KEY)
    return _client


async def generate_text(system: str, prompt: str, json_output: bool = False, temperature: float = 0.7,
                        api_key: str = None) -> str:
    client = get_ai_client(api_key)
    kwargs = {}
    if json_output:
        kwargs["response_format"] = {"type": "json_object"}

    response = await client.chat.completions.create(
        model=config.OPENAI_MODEL,
        messages=[
            {"role": "system", "content": system},
            {"role": "user", "content": prompt},
        ],
        temperature=temperature,
        **kwargs,
    )
    content = response.choices[0].message.content
    if not content:
        raise ValueError("Empty response from AI model")
    return content


def strip_code_fences(text: str) -> str:
    text = (text or "").strip()
    text = re.sub(r"^```[a-zA-Z]*\s*", "", text)
    text = re.sub(r"\s*```$", "", text)
    return text.strip()


def parse_json_output(text: str) -> Dict[str, Any]:
    result = json.loads(strip_code_fences(text))
    if not isinstance(result, dict):
        raise ValueError("AI output is not a JSON object")
    return result


def ensure_greeting(html: str, tone: str) -> str:
    """Prepend a greeting carrying the first-name tag when the model left it out."""
    if FIRSTNAME_TAG in html:
        return html
    logger.warning("AI content missing first name tag, prepending default greeting")
    greeting = "Dear" if tone == "Formal" else "Hi"
    return f"<h1>{greeting} {FIRSTNAME_TAG},</h1><br/>" + html


def truncate_sms(text: str) -> str:
    if len(text) > SMS_MAX_LENGTH:
        return text[:SMS_MAX_LENGTH - 3] + "..."
    return text


# ════════════════════════════════════════════════════════════════════════
# GENERATORS
# ════════════════════════════════════════════════════════════════════════

async def generate_email_content(data: Dict[str, Any]) -> Dict[str, str]:
    """data: campaign_goal, target_audience, key_points, tone, call_to_action, call_to_action_link"""
    system = "You are an expert email marketer. Reply with the HTML body of an email only."
    link = data.get("call_to_action_link") or ""
    prompt = (
        f"Write a marketing email for this goal: {data['campaign_goal']}. "
        f"Audience: {data['target_audience']}. Key points: {data['key_points']}. "
        f"Tone: {data.get('tone', 'Professional')}. "
        f"Call to action: {data.get('call_to_action') or 'none'}"
        f"{f' linking to {link}' if link else ''}. "
        f"Start with the greeting 'Hi {FIRSTNAME_TAG},' (or 'Dear {FIRSTNAME_TAG},' if formal) "
        "and use simple inline-styled HTML without <html> or <body> tags."
    )
    html = strip_code_fences(await generate_text(system, prompt, api_key=data.get("api_key")))
    if not html:
        raise ValueError("Failed to generate email content from AI.")
    return {"html_content": ensure_greeting(html, data.get("tone", "Professional"))}


async def generate_subject_and_ctas(data: Dict[str, Any]) -> Dict[str, List[str]]:
    """data: campaign_goal, target_audience?, subject_tone?, cta_tone?, num_suggestions?"""
    count = min(max(int(data.get("num_suggestions") or 3), 1), 5)
    system = "You write email subject lines and call-to-action phrases. Reply with JSON only."
    prompt = (
        f"Generate {count} email subject lines and {count} call-to-action phrases for: {data['campaign_goal']}. "
        f"Audience: {data.get('target_audience') or 'general'}. "
        f"Subject tone: {data.get('subject_tone') or 'Benefit-driven'}. "
        f"CTA tone: {data.get('cta_tone') or 'Clear & Direct'}. "
        'Return {"subject_lines": [...], "ctas": [...]}.'
    )
    result = parse_json_output(await generate_text(system, prompt, json_output=True, api_key=data.get("api_key")))
    subjects = [str(s) for s in result.get("subject_lines") or [] if s]
    ctas = [str(c) for c in result.get("ctas") or [] if c]
    if not subjects or not ctas:
        raise ValueError("AI output missing subject lines or CTAs")
    return {"subject_lines": subjects[:count], "ctas": ctas[:count]}


async def generate_sms_content(data: Dict[str, Any]) -> Dict[str, str]:
    """data: message_context, desired_outcome, business_name?, recipient_name?"""
    system = "You write short SMS marketing messages. Reply with JSON only."
    prompt = (
        f"Write one SMS under 160 characters. Context: {data['message_context']}. "
        f"Desired outcome: {data['desired_outcome']}. "
        f"{'Business: ' + data['business_name'] + '. ' if data.get('business_name') else ''}"
        f"{'Recipient: ' + data['recipient_name'] + '. ' if data.get('recipient_name') else ''}"
        'Return {"sms_body": "..."}.'
    )
    result = parse_json_output(await generate_text(system, prompt, json_output=True, api_key=data.get("api_key")))
    body = (result.get("sms_body") or "").strip()
    if not body:
        raise ValueError("AI output missing sms_body")
    return {"sms_body": body}


async def generate_whatsapp_message(data: Dict[str, Any]) -> Dict[str, str]:
    """data: lead_name, lead_context, desired_outcome, sender_business_name?"""
    system = "You write friendly WhatsApp business messages using *bold* for emphasis. Reply with JSON only."
    prompt = (
        f"Write a WhatsApp message to {data['lead_name']}. Context: {data['lead_context']}. "
        f"Goal: {data['desired_outcome']}. "
        f"{'Sign off as ' + data['sender_business_name'] + '. ' if data.get('sender_business_name') else ''}"
        'Return {"message": "..."}.'
    )
    result = parse_json_output(await generate_text(system, prompt, json_output=True, api_key=data.get("api_key")))
    message = (result.get("message") or "").strip()
    if not message:
        raise ValueError("AI output missing message")
    return {"message": message}


# ════════════════════════════════════════════════════════════════════════
# FALLBACKS
# ════════════════════════════════════════════════════════════════════════

def fallback_email_content(data: Dict[str, Any]) -> Dict[str, str]:
    return {
        "html_content": f"<p>Hi {FIRSTNAME_TAG},</p><p>{data.get('key_points', '')}</p>"
                        f"<p>{data.get('call_to_action') or ''}</p>"
    }


def fallback_subject_and_ctas(data: Dict[str, Any]) -> Dict[str, List[str]]:
    return {"subject_lines": [data["campaign_goal"]], "ctas": [data.get("call_to_action") or ""]}


def fallback_sms_content(data: Dict[str, Any]) -> Dict[str, str]:
    return {"sms_body": (data.get("desired_outcome") or "")[:SMS_MAX_LENGTH]}


def fallback_whatsapp_message(data: Dict[str, Any]) -> Dict[str, str]:
    return {"message": f"Hi *{data['lead_name']}*,\n\n{data['lead_context']}\n\n{data['desired_outcome']}"}


async def _with_fallback(label: str, coro, fallback: Dict[str, Any]) -> Dict[str, Any]:
    try:
        return await coro
    except Exception as e:
        logger.error(f"[AI] {label} generation failed, using fallback: {e}")
        return fallback


# ════════════════════════════════════════════════════════════════════════
# UNIFIED CAMPAIGN (email + SMS + WhatsApp)
# ════════════════════════════════════════════════════════════════════════

def unified_campaign_fallback(data: Dict[str, Any]) -> Dict[str, Any]:
    goal = data["campaign_goal"]
    cta = data["call_to_action"]
    business = data.get("business_context") or ""
    signature = f"\n\nBest regards,\n*{business}*" if business else ""
    return {
        "email": {
            "subject_lines": [goal],
            "html_content": f"<p>Hi {FIRSTNAME_TAG},</p><p>{data['key_points']}</p>"
                            f"<p><a href=\"{data.get('call_to_action_link') or '#'}\">{cta}</a></p>",
            "cta_suggestions": [cta, "Learn More", "Get Started"],
        },
        "sms": {"message": f"{goal[:100]}. {cta}"[:SMS_MAX_LENGTH]},
        "whatsapp": {"message": f"Hi *{WHATSAPP_NAME_PLACEHOLDER}*,\n\n{goal}\n\n*{cta}*{signature}"},
    }


async def generate_unified_campaign(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    data: campaign_goal, target_audience, key_points, tone, call_to_action,
          call_to_action_link?, business_context?
    Four generators run concurrently, each with its own fallback.
    """
    try:
        email_input = {
            "campaign_goal": data["campaign_goal"],
            "target_audience": data["target_audience"],
            "key_points": data["key_points"],
            "tone": data["tone"],
            "call_to_action": data["call_to_action"],
            "call_to_action_link": data.get("call_to_action_link"),
            "api_key": data.get("api_key"),
        }
        subject_input = {
            "campaign_goal": data["campaign_goal"],
            "target_audience": data["target_audience"],
            "subject_tone": map_tone_for_subject(data["tone"]),
            "cta_tone": map_tone_for_cta(data["tone"]),
            "num_suggestions": 3,
            "api_key": data.get("api_key"),
        }
        sms_input = {
            "message_context": data["campaign_goal"],
            "desired_outcome": data["call_to_action"],
            "business_name": data.get("business_context"),
            "api_key": data.get("api_key"),
        }
        whatsapp_input = {
            "lead_name": WHATSAPP_NAME_PLACEHOLDER,
            "lead_context": data["campaign_goal"],
            "desired_outcome": data["call_to_action"],
            "sender_business_name": data.get("business_context"),
            "api_key": data.get("api_key"),
        }

        subject_ctas, email, sms, whatsapp = await asyncio.gather(
            _with_fallback("subject/CTA", generate_subject_and_ctas(subject_input),
                           fallback_subject_and_ctas(subject_input | {"call_to_action": data["call_to_action"]})),
            _with_fallback("email", generate_email_content(email_input), fallback_email_content(email_input)),
            _with_fallback("SMS", generate_sms_content(sms_input), fallback_sms_content(sms_input)),
            _with_fallback("WhatsApp", generate_whatsapp_message(whatsapp_input), fallback_whatsapp_message(whatsapp_input)),
        )

        return {
            "email": {
                "subject_lines": subject_ctas["subject_lines"],
                "html_content": email["html_content"],
                "cta_suggestions": subject_ctas["ctas"],
            },
            "sms": {"message": truncate_sms(sms["sms_body"])},
            "whatsapp": {"message": whatsapp["message"]},
        }
    except Exception as e:
        logger.error(f"[AI] Unified campaign failed, using fallback: {e}")
        return unified_campaign_fallback(data)
