"""
OmniFlow CRM - WhatsApp delivery through BSPs (Meta Cloud API / AiSensy / Gupshup)

Template messages only. Every function returns
{"success": bool, "message_id"?: str, "error"?: str}.
"""

import json
import logging
import re
from typing import Dict, List, Optional

import httpx

from services import http_client

logger = logging.getLogger("whatsapp_sender")

META_API_VERSION = "v21.0"
META_API_BASE = f"https://graph.facebook.com/{META_API_VERSION}"
AISENSY_API_URL = "https://backend.aisensy.com/campaign/t1/api/v2"
GUPSHUP_API_URL = "https://api.gupshup.io/wa/api/v1/template/msg"


def digits_only(phone: str) -> str:
    return re.sub(r"\D", "", phone or "")


def first_name_of(name: str) -> str:
    parts = (name or "").strip().split()
    return parts[0] if parts else (name or "")


# ════════════════════════════════════════════════════════════════════════
# META CLOUD API
# ════════════════════════════════════════════════════════════════════════

async def send_meta_whatsapp(access_token: str, phone_number_id: str, to: str, template_name: str,
                             language_code: str = "en", params: Optional[List[str]] = None) -> Dict:
    if not access_token or not phone_number_id:
        return {"success": False, "error": "Meta WhatsApp credentials not provided."}

    payload = {
        "messaging_product": "whatsapp",
        "recipient_type": "individual",
        "to": digits_only(to),
        "type": "template",
        "template": {"name": template_name, "language": {"code": language_code}},
    }
    if params:
        payload["template"]["components"] = [{
            "type": "body",
            "parameters": [{"type": "text", "text": p} for p in params],
        }]

    try:
        async with http_client.async_client() as client:
            response = await client.post(
                f"{META_API_BASE}/{phone_number_id}/messages",
                json=payload,
                headers={"Authorization": f"Bearer {access_token}", "Content-Type": "application/json"},
            )
        data = http_client.safe_json(response)

        if response.status_code >= 400:
            error = (data.get("error") or {}).get("message") if isinstance(data.get("error"), dict) else None
            logger.error(f"[META] Send failed status={response.status_code} data={data}")
            return {"success": False, "error": error or f"HTTP {response.status_code}"}

        messages = data.get("messages") or [{}]
        return {"success": True, "message_id": messages[0].get("id")}

    except httpx.TimeoutException:
        return {"success": False, "error": "Timeout contacting Meta"}
    except Exception as e:
        logger.error(f"[META] Exception: {e}")
        return {"success": False, "error": str(e) or "Unknown error"}


# ════════════════════════════════════════════════════════════════════════
# AISENSY
# ════════════════════════════════════════════════════════════════════════

async def send_aisensy_whatsapp(api_key: str, campaign_name: str, to: str, user_name: str,
                                params: Optional[List[str]] = None) -> Dict:
    """Without params the recipient's first name is the single template parameter."""
    if not api_key:
        return {"success": False, "error": "AiSensy API key not provided."}

    template_params = params or [first_name_of(user_name)]
    body = {
        "apiKey": api_key,
        "campaignName": campaign_name or "OmniFlow Campaign",
        "destination": digits_only(to),
        "userName": user_name,
        "templateParams": template_params,
        "source": "omniflow-crm",
        "media": {},
        "buttons": [],
        "carouselCards": [],
        "location": {},
        "attributes": {},
        "paramsFallbackValue": {"FirstName": first_name_of(user_name), "Name": user_name},
    }

    try:
        async with http_client.async_client() as client:
            response = await client.post(AISENSY_API_URL, json=body,
                                         headers={"Content-Type": "application/json"})
        result = http_client.safe_json(response)

        if response.status_code >= 400 or not result.get("success"):
            error = (result.get("message") or result.get("error") or result.get("info")
                     or f"HTTP {response.status_code}")
            return {"success": False, "error": str(error)}

        return {"success": True, "message_id": result.get("submitted_message_id") or result.get("id")}

    except httpx.TimeoutException:
        return {"success": False, "error": "Timeout contacting AiSensy"}
    except Exception as e:
        logger.error(f"[AISENSY] Exception: {e}")
        return {"success": False, "error": str(e) or "Unknown error"}


# ════════════════════════════════════════════════════════════════════════
# GUPSHUP
# ════════════════════════════════════════════════════════════════════════

async def send_gupshup_whatsapp(api_key: str, app_name: str, source: str, destination: str,
                                template_id: str, params: Optional[List[str]] = None) -> Dict:
    """Numbers need the country code (at least 11 digits)."""
    if not api_key or not app_name:
        return {"success": False, "error": "Gupshup credentials not provided."}

    source = digits_only(source)
    destination = digits_only(destination)
    if len(source) < 11:
        return {"success": False, "error": f"Invalid source phone number. Must include country code. Got: {source}"}
    if len(destination) < 11:
        return {"success": False, "error": f"Invalid destination phone number. Must include country code. Got: {destination}"}

    template = {"id": template_id}
    if params:
        template["params"] = params

    form = {
        "channel": "whatsapp",
        "source": source,
        "destination": destination,
        "src.name": app_name,
        "template": json.dumps(template),
    }

    try:
        async with http_client.async_client() as client:
            response = await client.post(
                GUPSHUP_API_URL,
                data=form,
                headers={"apikey": api_key},
            )
        result = http_client.safe_json(response)

        if response.status_code >= 400 or result.get("status") == "error":
            return {
                "success": False,
                "error": result.get("reason") or result.get("message")
                or f"Failed to send message (Status: {response.status_code})",
            }

        # 202 = submitted (queued); delivery comes later through webhooks
        return {"success": True, "message_id": result.get("messageId"), "status": result.get("status") or "submitted"}

    except httpx.TimeoutException:
        return {"success": False, "error": "Timeout contacting Gupshup"}
    except Exception as e:
        logger.error(f"[GUPSHUP] Exception: {e}")
        return {"success": False, "error": str(e) or "Unknown error"}


# ════════════════════════════════════════════════════════════════════════
# DISPATCH
# ════════════════════════════════════════════════════════════════════════

async def send_whatsapp(provider: str, keys: Dict, to: str, recipient_name: str, template_name: str,
                        language_code: str = "en", params: Optional[List[str]] = None) -> Dict:
    if provider == "meta_whatsapp":
        return await send_meta_whatsapp(keys.get("access_token"), keys.get("phone_number_id"), to,
                                        template_name, language_code, params)
    if provider == "aisensy":
        return await send_aisensy_whatsapp(keys.get("api_key"), template_name or keys.get("campaign_name"),
                                           to, recipient_name, params)
    if provider == "gupshup":
        return await send_gupshup_whatsapp(keys.get("api_key"), keys.get("app_name"),
                                           keys.get("source_number"), to, template_name, params)
    return {"success": False, "error": f"Unknown WhatsApp provider: {provider}"}
