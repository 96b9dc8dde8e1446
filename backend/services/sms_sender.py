"""
OmniFlow CRM - SMS delivery (Twilio / MSG91 / Fast2SMS)

Every function returns {"success": bool, "message_id"?: str, "error"?: str}.
"""

import json
import logging
import re
from typing import Dict, List, Optional

import httpx

from services import http_client

logger = logging.getLogger("sms_sender")

TWILIO_API_URL = "https://api.twilio.com/2010-04-01/Accounts/{sid}/Messages.json"
MSG91_SENDHTTP_URL = "https://control.msg91.com/api/sendhttp.php"
FAST2SMS_API_URL = "https://www.fast2sms.com/dev/bulkV2"


def format_phone_for_fast2sms(phone: str) -> str:
    """Fast2SMS takes 10-digit Indian numbers (country code stripped)."""
    digits = re.sub(r"\D", "", phone or "")
    if digits.startswith("91") and len(digits) == 12:
        digits = digits[2:]
    if digits.startswith("0") and len(digits) == 11:
        digits = digits[1:]
    return digits


def format_phone_for_msg91(phone: str) -> str:
    """Digits only, 91 prefix for 10-digit numbers."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10:
        digits = "91" + digits
    return digits


# ════════════════════════════════════════════════════════════════════════
# TWILIO
# ════════════════════════════════════════════════════════════════════════

async def send_twilio_sms(account_sid: str, auth_token: str, from_number: str, to: str, body: str) -> Dict:
    if not account_sid or not auth_token:
        return {"success": False, "error": "Twilio API credentials not provided."}
    if not from_number:
        return {"success": False, "error": 'Twilio "From" phone number is required.'}

    try:
        async with http_client.async_client() as client:
            response = await client.post(
                TWILIO_API_URL.format(sid=account_sid),
                data={"To": to, "From": from_number, "Body": body},
                auth=(account_sid, auth_token),
            )
        data = http_client.safe_json(response)

        if response.status_code >= 400:
            logger.error(f"[TWILIO] API error status={response.status_code} data={data}")
            return {
                "success": False,
                "error": data.get("message") or f"Failed to send SMS via Twilio (Status: {response.status_code})",
            }
        return {"success": True, "message_id": data.get("sid"), "status": data.get("status")}

    except httpx.TimeoutException:
        return {"success": False, "error": "Timeout contacting Twilio"}
    except Exception as e:
        logger.error(f"[TWILIO] Exception: {e}")
        return {"success": False, "error": str(e) or "Network error or other issue sending SMS."}


# ════════════════════════════════════════════════════════════════════════
# MSG91
# ════════════════════════════════════════════════════════════════════════

async def send_msg91_sms(
    auth_key: str,
    sender_id: str,
    recipients: List[str],
    message: str = "",
    route: str = "transactional",
    template_id: Optional[str] = None,
    dlt_template_id: Optional[str] = None,
    variables: Optional[List[str]] = None,
) -> Dict:
    """
    SendHTTP API. With template_id the approved template is used and
    `message` is not sent. Variables map to var1..varN.
    """
    if not auth_key:
        return {"success": False, "error": "MSG91 auth key not provided."}
    if not recipients:
        return {"success": False, "error": "No recipients"}

    params = {
        "authkey": auth_key,
        "mobiles": ",".join(format_phone_for_msg91(r) for r in recipients),
        "sender": sender_id or "",
        "route": "1" if route == "promotional" else "4",
        "country": "91",
        "response": "json",
    }
    if template_id:
        params["template_id"] = template_id
    else:
        params["message"] = message or ""
    if dlt_template_id:
        params["DLT_TE_ID"] = dlt_template_id
    for index, value in enumerate(variables or [], start=1):
        if value and value.strip():
            params[f"var{index}"] = value

    try:
        async with http_client.async_client() as client:
            response = await client.get(MSG91_SENDHTTP_URL, params=params)

        try:
            result = json.loads(response.text)
        except ValueError:
            logger.error(f"[MSG91] Non-JSON response: {response.text[:150]}")
            return {
                "success": False,
                "error": "Invalid response from MSG91. Make sure your DLT Template ID is correctly configured in MSG91 panel.",
            }

        if result.get("type") == "error":
            return {"success": False, "error": result.get("message") or f"MSG91 Error (Code: {result.get('code')})"}
        if result.get("type") != "success":
            return {"success": False, "error": f"Unexpected MSG91 response: {json.dumps(result)}"}

        return {"success": True, "message_id": result.get("message"), "request_id": result.get("message")}

    except httpx.TimeoutException:
        return {"success": False, "error": "Timeout contacting MSG91"}
    except Exception as e:
        logger.error(f"[MSG91] Exception: {e}")
        return {"success": False, "error": str(e) or "Network error sending SMS"}


# ════════════════════════════════════════════════════════════════════════
# FAST2SMS
# ════════════════════════════════════════════════════════════════════════

async def send_fast2sms(
    api_key: str,
    recipients: List[str],
    message: str,
    route: str = "q",
    sender_id: Optional[str] = None,
    dlt_template_id: Optional[str] = None,
    variables: Optional[str] = None,
) -> Dict:
    """Routes: q (quick), dlt (template id + pipe-separated variables), otp."""
    if not api_key:
        return {"success": False, "error": "Fast2SMS API key not provided."}

    numbers = [format_phone_for_fast2sms(r) for r in recipients]
    invalid = [n for n in numbers if len(n) != 10]
    if invalid:
        more = f" and {len(invalid) - 3} more" if len(invalid) > 3 else ""
        return {
            "success": False,
            "error": f"Invalid phone numbers detected (must be 10 digits): {', '.join(invalid[:3])}{more}",
        }

    payload = {"route": route, "numbers": ",".join(numbers), "flash": 0}

    if route == "dlt":
        if not sender_id:
            return {"success": False, "error": "DLT route requires a sender ID. Please configure it in Settings."}
        if not dlt_template_id:
            return {"success": False, "error": "DLT route requires a template ID (message parameter)"}
        payload["sender_id"] = sender_id
        payload["message"] = dlt_template_id
        if variables:
            values = variables.strip()
            payload["variables_values"] = values if values.endswith("|") else values + "|"
    elif route == "otp":
        payload["message"] = dlt_template_id or "Your OTP is {#var#}. Valid for 10 minutes."
        otp = message.strip()
        payload["variables_values"] = otp if otp.endswith("|") else otp + "|"
    else:
        payload["message"] = message

    try:
        async with http_client.async_client() as client:
            response = await client.post(
                FAST2SMS_API_URL,
                json=payload,
                headers={"authorization": api_key, "Content-Type": "application/json"},
            )
        result = http_client.safe_json(response)

        if not result.get("return") or response.status_code >= 400:
            error = result.get("message")
            if isinstance(error, list):
                error = ", ".join(str(e) for e in error)
            return {"success": False, "error": str(error) if error else f"Failed to send SMS (Status: {response.status_code})"}

        return {"success": True, "message_id": result.get("request_id"), "request_id": result.get("request_id")}

    except httpx.TimeoutException:
        return {"success": False, "error": "Timeout contacting Fast2SMS"}
    except Exception as e:
        logger.error(f"[FAST2SMS] Exception: {e}")
        return {"success": False, "error": str(e) or "Network error sending SMS"}


# ════════════════════════════════════════════════════════════════════════
# DISPATCH
# ════════════════════════════════════════════════════════════════════════

async def send_sms(provider: str, keys: Dict, to: str, message: str,
                   template_id: Optional[str] = None, dlt_template_id: Optional[str] = None) -> Dict:
    """Single-recipient send with decrypted company credentials for `provider`."""
    if provider == "twilio":
        return await send_twilio_sms(keys.get("account_sid"), keys.get("auth_token"),
                                     keys.get("phone_number"), to, message)
    if provider == "msg91":
        return await send_msg91_sms(keys.get("auth_key"), keys.get("sender_id"), [to], message,
                                    template_id=template_id, dlt_template_id=dlt_template_id)
    if provider == "fast2sms":
        route = "dlt" if dlt_template_id else "q"
        return await send_fast2sms(keys.get("api_key"), [to], message, route=route,
                                   sender_id=keys.get("sender_id"), dlt_template_id=dlt_template_id)
    return {"success": False, "error": f"Unknown SMS provider: {provider}"}
