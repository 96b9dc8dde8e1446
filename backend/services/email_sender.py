"""
OmniFlow CRM - Email delivery (Brevo / Sender.net / SMTP)

Every function returns {"success": bool, "message_id"?: str, "error"?: str}
and never raises for provider failures.
"""

import asyncio
import logging
import smtplib
import ssl
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from email.utils import formataddr, make_msgid
from typing import Dict, Optional

import httpx

from services import http_client

logger = logging.getLogger("email_sender")

BREVO_API_URL = "https://api.brevo.com/v3"
SENDER_API_URL = "https://api.sender.net/v2"


# ════════════════════════════════════════════════════════════════════════
# BREVO
# ════════════════════════════════════════════════════════════════════════

def _brevo_error_message(status_code: int, data: dict, sender_email: str) -> str:
    message = data.get("message") or "Failed to send email via Brevo."
    if status_code == 400:
        lowered = message.lower()
        if "sender" in lowered:
            return (f'Sender email "{sender_email}" is not verified in Brevo. '
                    "Please verify this email in your Brevo account Settings > Senders & IP.")
        if "unauthorized" in lowered:
            return "Brevo API key does not have permission to send emails. Check your API key permissions."
    elif status_code == 401:
        return "Invalid Brevo API key. Please check your API key in Settings."
    elif status_code == 402:
        return "Brevo account has insufficient credits. Please add credits to your Brevo account."
    return message


async def send_brevo_email(
    api_key: str,
    sender_email: str,
    sender_name: str,
    recipient_email: str,
    recipient_name: str,
    subject: str,
    html_content: str,
) -> Dict:
    if not api_key:
        return {"success": False, "error": "Brevo API Key not provided."}
    if not sender_email or not recipient_email:
        return {"success": False, "error": "Both sender and recipient email addresses are required."}

    payload = {
        "sender": {"email": sender_email, "name": sender_name},
        "to": [{"email": recipient_email, "name": recipient_name or recipient_email}],
        "subject": subject,
        "htmlContent": html_content,
    }

    try:
        async with http_client.async_client() as client:
            response = await client.post(
                f"{BREVO_API_URL}/smtp/email",
                json=payload,
                headers={"api-key": api_key, "Content-Type": "application/json", "Accept": "application/json"},
            )
        data = http_client.safe_json(response)

        if response.status_code >= 400:
            logger.error(f"[BREVO] API error status={response.status_code} data={data}")
            return {"success": False, "error": _brevo_error_message(response.status_code, data, sender_email)}

        message_id = data.get("messageId") or (data.get("messageIds") or [None])[0]
        logger.info(f"[BREVO] Email sent to {recipient_email} id={message_id}")
        return {"success": True, "message_id": message_id}

    except httpx.TimeoutException:
        logger.error(f"[BREVO] Timeout sending to {recipient_email}")
        return {"success": False, "error": "Timeout contacting Brevo"}
    except httpx.ConnectError as e:
        logger.error(f"[BREVO] Connection error: {e}")
        return {"success": False, "error": f"Connection error: {str(e)[:100]}"}
    except Exception as e:
        logger.error(f"[BREVO] Exception: {e}")
        return {"success": False, "error": str(e) or "Network error or other issue sending email."}


async def sync_brevo_contact(api_key: str, email: str, attributes: Optional[Dict] = None,
                             list_ids: Optional[list] = None) -> Dict:
    """Create or update a contact in Brevo (updateEnabled)."""
    if not api_key:
        return {"success": False, "error": "Brevo API Key not provided."}

    payload = {"email": email, "attributes": attributes or {}, "updateEnabled": True}
    if list_ids:
        payload["listIds"] = list_ids

    try:
        async with http_client.async_client() as client:
            response = await client.post(
                f"{BREVO_API_URL}/contacts",
                json=payload,
                headers={"api-key": api_key, "Content-Type": "application/json", "Accept": "application/json"},
            )
        # 201 created, 204 updated
        if response.status_code in (200, 201, 204):
            data = http_client.safe_json(response) if response.content else {}
            return {"success": True, "contact_id": data.get("id")}
        data = http_client.safe_json(response)
        return {"success": False, "error": data.get("message") or f"Brevo error (Status: {response.status_code})"}
    except httpx.TimeoutException:
        return {"success": False, "error": "Timeout contacting Brevo"}
    except Exception as e:
        logger.error(f"[BREVO] Contact sync exception: {e}")
        return {"success": False, "error": str(e) or "Network error or other issue syncing contact."}


# ════════════════════════════════════════════════════════════════════════
# SENDER.NET
# ════════════════════════════════════════════════════════════════════════

async def send_sender_email(
    api_key: str,
    sender_email: str,
    sender_name: str,
    recipient_email: str,
    recipient_name: str,
    subject: str,
    html_content: str,
) -> Dict:
    if not api_key:
        return {"success": False, "error": "Sender.net API Key not provided."}

    payload = {
        "subject": subject,
        "html": html_content,
        "from": {"email": sender_email, "name": sender_name},
        "to": [{"email": recipient_email, "name": recipient_name or recipient_email}],
    }

    try:
        async with http_client.async_client() as client:
            response = await client.post(
                f"{SENDER_API_URL}/email",
                json=payload,
                headers={
                    "Authorization": f"Bearer {api_key}",
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
            )
        data = http_client.safe_json(response)

        if response.status_code >= 400:
            logger.error(f"[SENDER] API error status={response.status_code} data={data}")
            return {"success": False, "error": data.get("message") or "Failed to send email via Sender.net."}

        inner = data.get("data") if isinstance(data.get("data"), dict) else {}
        return {"success": True, "message_id": inner.get("id") or data.get("id")}

    except httpx.TimeoutException:
        logger.error(f"[SENDER] Timeout sending to {recipient_email}")
        return {"success": False, "error": "Timeout contacting Sender.net"}
    except Exception as e:
        logger.error(f"[SENDER] Exception: {e}")
        return {"success": False, "error": str(e) or "Network error or other issue sending email."}


# ════════════════════════════════════════════════════════════════════════
# SMTP
# ════════════════════════════════════════════════════════════════════════

def _send_smtp_sync(config: Dict, recipient_email: str, recipient_name: str,
                    subject: str, html_content: str) -> str:
    host = config["host"]
    port = int(config.get("port") or 587)
    from_email = config.get("from_email") or config["username"]
    from_name = config.get("from_name") or ""

    msg = MIMEMultipart("alternative")
    msg["Subject"] = subject
    msg["From"] = formataddr((from_name, from_email))
    msg["To"] = formataddr((recipient_name or "", recipient_email))
    message_id = make_msgid()
    msg["Message-ID"] = message_id
    msg.attach(MIMEText(html_content, "html", "utf-8"))

    if port == 465:
        with smtplib.SMTP_SSL(host, port, context=ssl.create_default_context(), timeout=30) as server:
            server.login(config["username"], config["password"])
            server.sendmail(from_email, [recipient_email], msg.as_string())
    else:
        with smtplib.SMTP(host, port, timeout=30) as server:
            server.starttls(context=ssl.create_default_context())
            server.login(config["username"], config["password"])
            server.sendmail(from_email, [recipient_email], msg.as_string())

    return message_id


async def send_smtp_email(config: Dict, recipient_email: str, recipient_name: str,
                          subject: str, html_content: str) -> Dict:
    """config: {host, port, username, password, from_email?, from_name?}"""
    if not (config.get("host") and config.get("username") and config.get("password")):
        return {"success": False, "error": "SMTP host, username and password are required."}

    try:
        message_id = await asyncio.to_thread(
            _send_smtp_sync, config, recipient_email, recipient_name, subject, html_content
        )
        logger.info(f"[SMTP] Email sent to {recipient_email} via {config['host']}")
        return {"success": True, "message_id": message_id}
    except smtplib.SMTPAuthenticationError:
        return {"success": False, "error": "SMTP authentication failed. Check username and password."}
    except Exception as e:
        logger.error(f"[SMTP] Exception: {e}")
        return {"success": False, "error": str(e) or "SMTP send failed"}


# ════════════════════════════════════════════════════════════════════════
# DISPATCH
# ════════════════════════════════════════════════════════════════════════

EMAIL_PROVIDER_ORDER = ["brevo", "sender", "smtp"]


async def send_email(provider: str, keys: Dict, sender_email: str, sender_name: str,
                     recipient_email: str, recipient_name: str, subject: str, html_content: str) -> Dict:
    """Send with decrypted company credentials for `provider`."""
    if provider == "brevo":
        return await send_brevo_email(keys.get("api_key"), sender_email, sender_name,
                                      recipient_email, recipient_name, subject, html_content)
    if provider == "sender":
        return await send_sender_email(keys.get("api_key"), sender_email, sender_name,
                                       recipient_email, recipient_name, subject, html_content)
    if provider == "smtp":
        smtp_config = dict(keys)
        if sender_email:
            smtp_config["from_email"] = sender_email
        if sender_name:
            smtp_config["from_name"] = sender_name
        return await send_smtp_email(smtp_config, recipient_email, recipient_name, subject, html_content)
    return {"success": False, "error": f"Unknown email provider: {provider}"}
