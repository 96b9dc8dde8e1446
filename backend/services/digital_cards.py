"""
╔══════════════════════════════════════════════════════════════════════════════╗
║  OmniFlow CRM - Digital business cards                                       ║
║                                                                              ║
║  RULES:                                                                      ║
║  - username is unique across all companies, stored lowercased               ║
║  - creation is capped by the plan (calculate_digital_card_limit)             ║
║  - update / delete / status change: card owner only                          ║
║  - public endpoints only see active cards                                    ║
║  - contact form submissions become New leads assigned to the owner           ║
╚══════════════════════════════════════════════════════════════════════════════╝
"""

import logging
import re
import time
import uuid
from typing import Optional, List, Dict, Any

import config
from config import db, now_iso
from models.lead import is_valid_email_format
from services.leads import build_lead_doc
from services.plans import get_plan, calculate_digital_card_limit

logger = logging.getLogger("digital_cards")

PHONE_PATTERN = re.compile(r"^\+?[1-9]\d{9,14}$")
LINK_PATTERN = re.compile(r"https?://")

CARD_LEAD_SOURCE = "Digital Card - Contact Form"
MSG_SPAM_ACCEPTED = "Thank you! We'll get back to you soon."
MSG_INVALID = "Please check your information and try again."
MSG_CONTACT_REQUIRED = "Please provide at least an email or phone number."
MSG_CARD_NOT_FOUND = "Digital Card not found. Please contact the business owner directly."
MSG_SUCCESS = "Thank you! We've received your message and will get back to you soon."


class CardPermissionError(Exception):
    """Caller does not own the card."""


def empty_analytics() -> Dict[str, Any]:
    return {
        "views": 0,
        "chat_interactions": 0,
        "leads_generated": 0,
        "link_clicks": {},
        "last_updated": now_iso(),
    }


def card_public_url(username: str) -> str:
    return f"{config.APP_URL.rstrip('/')}/card/{username}"


# ════════════════════════════════════════════════════════════════════════
# CRUD
# ════════════════════════════════════════════════════════════════════════

async def username_taken(username: str, exclude_card_id: str = None) -> bool:
    query = {"username": username.lower()}
    if exclude_card_id:
        query["id"] = {"$ne": exclude_card_id}
    return await db.digital_cards.find_one(query, {"_id": 0, "id": 1}) is not None


async def get_card_limit(company: Dict) -> Dict[str, int]:
    plan = await get_plan(company.get("plan_id")) or {}
    user_count = await db.users.count_documents({"company_id": company["id"]})
    used = await db.digital_cards.count_documents({"company_id": company["id"]})
    return {"used": used, "max": calculate_digital_card_limit(plan, max(user_count, 1))}


async def create_card(company: Dict, user_id: str, data: Dict[str, Any]) -> Dict:
    limit = await get_card_limit(company)
    if limit["used"] >= limit["max"]:
        return {
            "success": False,
            "error": f"Digital Card limit reached: {limit['used']}/{limit['max']} cards used.",
            "limit_reached": True,
        }

    username = data["username"].lower()
    if await username_taken(username):
        return {"success": False, "error": f"Username '{username}' is already taken"}

    now = now_iso()
    card = {
        "id": str(uuid.uuid4()),
        "company_id": company["id"],
        "user_id": user_id,
        "username": username,
        "status": data.get("status") or "draft",
        "business_info": data["business_info"],
        "links": data.get("links") or [],
        "branding": data.get("branding") or {},
        "lead_capture": data.get("lead_capture") or {},
        "analytics": empty_analytics(),
        "created_at": now,
        "updated_at": now,
    }
    await db.digital_cards.insert_one(card)
    card.pop("_id", None)
    logger.info(f"[CARDS] Created {username} for company {company['id']}")
    return {"success": True, "card": card}


async def get_card(company_id: str, card_id: str) -> Optional[Dict]:
    return await db.digital_cards.find_one({"id": card_id, "company_id": company_id}, {"_id": 0})


async def list_cards(company_id: str, user_id: str = None) -> List[Dict]:
    query = {"company_id": company_id}
    if user_id:
        query["user_id"] = user_id
    return await db.digital_cards.find(query, {"_id": 0}).sort("created_at", -1).to_list(500)


async def _owned_card(company_id: str, card_id: str, user_id: str) -> Optional[Dict]:
    card = await get_card(company_id, card_id)
    if not card:
        return None
    if card["user_id"] != user_id:
        raise CardPermissionError("Only the card owner can modify this card")
    return card


async def update_card(company_id: str, card_id: str, user_id: str, data: Dict[str, Any]) -> Dict:
    card = await _owned_card(company_id, card_id, user_id)
    if not card:
        return {"success": False, "error": "Card not found"}

    update = {k: v for k, v in data.items() if v is not None}
    if "username" in update:
        update["username"] = update["username"].lower()
        if update["username"] != card["username"] and await username_taken(update["username"], card_id):
            return {"success": False, "error": f"Username '{update['username']}' is already taken"}

    if update:
        update["updated_at"] = now_iso()
        await db.digital_cards.update_one({"id": card_id}, {"$set": update})
    return {"success": True, "card": await get_card(company_id, card_id)}


async def set_card_status(company_id: str, card_id: str, user_id: str, status: str) -> Dict:
    card = await _owned_card(company_id, card_id, user_id)
    if not card:
        return {"success": False, "error": "Card not found"}
    await db.digital_cards.update_one({"id": card_id}, {"$set": {"status": status, "updated_at": now_iso()}})
    return {"success": True, "status": status}


async def delete_card(company_id: str, card_id: str, user_id: str) -> bool:
    card = await _owned_card(company_id, card_id, user_id)
    if not card:
        return False
    await db.digital_cards.delete_one({"id": card_id})
    return True


# ════════════════════════════════════════════════════════════════════════
# PUBLIC
# ════════════════════════════════════════════════════════════════════════

def public_card(card: Dict) -> Dict:
    return {k: v for k, v in card.items() if k not in ("company_id", "analytics")}


async def get_public_card(username: str) -> Optional[Dict]:
    """Active card by username. Each fetch counts as a view."""
    card = await db.digital_cards.find_one(
        {"username": (username or "").lower(), "status": "active"}, {"_id": 0}
    )
    if not card:
        return None
    await db.digital_cards.update_one(
        {"id": card["id"]},
        {"$inc": {"analytics.views": 1}, "$set": {"analytics.last_updated": now_iso()}}
    )
    return public_card(card)


async def track_link_click(card_id: str, link_id: str) -> bool:
    card = await db.digital_cards.find_one({"id": card_id, "status": "active"}, {"_id": 0, "links": 1})
    if not card or not any(link.get("id") == link_id for link in card.get("links") or []):
        return False
    await db.digital_cards.update_one(
        {"id": card_id},
        {"$inc": {f"analytics.link_clicks.{link_id}": 1}, "$set": {"analytics.last_updated": now_iso()}}
    )
    return True


async def track_chat_interaction(card_id: str) -> bool:
    result = await db.digital_cards.update_one(
        {"id": card_id, "status": "active"},
        {"$inc": {"analytics.chat_interactions": 1}, "$set": {"analytics.last_updated": now_iso()}}
    )
    return result.matched_count > 0


def validate_card_lead(form: Dict[str, Any]) -> List[Dict[str, str]]:
    errors = []
    if not (form.get("name") or "").strip():
        errors.append({"field": "name", "message": "Name is required."})
    email = form.get("email")
    if email and not is_valid_email_format(email.strip().lower()):
        errors.append({"field": "email", "message": "Invalid email address."})
    phone = form.get("phone")
    if phone:
        if len(phone) < 10:
            errors.append({"field": "phone", "message": "Phone number must be at least 10 digits."})
        elif not PHONE_PATTERN.match(phone):
            errors.append({"field": "phone", "message": "Invalid phone number format. Please include country code."})
    message = form.get("message")
    if message and len(LINK_PATTERN.findall(message)) > 1:
        errors.append({"field": "message", "message": "Message contains too many links and is considered spam."})
    return errors


async def submit_card_lead(card_id: str, form: Dict[str, Any]) -> Dict[str, Any]:
    """Public contact form. Always returns {success, message, lead_id?, errors?}."""
    if form.get("honeypot") and form["honeypot"].strip():
        logger.warning(f"[CARDS] Honeypot filled on card {card_id}, dropping submission")
        return {"success": True, "message": MSG_SPAM_ACCEPTED}

    errors = validate_card_lead(form)
    if errors:
        return {"success": False, "message": MSG_INVALID, "errors": errors}

    if not form.get("email") and not form.get("phone"):
        return {
            "success": False,
            "message": MSG_CONTACT_REQUIRED,
            "errors": [{"field": "contact", "message": "Email or phone required"}],
        }

    card = await db.digital_cards.find_one({"id": card_id}, {"_id": 0})
    if not card:
        logger.error(f"[CARDS] Card not found: {card_id}")
        return {"success": False, "message": MSG_CARD_NOT_FOUND}

    message = form.get("message")
    notes = "Lead submitted via Digital Card contact form."
    if message:
        notes += f"\n\nMessage:\n{message}"

    lead = build_lead_doc(card["company_id"], {
        "name": form["name"].strip(),
        "email": form.get("email") or f"no-email-{int(time.time() * 1000)}@contact-form.omniflow.app",
        "phone": form.get("phone") or "",
        "status": "New",
        "source": CARD_LEAD_SOURCE,
        "source_metadata": {
            "digital_card_id": card_id,
            "digital_card_url": card_public_url(card["username"]),
            "digital_card_name": (card.get("business_info") or {}).get("name") or "Unknown Business",
        },
        "notes": notes,
        "assigned_to": card["user_id"],
    })
    await db.leads.insert_one(lead)

    await db.digital_cards.update_one(
        {"id": card_id},
        {"$inc": {"analytics.leads_generated": 1}, "$set": {"analytics.last_updated": now_iso()}}
    )
    logger.info(f"[CARDS] Lead {lead['id']} created from card {card_id}")
    return {"success": True, "lead_id": lead["id"], "message": MSG_SUCCESS}
