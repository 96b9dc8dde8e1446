"""
OmniFlow CRM - Template marketplace

Built-in templates (read-only) + custom templates per company
(collection: custom_templates), optionally shared publicly.
Usage in template_usage, ratings in template_ratings (one per user and template).
"""

import logging
import re
import uuid
from typing import Optional, List, Dict, Any

from config import db, now_iso

logger = logging.getLogger("templates")

PUBLIC_TEMPLATES_LIMIT = 100

_BUILTIN_CREATED_AT = "2025-10-27T00:00:00+00:00"


def _builtin(template_id, template_type, industry, category, name, description, content, subject=None):
    return {
        "id": template_id,
        "type": template_type,
        "industry": industry,
        "category": category,
        "name": name,
        "description": description,
        "subject": subject,
        "content": content,
        "variables": sorted(set(re.findall(r"\{(\w+)\}", (subject or "") + content))),
        "tags": [],
        "popularity": 0,
        "usage_count": 0,
        "rating": 0,
        "rating_count": 0,
        "is_default": True,
        "created_by": "omniflow",
        "created_at": _BUILTIN_CREATED_AT,
    }


DEFAULT_TEMPLATES: List[Dict[str, Any]] = [
    _builtin(
        "welcome-general-001", "email", ["general"], "welcome",
        "Welcome Email for New Customers", "Friendly introduction for first-time customers",
        "Hi {name},\n\nWelcome to {business}! We're thrilled to have you with us.\n\n"
        "We're here to help you get the most out of our services. If you have any questions, "
        "just reply to this email.\n\nLooking forward to serving you!\n\nBest regards,\n{business} Team",
        subject="Welcome to {business}! 🎉",
    ),
    _builtin(
        "promo-general-001", "email", ["general", "ecommerce", "restaurant"], "promotional",
        "Special Offer Announcement", "Announce limited-time discount or promotion",
        "Hi {name},\n\nFor a limited time, enjoy {discount}% off on {product}!\n\n"
        "Use code: {code} at checkout\n\nOffer expires in {days} days.\n\nShop now at {business}!\n\n"
        "Cheers,\n{business} Team",
        subject="Special Offer Just for You! {discount}% Off",
    ),
    _builtin(
        "followup-general-001", "email", ["general", "service", "coaching"], "followup",
        "Thank You & Follow-Up", "Follow up after a meeting or purchase",
        "Hi {name},\n\nThank you for choosing {business}! We hope you're enjoying {product}.\n\n"
        "We'd love to hear your feedback. How was your experience?\n\nBest regards,\n{business} Team",
        subject="Thank You, {name}!",
    ),
    _builtin(
        "reminder-salon-001", "sms", ["salon", "service"], "reminder",
        "Appointment Reminder SMS", "Reminder for upcoming appointment",
        "Hi {name}, this is a reminder about your appointment at {business} tomorrow at {time}. See you then!",
    ),
    _builtin(
        "salon-birthday-001", "sms", ["salon", "restaurant"], "special_offer",
        "Birthday Special SMS", "Send birthday wishes with special offer",
        "Happy Birthday {name}! 🎉 Celebrate with us at {business}. Enjoy {discount}% off this month. Book now: {link}",
    ),
    _builtin(
        "general-welcome-sms-001", "sms", ["general"], "welcome",
        "Welcome SMS for New Customers", "Short welcome message via SMS",
        "Welcome to {business}, {name}! We're excited to serve you. Questions? Reply to this message or visit {link}",
    ),
    _builtin(
        "general-whatsapp-followup-001", "whatsapp", ["general"], "followup",
        "WhatsApp Follow-Up", "Quick follow-up after an enquiry",
        "Hi *{name}*, thanks for reaching out to {business}! Would you like to book a quick call this week?",
    ),
]

DEFAULT_TEMPLATE_IDS = {t["id"] for t in DEFAULT_TEMPLATES}


def template_score(template: Dict[str, Any]) -> float:
    return (template.get("popularity") or 0) + (template.get("rating") or 0) * 10 + (template.get("usage_count") or 0)


def filter_templates(
    templates: List[Dict[str, Any]],
    template_type: str = None,
    industry: str = None,
    category: str = None,
    search: str = None,
) -> List[Dict[str, Any]]:
    result = templates
    if template_type:
        result = [t for t in result if t.get("type") == template_type]
    if industry and industry != "general":
        result = [t for t in result if industry in (t.get("industry") or []) or "general" in (t.get("industry") or [])]
    if category:
        result = [t for t in result if t.get("category") == category]
    if search and search.strip():
        q = search.strip().lower()
        result = [
            t for t in result
            if q in (t.get("name") or "").lower()
            or q in (t.get("description") or "").lower()
            or q in (t.get("content") or "").lower()
            or q in (t.get("subject") or "").lower()
            or any(q in tag.lower() for tag in t.get("tags") or [])
        ]
    return result


# ════════════════════════════════════════════════════════════════════════
# CRUD
# ════════════════════════════════════════════════════════════════════════

async def create_custom_template(company_id: str, user: Dict, data: Dict[str, Any]) -> Dict:
    template = {
        **data,
        "id": str(uuid.uuid4()),
        "company_id": company_id,
        "user_id": user["id"],
        "user_name": user.get("name") or user.get("email", ""),
        "variables": sorted(set(re.findall(r"\{(\w+)\}", (data.get("subject") or "") + data["content"]))),
        "popularity": 0,
        "usage_count": 0,
        "rating": 0,
        "rating_count": 0,
        "is_public": bool(data.get("is_public")),
        "is_default": False,
        "created_by": user["id"],
        "created_at": now_iso(),
    }
    await db.custom_templates.insert_one(template)
    template.pop("_id", None)
    return template


async def get_template(company_id: str, template_id: str) -> Optional[Dict]:
    for t in DEFAULT_TEMPLATES:
        if t["id"] == template_id:
            return dict(t)
    template = await db.custom_templates.find_one({"id": template_id}, {"_id": 0})
    if template and (template["company_id"] == company_id or template.get("is_public")):
        return template
    return None


async def delete_custom_template(company_id: str, template_id: str) -> bool:
    result = await db.custom_templates.delete_one({"id": template_id, "company_id": company_id})
    return result.deleted_count > 0


async def list_templates(
    company_id: str,
    template_type: str = None,
    industry: str = None,
    category: str = None,
    search: str = None,
    include_public: bool = False,
) -> List[Dict[str, Any]]:
    custom = await db.custom_templates.find({"company_id": company_id}, {"_id": 0}).to_list(1000)

    if include_public:
        public = await db.custom_templates.find({"is_public": True}, {"_id": 0}).to_list(PUBLIC_TEMPLATES_LIMIT)
        existing = {t["id"] for t in custom}
        custom.extend(t for t in public if t["id"] not in existing)

    templates = [dict(t) for t in DEFAULT_TEMPLATES] + custom
    templates = filter_templates(templates, template_type, industry, category, search)
    templates.sort(key=template_score, reverse=True)
    return templates


# ════════════════════════════════════════════════════════════════════════
# USAGE / RATINGS
# ════════════════════════════════════════════════════════════════════════

async def track_template_usage(template_id: str, company_id: str, user_id: str, template_type: str) -> Dict:
    await db.template_usage.insert_one({
        "id": str(uuid.uuid4()),
        "template_id": template_id,
        "company_id": company_id,
        "user_id": user_id,
        "type": template_type,
        "used_at": now_iso(),
    })
    # Built-in templates have no document to update
    await db.custom_templates.update_one(
        {"id": template_id},
        {"$inc": {"usage_count": 1, "popularity": 1}}
    )
    return {"success": True}


async def rate_template(template_id: str, company_id: str, user: Dict, rating: int, review: str = None) -> Dict:
    if rating < 1 or rating > 5:
        return {"success": False, "error": "Rating must be between 1 and 5"}

    existing = await db.template_ratings.find_one(
        {"template_id": template_id, "user_id": user["id"]}, {"_id": 0, "id": 1}
    )
    if existing:
        await db.template_ratings.update_one(
            {"id": existing["id"]},
            {"$set": {"rating": rating, "review": review, "updated_at": now_iso()}}
        )
    else:
        await db.template_ratings.insert_one({
            "id": str(uuid.uuid4()),
            "template_id": template_id,
            "company_id": company_id,
            "user_id": user["id"],
            "user_name": user.get("name") or user.get("email", ""),
            "rating": rating,
            "review": review,
            "created_at": now_iso(),
        })

    ratings = [r["rating"] for r in await db.template_ratings.find(
        {"template_id": template_id}, {"_id": 0, "rating": 1}
    ).to_list(100000)]
    average = sum(ratings) / len(ratings)

    await db.custom_templates.update_one(
        {"id": template_id},
        {"$set": {"rating": average, "rating_count": len(ratings)}}
    )
    return {"success": True, "rating": average, "rating_count": len(ratings)}


async def get_template_ratings(template_id: str, limit: int = 10) -> List[Dict]:
    return await db.template_ratings.find(
        {"template_id": template_id}, {"_id": 0}
    ).sort("created_at", -1).to_list(limit)


async def get_template_analytics(template_id: str) -> Dict[str, Any]:
    usage = await db.template_usage.find({"template_id": template_id}, {"_id": 0, "type": 1}).to_list(100000)
    usage_by_type: Dict[str, int] = {}
    for entry in usage:
        usage_by_type[entry["type"]] = usage_by_type.get(entry["type"], 0) + 1

    ratings = [r["rating"] for r in await db.template_ratings.find(
        {"template_id": template_id}, {"_id": 0, "rating": 1}
    ).to_list(100000)]

    return {
        "total_usage": len(usage),
        "usage_by_type": usage_by_type,
        "average_rating": sum(ratings) / len(ratings) if ratings else 0,
        "total_ratings": len(ratings),
    }
