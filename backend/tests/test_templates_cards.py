"""
OmniFlow CRM - Templates, digital cards and dashboard tests
Tests: template marketplace (filters, ratings, usage), card limits, owner-only
edits, public contact form, dashboard aggregation.
Run: cd /root/package && pytest backend/tests/test_templates_cards.py -v
"""

import pytest
from config import db

USER = {"id": "user-1", "name": "Admin", "email": "admin@acme.test"}


# ═══════════════════════════════════════════════════════════════
# 1. TEMPLATES
# ═══════════════════════════════════════════════════════════════

class TestTemplateFilters:
    def test_industry_includes_general(self):
        from services.templates import filter_templates, DEFAULT_TEMPLATES
        salon = filter_templates(DEFAULT_TEMPLATES, industry="salon")
        ids = {t["id"] for t in salon}
        assert "reminder-salon-001" in ids
        assert "welcome-general-001" in ids
        assert "promo-general-001" in ids

    def test_type_and_search(self):
        from services.templates import filter_templates, DEFAULT_TEMPLATES
        result = filter_templates(DEFAULT_TEMPLATES, template_type="sms", search="BIRTHDAY")
        assert [t["id"] for t in result] == ["salon-birthday-001"]

    def test_builtin_variables_extracted(self):
        from services.templates import DEFAULT_TEMPLATES
        promo = next(t for t in DEFAULT_TEMPLATES if t["id"] == "promo-general-001")
        assert promo["variables"] == ["business", "code", "days", "discount", "name", "product"]


class TestTemplateMarketplace:
    async def test_custom_template_visibility(self, company):
        from services.templates import create_custom_template, list_templates, get_template
        private = await create_custom_template(company["id"], USER, {"name": "Mine", "type": "email", "content": "Hi {first}"})
        shared = await create_custom_template("other-co", USER, {"name": "Shared", "type": "email", "content": "x", "is_public": True})
        await create_custom_template("other-co", USER, {"name": "Hidden", "type": "email", "content": "x"})

        assert private["variables"] == ["first"]
        names = {t["name"] for t in await list_templates(company["id"], include_public=True)}
        assert {"Mine", "Shared"} <= names
        assert "Hidden" not in names
        assert "Shared" not in {t["name"] for t in await list_templates(company["id"])}
        assert (await get_template(company["id"], shared["id"]))["name"] == "Shared"

    async def test_rating_is_one_per_user(self, company):
        from services.templates import create_custom_template, rate_template, get_template_analytics
        template = await create_custom_template(company["id"], USER, {"name": "T", "type": "sms", "content": "x"})
        await rate_template(template["id"], company["id"], USER, 2)
        result = await rate_template(template["id"], company["id"], USER, 4)
        assert result == {"success": True, "rating": 4, "rating_count": 1}
        other = await rate_template(template["id"], company["id"], {"id": "user-2", "name": "B"}, 5)
        assert other["rating"] == 4.5
        stored = await db.custom_templates.find_one({"id": template["id"]})
        assert stored["rating_count"] == 2
        assert (await get_template_analytics(template["id"]))["average_rating"] == 4.5

    async def test_rating_bounds(self, company):
        from services.templates import rate_template
        assert (await rate_template("welcome-general-001", company["id"], USER, 6))["success"] is False

    async def test_usage_tracking(self, company):
        from services.templates import create_custom_template, track_template_usage, get_template_analytics
        template = await create_custom_template(company["id"], USER, {"name": "T", "type": "email", "content": "x"})
        await track_template_usage(template["id"], company["id"], "user-1", "email")
        await track_template_usage(template["id"], company["id"], "user-1", "sms")
        await track_template_usage(template["id"], company["id"], "user-2", "email")
        analytics = await get_template_analytics(template["id"])
        assert analytics["total_usage"] == 3
        assert analytics["usage_by_type"] == {"email": 2, "sms": 1}
        stored = await db.custom_templates.find_one({"id": template["id"]})
        assert stored["usage_count"] == 3

    async def test_builtin_usage_has_no_document(self, company):
        from services.templates import track_template_usage, get_template_analytics
        await track_template_usage("welcome-general-001", company["id"], "user-1", "email")
        assert (await get_template_analytics("welcome-general-001"))["total_usage"] == 1


# ═══════════════════════════════════════════════════════════════
# 2. DIGITAL CARDS
# ═══════════════════════════════════════════════════════════════

def _card(username="jane-doe", **extra):
    data = {
        "username": username,
        "status": "active",
        "business_info": {"name": "Jane Doe Studio"},
        "links": [{"id": "l1", "type": "website", "label": "Site", "url": "https://jane.example.com"}],
    }
    data.update(extra)
    return data


class TestDigitalCards:
    async def test_free_plan_limit(self, company):
        from services.digital_cards import create_card
        first = await create_card(company, "user-1", _card())
        assert first["success"] is True
        second = await create_card(company, "user-1", _card("jane-two"))
        assert second["limit_reached"] is True
        assert second["error"] == "Digital Card limit reached: 1/1 cards used."

    async def test_username_unique_across_companies(self, company):
        from services.digital_cards import create_card
        from services.companies import create_company
        other = await create_company("Other", owner_id="o2")
        await create_card(company, "user-1", _card("Jane-Doe"))
        result = await create_card(other, "user-9", _card("jane-doe"))
        assert result == {"success": False, "error": "Username 'jane-doe' is already taken"}

    async def test_owner_only_update(self, company):
        from services.digital_cards import create_card, update_card, delete_card, CardPermissionError
        card = (await create_card(company, "user-1", _card()))["card"]
        with pytest.raises(CardPermissionError):
            await update_card(company["id"], card["id"], "user-2", {"branding": {"primary_color": "#000"}})
        with pytest.raises(CardPermissionError):
            await delete_card(company["id"], card["id"], "user-2")
        result = await update_card(company["id"], card["id"], "user-1", {"username": "JANE-NEW"})
        assert result["card"]["username"] == "jane-new"

    async def test_public_view_counts(self, company):
        from services.digital_cards import create_card, get_public_card, track_link_click, get_card
        card = (await create_card(company, "user-1", _card()))["card"]
        public = await get_public_card("JANE-DOE")
        assert "company_id" not in public
        assert "analytics" not in public
        await get_public_card("jane-doe")
        assert await track_link_click(card["id"], "l1") is True
        assert await track_link_click(card["id"], "missing") is False
        stored = await get_card(company["id"], card["id"])
        assert stored["analytics"]["views"] == 2
        assert stored["analytics"]["link_clicks"] == {"l1": 1}

    async def test_draft_not_public(self, company):
        from services.digital_cards import create_card, get_public_card, track_chat_interaction
        card = (await create_card(company, "user-1", _card(status="draft")))["card"]
        assert await get_public_card("jane-doe") is None
        assert await track_chat_interaction(card["id"]) is False


class TestCardLeadForm:
    @pytest.mark.parametrize("form,field", [
        ({"name": " ", "email": "a@b.co"}, "name"),
        ({"name": "A", "email": "nope"}, "email"),
        ({"name": "A", "phone": "12345"}, "phone"),
        ({"name": "A", "phone": "0123456789012"}, "phone"),
        ({"name": "A", "email": "a@b.co", "message": "see http://x.co and https://y.co"}, "message"),
    ])
    def test_validation(self, form, field):
        from services.digital_cards import validate_card_lead
        assert [e["field"] for e in validate_card_lead(form)] == [field]

    async def test_honeypot_silently_accepted(self, company):
        from services.digital_cards import submit_card_lead
        result = await submit_card_lead("any", {"name": "Bot", "email": "bot@spam.co", "honeypot": "gotcha"})
        assert result == {"success": True, "message": "Thank you! We'll get back to you soon."}
        assert await db.leads.count_documents({}) == 0

    async def test_needs_email_or_phone(self):
        from services.digital_cards import submit_card_lead
        result = await submit_card_lead("any", {"name": "Ann"})
        assert result["errors"] == [{"field": "contact", "message": "Email or phone required"}]

    async def test_unknown_card(self):
        from services.digital_cards import submit_card_lead
        result = await submit_card_lead("ghost", {"name": "Ann", "email": "ann@example.com"})
        assert result["success"] is False
        assert result["message"].startswith("Digital Card not found")

    async def test_creates_lead_for_owner(self, company):
        from services.digital_cards import create_card, submit_card_lead, get_card
        card = (await create_card(company, "user-1", _card()))["card"]
        result = await submit_card_lead(card["id"], {"name": "Visitor", "phone": "+14155550123", "message": "Call me"})
        assert result["success"] is True

        lead = await db.leads.find_one({"id": result["lead_id"]}, {"_id": 0})
        assert lead["company_id"] == company["id"]
        assert lead["assigned_to"] == "user-1"
        assert lead["source"] == "Digital Card - Contact Form"
        assert lead["email"].endswith("@contact-form.omniflow.app")
        assert lead["notes"].endswith("Message:\nCall me")
        assert lead["source_metadata"]["digital_card_url"].endswith("/card/jane-doe")
        assert (await get_card(company["id"], card["id"]))["analytics"]["leads_generated"] == 1


# ═══════════════════════════════════════════════════════════════
# 3. DASHBOARD
# ═══════════════════════════════════════════════════════════════

class TestDashboard:
    def test_metric_change(self):
        from services.analytics import format_metric_change
        assert format_metric_change(0, 0) == {"text": "No activity yet", "is_positive": True}
        assert format_metric_change(5, 0)["text"] == "Getting started"
        assert format_metric_change(15, 10) == {"text": "+50% from last period", "is_positive": True}
        assert format_metric_change(5, 10) == {"text": "-50% from last period", "is_positive": False}
        assert format_metric_change(10, 10)["text"] == "No change"

    def test_usage_percent(self):
        from services.analytics import usage_percent
        assert usage_percent(5, 20) == 25.0
        assert usage_percent(5, 0) == 0

    def test_source_breakdown(self):
        from services.analytics import lead_source_breakdown
        breakdown = lead_source_breakdown([{"source": "Web"}, {"source": "Web"}, {"source": ""}, {"source": "Ads"}])
        assert breakdown[0] == {"source": "Web", "count": 2, "percentage": 50.0}
        assert {"source": "Unknown", "count": 1, "percentage": 25.0} in breakdown

    async def test_dashboard_stats(self, company):
        from services.analytics import get_dashboard_stats
        from services.leads import create_lead
        from services.deals import create_deal
        lead = await create_lead(company["id"], {"name": "Ann", "email": "ann@example.com", "source": "Web"})
        await create_lead(company["id"], {"name": "Bo", "email": "bo@example.com", "status": "Qualified"})
        await create_deal(company["id"], {"contact_id": lead["id"], "name": "D", "amount": 100})
        await create_lead("other-co", {"name": "Zed", "email": "zed@example.com"})

        stats = await get_dashboard_stats(company["id"])
        assert stats["leads"]["total"] == 2
        assert stats["leads"]["by_status"]["Qualified"] == 1
        assert stats["leads"]["new_last_30_days"] == 2
        assert stats["deals"]["total_deals"] == 1
        assert stats["activities"]["by_type"]["deal_created"] == 1
        assert stats["ai_credits"] == {"used": 0, "limit": 20, "pool": "lifetime", "percent_used": 0.0}
