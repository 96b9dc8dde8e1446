"""
OmniFlow CRM - Deals pipeline tests
Tests: probability defaults, contact sync on won/lost, timeline entries, stats.
Run: cd /root/package && pytest backend/tests/test_deals.py -v
"""

import pytest
from config import db


@pytest.fixture
async def contact(company):
    from services.leads import create_lead
    return await create_lead(company["id"], {"name": "Kim Lee", "email": "kim@example.com"})


# ═══════════════════════════════════════════════════════════════
# 1. CREATE
# ═══════════════════════════════════════════════════════════════

class TestCreateDeal:
    async def test_defaults_and_activity(self, company, contact):
        from services.deals import create_deal
        result = await create_deal(company["id"], {"contact_id": contact["id"], "name": "Website redesign", "amount": 5000})
        deal = result["deal"]
        assert deal["status"] == "proposal"
        assert deal["probability"] == 20
        assert deal["contact_name"] == "Kim Lee"
        assert deal["actual_close_date"] is None

        activity = await db.activities.find_one({"contact_id": contact["id"], "type": "deal_created"})
        assert activity["content"] == 'Deal "Website redesign" created with value USD 5000'

    async def test_explicit_probability_kept(self, company, contact):
        from services.deals import create_deal
        result = await create_deal(company["id"], {"contact_id": contact["id"], "name": "D", "status": "negotiation", "probability": 65})
        assert result["deal"]["probability"] == 65

    async def test_created_won_syncs_contact(self, company, contact):
        from services.deals import create_deal
        from services.leads import get_lead
        result = await create_deal(company["id"], {"contact_id": contact["id"], "name": "D", "status": "won", "amount": 10.5})
        assert result["deal"]["actual_close_date"] is not None
        assert (await get_lead(company["id"], contact["id"]))["status"] == "Won"

    async def test_missing_contact(self, company):
        from services.deals import create_deal
        result = await create_deal(company["id"], {"contact_id": "ghost", "name": "D"})
        assert result == {"success": False, "error": "Contact not found"}


# ═══════════════════════════════════════════════════════════════
# 2. UPDATE
# ═══════════════════════════════════════════════════════════════

class TestUpdateDeal:
    async def test_status_change_to_lost(self, company, contact):
        from services.deals import create_deal, update_deal
        from services.leads import get_lead
        deal = (await create_deal(company["id"], {"contact_id": contact["id"], "name": "Retainer", "amount": 1200}))["deal"]

        result = await update_deal(company["id"], deal["id"], {"status": "lost"}, updated_by="admin@acme.test")
        assert result["changed"] is True
        assert result["deal"]["probability"] == 0
        assert result["deal"]["actual_close_date"] is not None
        assert "contact status updated to Lost" in result["changes"]
        assert (await get_lead(company["id"], contact["id"]))["status"] == "Lost"

        activity = await db.activities.find_one({"type": "deal_updated"})
        assert activity["content"].startswith('Deal "Retainer" updated: status changed from "proposal" to "lost"')

    async def test_reopen_clears_close_date(self, company, contact):
        from services.deals import create_deal, update_deal
        deal = (await create_deal(company["id"], {"contact_id": contact["id"], "name": "D", "status": "won"}))["deal"]
        result = await update_deal(company["id"], deal["id"], {"status": "closing"})
        assert result["deal"]["actual_close_date"] is None
        assert result["deal"]["probability"] == 80

    async def test_amount_change_described(self, company, contact):
        from services.deals import create_deal, update_deal
        deal = (await create_deal(company["id"], {"contact_id": contact["id"], "name": "D", "amount": 100}))["deal"]
        result = await update_deal(company["id"], deal["id"], {"amount": 250.5})
        assert result["changes"] == ["amount changed from 100 to 250.50"]

    async def test_probability_only(self, company, contact):
        from services.deals import create_deal, update_deal
        deal = (await create_deal(company["id"], {"contact_id": contact["id"], "name": "D"}))["deal"]
        result = await update_deal(company["id"], deal["id"], {"probability": 35})
        assert result["changes"] == ["probability changed from 20% to 35%"]

    async def test_no_change_no_activity(self, company, contact):
        from services.deals import create_deal, update_deal
        deal = (await create_deal(company["id"], {"contact_id": contact["id"], "name": "D", "amount": 100}))["deal"]
        result = await update_deal(company["id"], deal["id"], {"amount": 100, "status": "proposal"})
        assert result["changed"] is False
        assert await db.activities.count_documents({"type": "deal_updated"}) == 0

    async def test_notes_change_without_activity(self, company, contact):
        from services.deals import create_deal, update_deal
        deal = (await create_deal(company["id"], {"contact_id": contact["id"], "name": "D"}))["deal"]
        result = await update_deal(company["id"], deal["id"], {"notes": "call back"})
        assert result["changed"] is True
        assert result["deal"]["notes"] == "call back"
        assert await db.activities.count_documents({"type": "deal_updated"}) == 0

    async def test_unknown_deal(self, company):
        from services.deals import update_deal
        assert (await update_deal(company["id"], "nope", {"amount": 1}))["success"] is False


# ═══════════════════════════════════════════════════════════════
# 3. STATS (pure)
# ═══════════════════════════════════════════════════════════════

class TestDealStats:
    DEALS = [
        {"status": "proposal", "amount": 1000, "probability": 20},
        {"status": "closing", "amount": 3000, "probability": 80},
        {"status": "won", "amount": 2000, "probability": 100},
        {"status": "lost", "amount": 2000, "probability": 0},
    ]

    def test_stats(self):
        from services.deals import calculate_deal_stats
        stats = calculate_deal_stats(self.DEALS)
        assert stats["total_deals"] == 4
        assert stats["open_deals"] == 2
        assert stats["total_pipeline_value"] == 4000
        assert stats["won_value"] == 2000
        assert stats["average_deal_size"] == 2000
        assert stats["average_probability"] == 50
        assert stats["conversion_rate"] == 50
        assert stats["weighted_pipeline_value"] == pytest.approx(2600)

    def test_empty(self):
        from services.deals import calculate_deal_stats
        stats = calculate_deal_stats([])
        assert stats["average_deal_size"] == 0
        assert stats["conversion_rate"] == 0

    def test_pipeline_columns(self):
        from services.deals import group_deals_by_status
        pipeline = group_deals_by_status(self.DEALS + [{"status": "archived", "amount": 9}])
        assert list(pipeline) == ["proposal", "negotiation", "closing", "won", "lost"]
        assert pipeline["closing"]["value"] == 3000
        assert pipeline["negotiation"]["count"] == 0
