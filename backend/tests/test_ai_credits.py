"""
OmniFlow CRM - AI cost and credit balance tests
Tests: cost margins, credit rates, plan suggestion, lifetime/monthly pools, BYOK.
Run: cd /root/package && pytest backend/tests/test_ai_credits.py -v
"""

import pytest
from config import db


# ═══════════════════════════════════════════════════════════════
# 1. COST (pure)
# ═══════════════════════════════════════════════════════════════

class TestAiCost:
    def test_text_generation_cost_margin(self):
        from services.ai_cost import calculate_text_generation_cost
        cost = calculate_text_generation_cost(1_000_000, 1_000_000)
        assert cost["raw_cost"] == pytest.approx(0.50)
        assert cost["platform_cost"] == pytest.approx(1.00)
        assert cost["margin"] == pytest.approx(0.50)

    def test_image_cost_by_model(self):
        from services.ai_cost import calculate_image_generation_cost
        assert calculate_image_generation_cost(2, "imagen-3")["raw_cost"] == pytest.approx(0.06)
        assert calculate_image_generation_cost(1, "unknown")["raw_cost"] == pytest.approx(0.04)

    def test_credits_per_operation(self):
        from services.ai_cost import calculate_credits_consumed
        assert calculate_credits_consumed("text_generation") == 1
        assert calculate_credits_consumed("image_generation", metadata={"images": 3}) == 75
        assert calculate_credits_consumed("text_to_speech") == 5
        assert calculate_credits_consumed("video_generation") == 50
        assert calculate_credits_consumed("mystery") == 1

    def test_estimate_monthly_cost_sums(self):
        from services.ai_cost import estimate_monthly_cost
        est = estimate_monthly_cost(0, 0, 0, 10, 0, 0)
        assert est["raw_cost"] == pytest.approx(0.40)
        assert est["platform_cost"] == pytest.approx(0.80)

    @pytest.mark.parametrize("credits,plan_id", [
        (0, "plan_free"), (500, "plan_free"), (501, "plan_starter"),
        (2000, "plan_starter"), (10000, "plan_pro"), (10001, "plan_enterprise"),
    ])
    def test_suggest_plan_thresholds(self, credits, plan_id):
        from services.ai_cost import suggest_plan_for_usage
        assert suggest_plan_for_usage(credits)["plan_id"] == plan_id

    def test_token_estimate(self):
        from services.ai_cost import estimate_token_count
        assert estimate_token_count("") == 0
        # 8 chars -> 2, 2 words -> avg 2
        assert estimate_token_count("abc defg") == 2


# ═══════════════════════════════════════════════════════════════
# 2. BALANCE
# ═══════════════════════════════════════════════════════════════

class TestCreditBalance:
    async def test_free_plan_lifetime_pool(self, company):
        from services.ai_credits import check_credits
        check = await check_credits(company["id"], 1)
        assert check["available"] is True
        assert check["lifetime_remaining"] == 20

    async def test_lifetime_exhausted_message(self, company):
        from services.ai_credits import check_credits
        await db.companies.update_one({"id": company["id"]}, {"$set": {"ai_credit_balance.lifetime_used": 20}})
        check = await check_credits(company["id"], 1)
        assert check["available"] is False
        assert check["reason"] == "All 20 free credits used. Upgrade for more!"

    async def test_monthly_limit_message(self, company):
        from services.companies import set_company_plan
        from services.ai_credits import check_credits
        await set_company_plan(company["id"], "plan_starter")
        await db.companies.update_one({"id": company["id"]}, {"$set": {"ai_credit_balance.monthly_used": 2000}})
        check = await check_credits(company["id"], 1)
        assert check["available"] is False
        assert check["reason"] == "Monthly credit limit reached (2000). Resets next month."

    async def test_month_rollover_resets_usage(self, company):
        from services.companies import set_company_plan
        from services.ai_credits import check_credits
        await set_company_plan(company["id"], "plan_starter")
        await db.companies.update_one({"id": company["id"]}, {"$set": {
            "ai_credit_balance.monthly_used": 2000,
            "ai_credit_balance.current_month": "2000-01",
        }})
        check = await check_credits(company["id"], 1)
        assert check["available"] is True
        assert check["monthly_remaining"] == 2000

    async def test_unknown_company(self):
        from services.ai_credits import check_credits
        assert (await check_credits("nope"))["available"] is False

    async def test_consume_deducts_and_records(self, company):
        from services.ai_credits import consume_credits, get_credit_balance
        used = await consume_credits(company["id"], "text_generation", user_id="u1")
        assert used == 1
        balance = await get_credit_balance(company["id"])
        assert balance["lifetime_used"] == 1
        usage = await db.ai_usage.find_one({"company_id": company["id"]})
        assert usage["credits_used"] == 1
        assert usage["own_api_key"] is False

    async def test_consume_raises_when_empty(self, company):
        from services.ai_credits import consume_credits, CreditLimitError
        await db.companies.update_one({"id": company["id"]}, {"$set": {"ai_credit_balance.lifetime_used": 20}})
        with pytest.raises(CreditLimitError) as exc:
            await consume_credits(company["id"], "text_generation")
        assert "free credits used" in exc.value.reason

    async def test_byok_is_unlimited_and_free(self, company):
        from services.ai_credits import consume_credits, get_credit_balance, check_credits
        from services.encryption import encrypt_api_key
        await db.companies.update_one({"id": company["id"]}, {"$set": {
            "byok": {"enabled": True, "api_key": encrypt_api_key("sk-own")},
            "ai_credit_balance.lifetime_used": 20,
        }})
        assert (await check_credits(company["id"], 100))["unlimited"] is True
        assert await consume_credits(company["id"], "text_generation") == 0
        balance = await get_credit_balance(company["id"])
        assert balance["lifetime_used"] == 20
        usage = await db.ai_usage.find_one({"company_id": company["id"]})
        assert usage["credits_used"] == 0
        assert usage["own_api_key"] is True

    async def test_bonus_survives_resync(self, company):
        from services.ai_credits import add_bonus_credits, get_credit_balance
        await add_bonus_credits(company["id"], 10, "lifetime")
        balance = await get_credit_balance(company["id"])
        assert balance["lifetime_allocated"] == 30
        assert balance["bonus_lifetime"] == 10

    async def test_reset_all_monthly(self, company):
        from services.ai_credits import reset_all_monthly_credits
        await db.companies.update_one({"id": company["id"]}, {"$set": {"ai_credit_balance.current_month": "1999-12"}})
        assert await reset_all_monthly_credits() == 1
        assert await reset_all_monthly_credits() == 0
