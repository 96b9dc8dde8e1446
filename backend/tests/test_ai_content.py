"""
OmniFlow CRM - AI content tests
Tests: output parsing, greeting tag, SMS truncation, unified campaign
with a fake model (success, partial failure, total failure).
Run: cd /root/package && pytest backend/tests/test_ai_content.py -v
"""

import json
import pytest

CAMPAIGN = {
    "campaign_goal": "Launch our spring collection",
    "target_audience": "Returning customers",
    "key_points": "20% off, free shipping",
    "tone": "Friendly",
    "call_to_action": "Shop now",
    "call_to_action_link": "https://shop.example.com",
    "business_context": "Bloom & Co",
}


def fake_model(overrides=None):
    """Build a generate_text replacement keyed on the system prompt."""
    overrides = overrides or {}

    async def _generate(system, prompt, json_output=False, temperature=0.7, **kwargs):
        if "subject lines" in system:
            key = "subject"
            default = json.dumps({"subject_lines": ["Spring is here", "New arrivals", "20% off", "extra"],
                                  "ctas": ["Shop now", "Browse", "Claim"]})
        elif "SMS" in system:
            key = "sms"
            default = json.dumps({"sms_body": "Spring sale! " + "x" * 200})
        elif "WhatsApp" in system:
            key = "whatsapp"
            default = json.dumps({"message": "Hi *{{1}}*, spring is here"})
        else:
            key = "email"
            default = "```html\n<p>Hi {{ contact.FIRSTNAME }},</p><p>Spring!</p>\n```"
        value = overrides.get(key, default)
        if isinstance(value, Exception):
            raise value
        return value

    return _generate


# ═══════════════════════════════════════════════════════════════
# 1. HELPERS (pure)
# ═══════════════════════════════════════════════════════════════

class TestHelpers:
    def test_strip_code_fences(self):
        from services.ai_content import strip_code_fences
        assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fences("  plain  ") == "plain"

    def test_parse_json_rejects_list(self):
        from services.ai_content import parse_json_output
        with pytest.raises(ValueError):
            parse_json_output("[1, 2]")

    def test_ensure_greeting(self):
        from services.ai_content import ensure_greeting
        assert ensure_greeting("<p>Body</p>", "Formal").startswith("<h1>Dear {{ contact.FIRSTNAME }},</h1>")
        assert ensure_greeting("<p>Body</p>", "Friendly").startswith("<h1>Hi {{ contact.FIRSTNAME }},</h1>")
        kept = "<p>Hello {{ contact.FIRSTNAME }}</p>"
        assert ensure_greeting(kept, "Formal") == kept

    def test_truncate_sms(self):
        from services.ai_content import truncate_sms
        assert truncate_sms("short") == "short"
        out = truncate_sms("y" * 200)
        assert len(out) == 160
        assert out.endswith("...")

    def test_tone_maps(self):
        from services.ai_content import map_tone_for_subject, map_tone_for_cta
        assert map_tone_for_subject("Enthusiastic") == "Playful"
        assert map_tone_for_subject("Sarcastic") == "Benefit-driven"
        assert map_tone_for_cta("Formal") == "Clear & Direct"
        assert map_tone_for_cta("Sarcastic") == "Clear & Direct"

    def test_client_requires_key(self, monkeypatch):
        import config
        from services.ai_content import get_ai_client
        monkeypatch.setattr(config, "OPENAI_API_KEY", "")
        with pytest.raises(RuntimeError):
            get_ai_client()


# ═══════════════════════════════════════════════════════════════
# 2. SINGLE GENERATORS
# ═══════════════════════════════════════════════════════════════

class TestGenerators:
    async def test_email_strips_fences(self, monkeypatch):
        from services.ai_content import generate_email_content
        monkeypatch.setattr("services.ai_content.generate_text", fake_model())
        result = await generate_email_content(CAMPAIGN)
        assert result["html_content"] == "<p>Hi {{ contact.FIRSTNAME }},</p><p>Spring!</p>"

    async def test_subjects_capped(self, monkeypatch):
        from services.ai_content import generate_subject_and_ctas
        monkeypatch.setattr("services.ai_content.generate_text", fake_model())
        result = await generate_subject_and_ctas({"campaign_goal": "Sale", "num_suggestions": 2})
        assert result == {"subject_lines": ["Spring is here", "New arrivals"], "ctas": ["Shop now", "Browse"]}

    async def test_sms_missing_body_raises(self, monkeypatch):
        from services.ai_content import generate_sms_content
        monkeypatch.setattr("services.ai_content.generate_text", fake_model({"sms": json.dumps({"other": "x"})}))
        with pytest.raises(ValueError):
            await generate_sms_content({"message_context": "c", "desired_outcome": "o"})

    async def test_api_key_forwarded(self, monkeypatch):
        from services.ai_content import generate_whatsapp_message
        seen = {}

        async def _generate(system, prompt, json_output=False, temperature=0.7, api_key=None):
            seen["api_key"] = api_key
            return json.dumps({"message": "hello"})

        monkeypatch.setattr("services.ai_content.generate_text", _generate)
        await generate_whatsapp_message({"lead_name": "Ann", "lead_context": "c", "desired_outcome": "o", "api_key": "sk-own"})
        assert seen["api_key"] == "sk-own"


# ═══════════════════════════════════════════════════════════════
# 3. UNIFIED CAMPAIGN
# ═══════════════════════════════════════════════════════════════

class TestUnifiedCampaign:
    async def test_all_channels(self, monkeypatch):
        from services.ai_content import generate_unified_campaign
        monkeypatch.setattr("services.ai_content.generate_text", fake_model())
        result = await generate_unified_campaign(CAMPAIGN)
        assert result["email"]["subject_lines"] == ["Spring is here", "New arrivals", "20% off"]
        assert result["email"]["cta_suggestions"] == ["Shop now", "Browse", "Claim"]
        assert "{{ contact.FIRSTNAME }}" in result["email"]["html_content"]
        assert len(result["sms"]["message"]) == 160
        assert result["whatsapp"]["message"] == "Hi *{{1}}*, spring is here"

    async def test_partial_failure_uses_channel_fallback(self, monkeypatch):
        from services.ai_content import generate_unified_campaign
        monkeypatch.setattr("services.ai_content.generate_text", fake_model({
            "sms": RuntimeError("rate limited"),
            "email": "<p>No greeting here</p>",
        }))
        result = await generate_unified_campaign(CAMPAIGN)
        assert result["sms"]["message"] == "Shop now"
        assert result["email"]["html_content"].startswith("<h1>Hi {{ contact.FIRSTNAME }},</h1>")
        assert result["whatsapp"]["message"] == "Hi *{{1}}*, spring is here"

    async def test_subject_failure_fallback(self, monkeypatch):
        from services.ai_content import generate_unified_campaign
        monkeypatch.setattr("services.ai_content.generate_text", fake_model({"subject": "not json"}))
        result = await generate_unified_campaign(CAMPAIGN)
        assert result["email"]["subject_lines"] == ["Launch our spring collection"]
        assert result["email"]["cta_suggestions"] == ["Shop now"]

    async def test_everything_fails(self, monkeypatch):
        from services.ai_content import generate_unified_campaign
        boom = RuntimeError("down")
        monkeypatch.setattr("services.ai_content.generate_text", fake_model({
            "subject": boom, "sms": boom, "whatsapp": boom, "email": boom,
        }))
        result = await generate_unified_campaign(CAMPAIGN)
        assert result["email"]["html_content"] == "<p>Hi {{ contact.FIRSTNAME }},</p><p>20% off, free shipping</p><p>Shop now</p>"
        assert result["whatsapp"]["message"] == "Hi *{{1}}*,\n\nLaunch our spring collection\n\nShop now"

    async def test_missing_input_uses_campaign_fallback(self):
        from services.ai_content import generate_unified_campaign
        data = {k: v for k, v in CAMPAIGN.items() if k != "tone"}
        result = await generate_unified_campaign(data)
        assert result["sms"]["message"] == "Launch our spring collection. Shop now"
        assert result["whatsapp"]["message"].endswith("Best regards,\n*Bloom & Co*")
        assert result["email"]["cta_suggestions"] == ["Shop now", "Learn More", "Get Started"]
