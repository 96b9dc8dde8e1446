"""
OmniFlow CRM - HTTP API tests
Tests: cron secret, signup/login session flow, permission gate, leads CRUD
and CSV over HTTP, AI credit charging, public card endpoints, event log scope,
messaging sends and bulk SMS, campaign jobs.
Run: cd /root/package && pytest backend/tests/test_api.py -v
"""

import json

from config import db

from tests.conftest import make_user


# ═══════════════════════════════════════════════════════════════
# 1. CRON
# ═══════════════════════════════════════════════════════════════

class TestCronAuth:
    async def test_missing_header(self, api_client):
        async with api_client() as c:
            r = await c.post("/api/cron/enroll-contacts")
        assert r.status_code == 401
        assert r.json()["detail"] == "Missing authorization"

    async def test_wrong_secret(self, api_client):
        async with api_client() as c:
            r = await c.post("/api/cron/enroll-contacts", headers={"Authorization": "Bearer nope"})
        assert r.status_code == 401
        assert r.json()["detail"] == "Unauthorized"

    async def test_secret_not_configured(self, api_client, monkeypatch):
        import config
        monkeypatch.setattr(config, "CRON_SECRET", "")
        async with api_client() as c:
            r = await c.post("/api/cron/enroll-contacts", headers={"Authorization": "Bearer test-cron-secret"})
        assert r.status_code == 500

    async def test_enroll_ok(self, api_client):
        async with api_client() as c:
            r = await c.post("/api/cron/enroll-contacts", headers={"Authorization": "Bearer test-cron-secret"})
        assert r.status_code == 200
        body = r.json()
        assert body["success"] is True
        assert body["enrolled"] == 0
        assert await db.event_log.count_documents({"action": "cron_enroll_contacts"}) == 1

    async def test_process_campaign_jobs(self, api_client):
        async with api_client() as c:
            r = await c.post("/api/cron/process-campaign-jobs", headers={"Authorization": "Bearer test-cron-secret"})
        assert r.status_code == 200
        assert r.json()["jobs_found"] == 0
        assert await db.event_log.count_documents({"action": "cron_process_campaign_jobs"}) == 1


# ═══════════════════════════════════════════════════════════════
# 2. AUTH
# ═══════════════════════════════════════════════════════════════

SIGNUP = {"company_name": "Bloom & Co", "name": "Pat", "email": "Pat@Bloom.test", "password": "s3cret-pass"}


class TestAuthFlow:
    async def test_signup_login_me(self, api_client):
        async with api_client() as c:
            r = await c.post("/api/auth/signup", json=SIGNUP)
            assert r.status_code == 200
            created = r.json()
            assert created["user"]["email"] == "pat@bloom.test"
            assert created["company"]["name"] == "Bloom & Co"

            r = await c.post("/api/auth/login", json={"email": "pat@bloom.test", "password": "s3cret-pass"})
            assert r.status_code == 200
            token = r.json()["token"]

            r = await c.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})
            assert r.status_code == 200
            me = r.json()
            assert me["company_id"] == created["company"]["id"]
            assert "password" not in me
            assert me["permissions"]["users.manage"] is True

        company = await db.companies.find_one({"id": created["company"]["id"]})
        assert company["plan_id"] == "plan_free"
        assert await db.event_log.count_documents({"action": "signup"}) == 1

    async def test_duplicate_signup(self, api_client):
        async with api_client() as c:
            await c.post("/api/auth/signup", json=SIGNUP)
            r = await c.post("/api/auth/signup", json={**SIGNUP, "company_name": "Other"})
        assert r.status_code == 409

    async def test_short_password(self, api_client):
        async with api_client() as c:
            r = await c.post("/api/auth/signup", json={**SIGNUP, "password": "short"})
        assert r.status_code == 422

    async def test_bad_login(self, api_client):
        async with api_client() as c:
            await c.post("/api/auth/signup", json=SIGNUP)
            r = await c.post("/api/auth/login", json={"email": "pat@bloom.test", "password": "wrong-pass"})
        assert r.status_code == 401
        assert r.json()["detail"] == "Invalid email or password"

    async def test_me_requires_token(self, api_client):
        async with api_client() as c:
            r = await c.get("/api/auth/me")
        assert r.status_code == 401

    async def test_free_plan_user_limit(self, api_client):
        async with api_client() as c:
            created = (await c.post("/api/auth/signup", json=SIGNUP)).json()
            headers = {"Authorization": f"Bearer {created['token']}"}
            r = await c.post("/api/auth/users", headers=headers,
                             json={"email": "agent@bloom.test", "password": "agent-pass", "name": "Agent"})
        assert r.status_code == 402
        assert r.json()["detail"] == "User limit reached for your plan (1 users)"


# ═══════════════════════════════════════════════════════════════
# 3. LEADS
# ═══════════════════════════════════════════════════════════════

class TestLeadsApi:
    async def test_crud(self, api_client, company):
        user = make_user(company["id"])
        async with api_client(user) as c:
            r = await c.post("/api/leads", json={"name": "Ann", "email": "Ann@Example.com", "source": "Web"})
            assert r.status_code == 200
            lead = r.json()["lead"]
            assert lead["email"] == "ann@example.com"

            r = await c.post("/api/leads", json={"name": "Ann 2", "email": "ann@example.com"})
            assert r.status_code == 409

            r = await c.put(f"/api/leads/{lead['id']}/status", json={"status": "Qualified"})
            assert r.status_code == 200

            r = await c.get("/api/leads", params={"status": "Qualified"})
            assert r.json()["total"] == 1

            r = await c.get(f"/api/leads/{lead['id']}/activities")
            assert r.status_code == 200

            r = await c.delete(f"/api/leads/{lead['id']}")
            assert r.status_code == 200
            r = await c.get(f"/api/leads/{lead['id']}")
            assert r.status_code == 404

        assert await db.event_log.count_documents({"action": "lead_delete", "company_id": company["id"]}) == 1

    async def test_invalid_email_rejected(self, api_client, company):
        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/leads", json={"name": "Ann", "email": "not-an-email"})
        assert r.status_code == 422

    async def test_viewer_cannot_create(self, api_client, company):
        async with api_client(make_user(company["id"], role="viewer")) as c:
            r = await c.post("/api/leads", json={"name": "Ann", "email": "ann@example.com"})
            assert r.status_code == 403
            r = await c.get("/api/leads")
            assert r.status_code == 200

    async def test_csv_import_and_export(self, api_client, company):
        csv_text = "name,email,phone,status\nAnn,ann@example.com,+1555,Contacted\nNo Email,,,\n"
        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/leads/import", files={"file": ("leads.csv", csv_text.encode(), "text/csv")})
            assert r.status_code == 200
            result = r.json()
            assert result["imported"] == 1
            assert result["skipped"] == 1

            r = await c.get("/api/leads/export")
            assert r.status_code == 200
            assert r.headers["content-type"].startswith("text/csv")
            assert "ann@example.com" in r.text

    async def test_import_rejects_non_csv(self, api_client, company):
        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/leads/import", files={"file": ("leads.xlsx", b"x", "application/octet-stream")})
        assert r.status_code == 400

    async def test_tenant_isolation(self, api_client, company):
        from services.leads import create_lead
        foreign = await create_lead("other-co", {"name": "Zed", "email": "zed@example.com"})
        async with api_client(make_user(company["id"])) as c:
            r = await c.get(f"/api/leads/{foreign['id']}")
        assert r.status_code == 404


class TestDealsApi:
    async def test_missing_contact(self, api_client, company):
        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/deals", json={"contact_id": "ghost", "name": "Deal", "amount": 10})
        assert r.status_code == 404


# ═══════════════════════════════════════════════════════════════
# 4. AI
# ═══════════════════════════════════════════════════════════════

SMS_REQUEST = {"message_context": "Spring sale", "desired_outcome": "Visit the store"}


class TestAiApi:
    async def test_generation_charges_one_credit(self, api_client, company, monkeypatch):
        async def _generate(system, prompt, json_output=False, temperature=0.7, **kwargs):
            return json.dumps({"sms_body": "Spring sale today"})

        monkeypatch.setattr("services.ai_content.generate_text", _generate)
        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/ai/generate/sms", json=SMS_REQUEST)
            assert r.status_code == 200
            body = r.json()
            assert body["fallback"] is False
            assert body["credits_used"] == 1

            r = await c.get("/api/ai/usage")
            assert r.json()["credits_this_month"] == 1

    async def test_own_key_reports_zero_credits(self, api_client, company, monkeypatch):
        from services.encryption import encrypt_api_key
        seen = {}

        async def _generate(system, prompt, json_output=False, temperature=0.7, api_key=None):
            seen["api_key"] = api_key
            return json.dumps({"sms_body": "Spring sale today"})

        monkeypatch.setattr("services.ai_content.generate_text", _generate)
        await db.companies.update_one({"id": company["id"]}, {"$set": {
            "byok": {"enabled": True, "api_key": encrypt_api_key("sk-own")},
        }})
        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/ai/generate/sms", json=SMS_REQUEST)
        body = r.json()
        assert body["fallback"] is False
        assert body["credits_used"] == 0
        assert seen["api_key"] == "sk-own"
        stored = await db.companies.find_one({"id": company["id"]})
        assert stored["ai_credit_balance"]["lifetime_used"] == 0

    async def test_fallback_is_free(self, api_client, company, monkeypatch):
        async def _generate(*args, **kwargs):
            raise RuntimeError("model down")

        monkeypatch.setattr("services.ai_content.generate_text", _generate)
        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/ai/generate/sms", json=SMS_REQUEST)
        body = r.json()
        assert body["fallback"] is True
        assert body["credits_used"] == 0
        assert await db.ai_usage.count_documents({"company_id": company["id"]}) == 0

    async def test_out_of_credits(self, api_client, company):
        await db.companies.update_one({"id": company["id"]}, {"$set": {"ai_credit_balance.lifetime_used": 20}})
        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/ai/generate/sms", json=SMS_REQUEST)
        assert r.status_code == 402

    async def test_suggest_plan_validates(self, api_client, company):
        async with api_client(make_user(company["id"])) as c:
            r = await c.get("/api/ai/suggest-plan", params={"credits_per_month": -1})
        assert r.status_code == 400


# ═══════════════════════════════════════════════════════════════
# 5. DIGITAL CARDS (public)
# ═══════════════════════════════════════════════════════════════

CARD = {
    "username": "jane-doe",
    "status": "active",
    "business_info": {"name": "Jane Doe Studio"},
    "links": [{"id": "l1", "label": "Site", "url": "https://jane.example.com"}],
}


class TestCardsApi:
    async def test_owner_create_and_public_flow(self, api_client, company):
        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/digital-cards", json=CARD)
            assert r.status_code == 200
            card = r.json()["card"]

            r = await c.post("/api/digital-cards", json={**CARD, "username": "jane-two"})
            assert r.status_code == 403

        async with api_client() as c:
            r = await c.get("/api/digital-cards/public/jane-doe")
            assert r.status_code == 200
            assert "company_id" not in r.json()["card"]

            r = await c.post(f"/api/digital-cards/public/{card['id']}/links/l1/click")
            assert r.status_code == 200
            r = await c.post(f"/api/digital-cards/public/{card['id']}/links/zz/click")
            assert r.status_code == 404

            r = await c.post(f"/api/digital-cards/public/{card['id']}/leads",
                             json={"name": "Visitor", "email": "visitor@example.com"})
            assert r.status_code == 200
            assert r.json()["success"] is True

        assert await db.leads.count_documents({"company_id": company["id"]}) == 1

    async def test_unknown_username(self, api_client):
        async with api_client() as c:
            r = await c.get("/api/digital-cards/public/nobody-here")
        assert r.status_code == 404

    async def test_invalid_username(self, api_client, company):
        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/digital-cards", json={**CARD, "username": "No Spaces!"})
        assert r.status_code == 422


# ═══════════════════════════════════════════════════════════════
# 6. EVENT LOG
# ═══════════════════════════════════════════════════════════════

class TestEventLogApi:
    async def test_scoped_to_company(self, api_client, company):
        from services.event_logger import log_event
        await log_event(action="lead_delete", entity_type="lead", entity_id="a", company_id=company["id"])
        await log_event(action="lead_delete", entity_type="lead", entity_id="b", company_id="other-co")

        async with api_client(make_user(company["id"])) as c:
            r = await c.get("/api/event-log", params={"company_id": "other-co"})
        body = r.json()
        assert body["total"] == 1
        assert body["events"][0]["entity_id"] == "a"

    async def test_super_admin_sees_all(self, api_client, company):
        from services.event_logger import log_event
        await log_event(action="x", entity_type="lead", entity_id="a", company_id=company["id"])
        await log_event(action="x", entity_type="lead", entity_id="b", company_id="other-co")

        async with api_client(make_user(company["id"], role="super_admin")) as c:
            r = await c.get("/api/event-log")
        assert r.json()["total"] == 2

    async def test_agent_forbidden(self, api_client, company):
        async with api_client(make_user(company["id"], role="agent")) as c:
            r = await c.get("/api/event-log")
        assert r.status_code == 403


# ═══════════════════════════════════════════════════════════════
# 7. MESSAGING
# ═══════════════════════════════════════════════════════════════

class TestMessagingApi:
    async def _lead(self, company_id, **extra):
        from services.leads import create_lead
        return await create_lead(company_id, {"name": "Pat Lee", "email": "pat@example.com", **extra})

    async def test_email_defaults_to_configured_provider(self, api_client, brevo_company, mock_http):
        import httpx
        calls = mock_http(lambda r: httpx.Response(201, json={"messageId": "<m1>"}))
        lead = await self._lead(brevo_company["id"])
        async with api_client(make_user(brevo_company["id"])) as c:
            r = await c.post("/api/messaging/email",
                             json={"lead_id": lead["id"], "subject": "Hello", "html_content": "<p>Hi</p>"})
        assert r.status_code == 200
        assert r.json()["provider"] == "brevo"
        assert json.loads(calls[0].content)["sender"] == {"email": "hello@acme.test", "name": "Acme"}
        activity = await db.activities.find_one({"contact_id": lead["id"], "type": "email"})
        assert activity["subject"] == "Hello"

    async def test_email_without_provider(self, api_client, company):
        lead = await self._lead(company["id"])
        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/messaging/email",
                             json={"lead_id": lead["id"], "subject": "Hello", "html_content": "<p>Hi</p>"})
        assert r.status_code == 400
        assert r.json()["detail"] == "No email provider configured"

    async def test_provider_failure_is_502(self, api_client, brevo_company, mock_http):
        import httpx
        mock_http(lambda r: httpx.Response(401, json={"message": "Key not found"}))
        lead = await self._lead(brevo_company["id"])
        async with api_client(make_user(brevo_company["id"])) as c:
            r = await c.post("/api/messaging/email",
                             json={"lead_id": lead["id"], "subject": "Hello", "html_content": "<p>Hi</p>"})
        assert r.status_code == 502
        assert await db.activities.count_documents({"type": "email"}) == 0

    async def test_brevo_contact_sync(self, api_client, brevo_company, mock_http):
        import httpx
        calls = mock_http(lambda r: httpx.Response(201, json={"id": 42}))
        lead = await self._lead(brevo_company["id"], phone="+14155550123")
        async with api_client(make_user(brevo_company["id"])) as c:
            r = await c.post(f"/api/messaging/brevo/contacts/{lead['id']}")
        assert r.json() == {"success": True, "contact_id": 42}
        body = json.loads(calls[0].content)
        assert body["attributes"] == {"FIRSTNAME": "Pat", "LASTNAME": "Lee", "SMS": "+14155550123"}
        assert body["updateEnabled"] is True

    async def test_bulk_sms_by_status(self, api_client, company, mock_http):
        import httpx
        from services.companies import update_api_keys
        from services.leads import create_lead
        await update_api_keys(company["id"], "twilio",
                              {"account_sid": "AC1", "auth_token": "tok", "phone_number": "+15550000000"})
        await create_lead(company["id"], {"name": "A", "email": "a@example.com", "phone": "+15551110001"})
        await create_lead(company["id"], {"name": "B", "email": "b@example.com", "phone": "+15551110002"})
        await create_lead(company["id"], {"name": "C", "email": "c@example.com"})
        await create_lead(company["id"], {"name": "D", "email": "d@example.com", "phone": "+1555", "status": "Lost"})
        calls = mock_http(lambda r: httpx.Response(201, json={"sid": "SM1", "status": "queued"}))

        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/messaging/sms/bulk", json={"status": "New", "message": "Sale today"})
        body = r.json()
        assert body["success_count"] == 2
        assert body["skipped_no_phone"] == 1
        assert len(calls) == 2
        assert await db.activities.count_documents({"type": "sms"}) == 2
        assert await db.event_log.count_documents({"action": "bulk_sms"}) == 1

    async def test_bulk_sms_needs_target(self, api_client, company):
        from services.companies import update_api_keys
        await update_api_keys(company["id"], "twilio", {"account_sid": "AC1", "auth_token": "tok"})
        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/messaging/sms/bulk", json={"message": "Sale today"})
        assert r.status_code == 400


# ═══════════════════════════════════════════════════════════════
# 8. CAMPAIGN JOBS
# ═══════════════════════════════════════════════════════════════

class TestCampaignApi:
    async def _twilio(self, company_id):
        from services.companies import update_api_keys
        await update_api_keys(company_id, "twilio",
                              {"account_sid": "AC1", "auth_token": "tok", "phone_number": "+15550000000"})

    async def test_queue_sms_then_list_and_get(self, api_client, company):
        from services.leads import create_lead
        await self._twilio(company["id"])
        await create_lead(company["id"], {"name": "A", "email": "a@example.com", "phone": "+15551110001"})
        await create_lead(company["id"], {"name": "B", "email": "b@example.com", "phone": "+15551110002"})
        await create_lead(company["id"], {"name": "C", "email": "c@example.com"})

        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/campaigns/sms", json={"name": "Promo", "status": "New", "message": "Sale today"})
            assert r.status_code == 200
            body = r.json()
            assert body["skipped_no_address"] == 1
            job = body["job"]
            assert job["status"] == "pending"
            assert job["created_by"] == "admin@acme.test"
            assert "recipients" not in job

            listed = (await c.get("/api/campaigns", params={"channel": "sms"})).json()
            assert listed["count"] == 1
            single = (await c.get(f"/api/campaigns/{job['id']}")).json()
            assert single["progress"]["total"] == 2

    async def test_send_now_email(self, api_client, brevo_company, mock_http):
        import httpx
        from services.leads import create_lead
        calls = mock_http(lambda r: httpx.Response(201, json={"messageId": "<m1>"}))
        lead = await create_lead(brevo_company["id"], {"name": "Pat Lee", "email": "pat@example.com"})
        async with api_client(make_user(brevo_company["id"])) as c:
            r = await c.post("/api/campaigns/email", json={
                "name": "Welcome", "lead_ids": [lead["id"]], "subject": "Hi {{first_name}}",
                "html_content": "<p>Hello</p>", "send_now": True,
            })
        job = r.json()["job"]
        assert job["status"] == "completed"
        assert job["progress"]["sent"] == 1
        assert json.loads(calls[0].content)["subject"] == "Hi Pat"

    async def test_no_recipients_is_400(self, api_client, brevo_company):
        async with api_client(make_user(brevo_company["id"])) as c:
            r = await c.post("/api/campaigns/email", json={
                "name": "Win back", "status": "Won", "subject": "s", "html_content": "c",
            })
        assert r.status_code == 400
        assert r.json()["detail"] == "No recipients with an email address"

    async def test_unconfigured_provider_is_400(self, api_client, company):
        from services.leads import create_lead
        await create_lead(company["id"], {"name": "A", "email": "a@example.com", "phone": "+15551110001"})
        async with api_client(make_user(company["id"])) as c:
            r = await c.post("/api/campaigns/whatsapp", json={"name": "x", "status": "New", "template_name": "hello"})
        assert r.status_code == 400
        assert r.json()["detail"] == "meta_whatsapp is not configured for this company"

    async def test_other_company_job_is_404(self, api_client, company):
        from services.campaigns import create_sms_campaign_job
        from services.companies import create_company, get_company
        await self._twilio(company["id"])
        job = (await create_sms_campaign_job(
            await get_company(company["id"]), "x", {"message": "Hi"}, [{"lead_id": "l1", "phone": "+1555"}]
        ))["job"]
        other = await create_company("Other Co", owner_id="o2")
        async with api_client(make_user(other["id"])) as c:
            assert (await c.get(f"/api/campaigns/{job['id']}")).status_code == 404
            assert (await c.post(f"/api/campaigns/{job['id']}/retry")).status_code == 404

    async def test_retry_failed_recipients(self, api_client, company, mock_http):
        import httpx
        from services.leads import create_lead
        await self._twilio(company["id"])
        mock_http(lambda r: httpx.Response(400, json={"message": "Unreachable"}))
        await create_lead(company["id"], {"name": "A", "email": "a@example.com", "phone": "+15551110001"})
        async with api_client(make_user(company["id"])) as c:
            first = (await c.post("/api/campaigns/sms", json={
                "name": "Promo", "status": "New", "message": "Sale", "send_now": True,
            })).json()["job"]
            assert first["status"] == "failed"
            r = await c.post(f"/api/campaigns/{first['id']}/retry")
        retry = r.json()["job"]
        assert retry["retry_of"] == first["id"]
        assert retry["progress"]["total"] == 1

    async def test_viewer_can_list_not_queue(self, api_client, company):
        async with api_client(make_user(company["id"], role="viewer")) as c:
            assert (await c.get("/api/campaigns")).status_code == 200
            r = await c.post("/api/campaigns/sms", json={"name": "x", "status": "New", "message": "Hi"})
        assert r.status_code == 403
