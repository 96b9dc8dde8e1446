"""
OmniFlow CRM - Leads tests
Tests: filter/paginate helpers, status changes, CSV import/export, timeline.
Run: cd /root/package && pytest backend/tests/test_leads.py -v
"""

from config import db

LEADS = [
    {"name": "Alice Martin", "email": "alice@example.com", "phone": "555-0101", "status": "New", "source": "Website", "company_name": "Globex"},
    {"name": "Bob Stone", "email": "bob@example.com", "phone": "555-0102", "status": "Contacted", "source": "Referral", "assigned_to": "u2"},
    {"name": "Carla Diaz", "email": "carla@acme.io", "phone": "", "status": "Won", "source": "website"},
]


# ═══════════════════════════════════════════════════════════════
# 1. FILTER / PAGINATE (pure)
# ═══════════════════════════════════════════════════════════════

class TestFilterLeads:
    def test_no_filters(self):
        from services.leads import filter_leads
        assert len(filter_leads(LEADS)) == 3

    def test_status_all_is_ignored(self):
        from services.leads import filter_leads
        assert len(filter_leads(LEADS, status="all")) == 3
        assert [l["name"] for l in filter_leads(LEADS, status="Won")] == ["Carla Diaz"]

    def test_search_is_case_insensitive(self):
        from services.leads import filter_leads
        assert len(filter_leads(LEADS, search="GLOBEX")) == 1
        assert len(filter_leads(LEADS, search="example.com")) == 2
        assert len(filter_leads(LEADS, search="0102")) == 1

    def test_source_and_owner(self):
        from services.leads import filter_leads
        assert len(filter_leads(LEADS, source="WEBSITE")) == 2
        assert filter_leads(LEADS, assigned_to="u2")[0]["name"] == "Bob Stone"

    def test_blank_search(self):
        from services.leads import filter_leads
        assert len(filter_leads(LEADS, search="   ")) == 3


class TestPaginateLeads:
    def test_pages(self):
        from services.leads import paginate_leads
        page = paginate_leads(list(range(55)), page=2, page_size=25)
        assert page["items"] == list(range(25, 50))
        assert page["total"] == 55
        assert page["total_pages"] == 3
        assert page["has_next"] is True
        assert page["has_previous"] is True

    def test_empty(self):
        from services.leads import paginate_leads
        page = paginate_leads([], page=1, page_size=25)
        assert page["total_pages"] == 0
        assert page["has_next"] is False
        assert page["has_previous"] is False

    def test_page_past_end(self):
        from services.leads import paginate_leads
        assert paginate_leads([1, 2], page=5, page_size=25)["items"] == []

    def test_bounds_clamped(self):
        from services.leads import paginate_leads
        page = paginate_leads([1, 2, 3], page=0, page_size=0)
        assert page["page"] == 1
        assert page["page_size"] == 1


# ═══════════════════════════════════════════════════════════════
# 2. STATUS CHANGES
# ═══════════════════════════════════════════════════════════════

class TestLeadStatus:
    async def test_change_writes_activity(self, company):
        from services.leads import create_lead, update_lead_status
        lead = await create_lead(company["id"], {"name": "Ann", "email": "ann@example.com"})
        result = await update_lead_status(company["id"], lead["id"], "Qualified", user="admin@acme.test")
        assert result == {"success": True, "changed": True, "old_status": "New", "status": "Qualified"}

        activity = await db.activities.find_one({"contact_id": lead["id"]})
        assert activity["type"] == "status_change"
        assert activity["content"] == 'Status changed from "New" to "Qualified"'
        assert activity["created_by"] == "admin@acme.test"

    async def test_same_status_no_activity(self, company):
        from services.leads import create_lead, update_lead_status
        lead = await create_lead(company["id"], {"name": "Ann", "email": "ann@example.com"})
        result = await update_lead_status(company["id"], lead["id"], "New")
        assert result["changed"] is False
        assert await db.activities.count_documents({}) == 0

    async def test_invalid_status(self, company):
        from services.leads import create_lead, update_lead_status
        lead = await create_lead(company["id"], {"name": "Ann", "email": "ann@example.com"})
        assert (await update_lead_status(company["id"], lead["id"], "Maybe"))["success"] is False

    async def test_other_company_cannot_see_lead(self, company):
        from services.leads import create_lead, get_lead, update_lead_status
        lead = await create_lead(company["id"], {"name": "Ann", "email": "ann@example.com"})
        assert await get_lead("other-company", lead["id"]) is None
        assert (await update_lead_status("other-company", lead["id"], "Won"))["error"] == "Lead not found"

    async def test_update_ignores_status(self, company):
        from services.leads import create_lead, update_lead
        lead = await create_lead(company["id"], {"name": "Ann", "email": "ann@example.com"})
        updated = await update_lead(company["id"], lead["id"], {"name": "Ann B", "status": "Won"})
        assert updated["name"] == "Ann B"
        assert updated["status"] == "New"


# ═══════════════════════════════════════════════════════════════
# 3. CSV
# ═══════════════════════════════════════════════════════════════

class TestLeadsCsv:
    def test_parse_maps_headers(self):
        from services.leads import parse_leads_csv
        content = (
            "\ufeffName,Email,How They Found Us,Status,Owner\n"
            "Dan,DAN@Example.com,Trade show,qualified,u9\n"
            ",noname@example.com,,,\n"
            "Eve,not-an-email,,,\n"
            "Frank,,,,\n"
        )
        parsed = parse_leads_csv(content)
        assert parsed["skipped"] == 2
        assert len(parsed["errors"]) == 1
        dan, noname = parsed["rows"]
        assert dan["email"] == "dan@example.com"
        assert dan["source"] == "Trade show"
        assert dan["status"] == "Qualified"
        assert dan["assigned_to"] == "u9"
        assert noname["name"] == "noname"
        assert "status" not in noname

    async def test_import_updates_existing(self, company):
        from services.leads import create_lead, import_leads_csv, find_lead_by_email
        await create_lead(company["id"], {"name": "Old Name", "email": "gus@example.com"})
        content = "Name,Email,Phone\nGus,gus@example.com,555-9999\nHana,hana@example.com,\n"
        result = await import_leads_csv(company["id"], content)
        assert result["imported"] == 1
        assert result["updated"] == 1

        gus = await find_lead_by_email(company["id"], "GUS@example.com")
        assert gus["name"] == "Gus"
        assert gus["phone"] == "555-9999"
        hana = await find_lead_by_email(company["id"], "hana@example.com")
        assert hana["source"] == "CSV Import"
        assert await db.leads.count_documents({"company_id": company["id"]}) == 2

    async def test_reimport_without_status_keeps_status(self, company):
        from services.leads import create_lead, update_lead_status, import_leads_csv, find_lead_by_email
        lead = await create_lead(company["id"], {"name": "Gus", "email": "gus@example.com"})
        await update_lead_status(company["id"], lead["id"], "Won")
        await import_leads_csv(company["id"], "Name,Email,Phone\nGus,gus@example.com,555-9999\n")

        gus = await find_lead_by_email(company["id"], "gus@example.com")
        assert gus["status"] == "Won"
        assert gus["phone"] == "555-9999"
        assert await db.activities.count_documents({"contact_id": lead["id"], "type": "status_change"}) == 1

    async def test_reimport_status_change_is_logged(self, company):
        from services.leads import create_lead, import_leads_csv, find_lead_by_email
        lead = await create_lead(company["id"], {"name": "Gus", "email": "gus@example.com"})
        await import_leads_csv(company["id"], "Name,Email,Status\nGus,gus@example.com,contacted\n", user="ops@acme.test")

        assert (await find_lead_by_email(company["id"], "gus@example.com"))["status"] == "Contacted"
        activity = await db.activities.find_one({"contact_id": lead["id"], "type": "status_change"})
        assert activity["content"] == 'Status changed from "New" to "Contacted"'
        assert activity["created_by"] == "ops@acme.test"

    def test_export_headers(self):
        from services.leads import export_leads_csv
        out = export_leads_csv([{"name": "Ivy", "email": "ivy@example.com", "status": "New"}])
        lines = out.strip().splitlines()
        assert lines[0].startswith("Name,Email,Phone,Status")
        assert lines[1].startswith("Ivy,ivy@example.com,,New")


# ═══════════════════════════════════════════════════════════════
# 4. TIMELINE
# ═══════════════════════════════════════════════════════════════

class TestActivities:
    async def test_log_refreshes_last_contacted(self, company):
        from services.leads import create_lead, get_lead
        from services.activity_logger import log_call
        lead = await create_lead(company["id"], {"name": "Jo", "email": "jo@example.com"})
        entry = await log_call(company["id"], lead["id"], "Intro call", duration_minutes=15)
        assert entry["metadata"] == {"duration_minutes": 15}
        assert (await get_lead(company["id"], lead["id"]))["last_contacted"] == entry["occurred_at"]

    async def test_contact_timeline_newest_first(self, company):
        from services.activity_logger import log_activity, get_contact_activities
        await log_activity(company["id"], "c1", "note", "first", occurred_at="2026-01-01T00:00:00+00:00")
        await log_activity(company["id"], "c1", "note", "second", occurred_at="2026-02-01T00:00:00+00:00")
        await log_activity(company["id"], "c2", "note", "other contact")
        timeline = await get_contact_activities(company["id"], "c1")
        assert [a["content"] for a in timeline] == ["second", "first"]

    async def test_recent_by_type(self, company):
        from services.activity_logger import log_note, log_sms, get_recent_activities
        await log_note(company["id"], "c1", "hello")
        await log_sms(company["id"], "c1", "sms body")
        recent = await get_recent_activities(company["id"], activity_type="sms")
        assert len(recent) == 1
        assert recent[0]["direction"] == "outbound"

    async def test_meeting_and_task_subjects(self, company):
        from services.activity_logger import log_meeting, log_task, get_contact_activities
        await log_meeting(company["id"], "c1", "Demo with the team", subject="Product demo")
        await log_task(company["id"], "c1", "Send the proposal", subject="Follow-up", metadata={"due": "2026-06-01"})
        timeline = await get_contact_activities(company["id"], "c1")
        assert {a["type"] for a in timeline} == {"meeting", "task"}
        task = next(a for a in timeline if a["type"] == "task")
        assert task["subject"] == "Follow-up"
        assert task["metadata"] == {"due": "2026-06-01"}

    def test_manual_types_only(self):
        import pytest
        from pydantic import ValidationError
        from models.activity import ActivityCreate
        ActivityCreate(contact_id="c1", type="call", content="x")
        with pytest.raises(ValidationError):
            ActivityCreate(contact_id="c1", type="deal_created", content="x")
        with pytest.raises(ValidationError):
            ActivityCreate(contact_id="c1", type="note", content="   ")
