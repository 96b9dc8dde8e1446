"""
OmniFlow CRM - shared test fixtures
Run: cd /root/package && pytest -v

config.db is swapped for an in-memory mongomock-motor database before any
service module is imported (services bind `db` at import time).
"""

import base64
import os

os.environ.setdefault("ENCRYPTION_KEY", base64.b64encode(b"k" * 32).decode())
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("SCHEDULER_ENABLED", "false")
os.environ["OPENAI_API_KEY"] = ""
os.environ["SENDGRID_API_KEY"] = ""

import httpx  # noqa: E402
import pytest  # noqa: E402
from mongomock_motor import AsyncMongoMockClient  # noqa: E402

import config  # noqa: E402

config.db = AsyncMongoMockClient()["omniflow_test"]

COLLECTIONS = [
    "users", "sessions", "companies", "plans", "settings",
    "leads", "deals", "activities",
    "email_automations", "email_lists", "email_contacts", "automation_states",
    "custom_templates", "template_usage", "template_ratings",
    "digital_cards", "ai_usage", "event_log", "campaign_jobs",
]


@pytest.fixture(autouse=True)
async def clean_db():
    yield
    for name in COLLECTIONS:
        await config.db[name].delete_many({})


@pytest.fixture
def mock_http(monkeypatch):
    """
    Route every outbound provider call through a handler.
    Usage: calls = mock_http(lambda request: httpx.Response(200, json={...}))
    """
    from services import http_client

    def install(handler):
        calls = []

        def _handler(request: httpx.Request):
            calls.append(request)
            return handler(request)

        monkeypatch.setattr(http_client, "HTTP_TRANSPORT", httpx.MockTransport(_handler))
        return calls

    return install


@pytest.fixture
async def company():
    from services.companies import create_company
    return await create_company("Acme Inc", owner_id="owner-1")


@pytest.fixture
async def brevo_company(company):
    from services.companies import update_api_keys, get_company
    await update_api_keys(company["id"], "brevo", {"api_key": "xkeysib-test"})
    await config.db.companies.update_one(
        {"id": company["id"]}, {"$set": {"sender_email": "hello@acme.test", "sender_name": "Acme"}}
    )
    return await get_company(company["id"])


def make_user(company_id: str, role: str = "admin", user_id: str = "user-1", email: str = "admin@acme.test") -> dict:
    from services.permissions import get_preset_permissions
    return {
        "id": user_id,
        "email": email,
        "name": "Admin",
        "company_id": company_id,
        "role": role,
        "permissions": get_preset_permissions(role),
        "is_active": True,
    }


@pytest.fixture
def api_client():
    """
    In-process API client, optionally with the current user overridden.
    Usage: async with api_client(user) as c: ...
    Startup hooks (indexes, scheduler) do not run.
    """
    from routes.auth import get_current_user
    from server import app

    def build(user: dict = None) -> httpx.AsyncClient:
        app.dependency_overrides.clear()
        if user is not None:
            app.dependency_overrides[get_current_user] = lambda: dict(user)
        return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")

    yield build
    app.dependency_overrides.clear()
