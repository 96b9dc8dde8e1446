"""
OmniFlow CRM - API Backend

Start with:
    uvicorn server:app --host 0.0.0.0 --port 8001 --reload
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("omniflow")

app = FastAPI(
    title="OmniFlow CRM",
    description="Multi-tenant CRM with email automations and AI content",
    version="1.0.0"
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== ROUTES ====================

from routes import (  # noqa: E402
    auth,
    companies,
    leads,
    deals,
    activities,
    automations,
    cron,
    ai,
    messaging,
    campaigns,
    templates,
    digital_cards,
    dashboard,
    event_log,
)

# All routes under /api
app.include_router(auth.router, prefix="/api")
app.include_router(companies.router, prefix="/api")
app.include_router(leads.router, prefix="/api")
app.include_router(deals.router, prefix="/api")
app.include_router(activities.router, prefix="/api")
app.include_router(automations.router, prefix="/api")
app.include_router(cron.router, prefix="/api")
app.include_router(ai.router, prefix="/api")
app.include_router(messaging.router, prefix="/api")
app.include_router(campaigns.router, prefix="/api")
app.include_router(templates.router, prefix="/api")
app.include_router(digital_cards.router, prefix="/api")
app.include_router(dashboard.router, prefix="/api")
app.include_router(event_log.router, prefix="/api")


@app.get("/")
async def root():
    return {
        "name": "OmniFlow CRM API",
        "version": "1.0.0",
        "status": "running",
        "docs": "/docs"
    }


# ==================== STARTUP / SHUTDOWN ====================

@app.on_event("startup")
async def startup():
    from config import db, SCHEDULER_ENABLED
    from services.plans import seed_default_plans

    await db.users.create_index("email", unique=True)
    await db.users.create_index("company_id")
    await db.sessions.create_index("token")
    await db.sessions.create_index("expires_at")
    await db.companies.create_index("id", unique=True)
    await db.plans.create_index("id", unique=True)
    await db.leads.create_index([("company_id", 1), ("email", 1)])
    await db.leads.create_index([("company_id", 1), ("created_at", -1)])
    await db.deals.create_index([("company_id", 1), ("contact_id", 1)])
    await db.activities.create_index([("company_id", 1), ("contact_id", 1), ("occurred_at", -1)])
    await db.email_automations.create_index([("company_id", 1), ("status", 1)])
    await db.email_lists.create_index([("company_id", 1), ("automation_id", 1)])
    await db.email_contacts.create_index([("company_id", 1), ("list_id", 1), ("email", 1)])
    await db.automation_states.create_index([("company_id", 1), ("status", 1), ("next_step_time", 1)])
    await db.automation_states.create_index([("automation_id", 1), ("contact_id", 1)], unique=True)
    await db.digital_cards.create_index("username", unique=True)
    await db.template_ratings.create_index([("template_id", 1), ("user_id", 1)])
    await db.event_log.create_index([("company_id", 1), ("created_at", -1)])
    await db.ai_usage.create_index([("company_id", 1), ("month", 1)])
    await db.campaign_jobs.create_index("id", unique=True)
    await db.campaign_jobs.create_index([("company_id", 1), ("created_at", -1)])
    await db.campaign_jobs.create_index([("status", 1)])
    logger.info("MongoDB indexes ready")

    await seed_default_plans()

    if SCHEDULER_ENABLED:
        from scheduler_service import task_scheduler
        task_scheduler.start()


@app.on_event("shutdown")
async def shutdown():
    from config import client
    from scheduler_service import task_scheduler

    task_scheduler.stop()
    client.close()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8001)
