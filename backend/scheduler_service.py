"""
Scheduled jobs for OmniFlow CRM
- Email automations: enrolment + processing every AUTOMATION_INTERVAL_MINUTES
- Campaign jobs: queued bulk sends every CAMPAIGN_INTERVAL_MINUTES
- Monthly AI credit reset (1st of the month, 00:05 UTC)
"""

import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from config import AUTOMATION_INTERVAL_MINUTES, CAMPAIGN_INTERVAL_MINUTES

logger = logging.getLogger("scheduler")


class TaskScheduler:
    """Scheduled task manager"""

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone="UTC")

    def start(self):
        """Register every job and start the scheduler"""
        self.scheduler.add_job(
            self.run_email_automations,
            IntervalTrigger(minutes=AUTOMATION_INTERVAL_MINUTES),
            id="email_automations",
            name="Email automations",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.add_job(
            self.run_campaign_jobs,
            IntervalTrigger(minutes=CAMPAIGN_INTERVAL_MINUTES),
            id="campaign_jobs",
            name="Campaign jobs",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self.scheduler.add_job(
            self.reset_monthly_ai_credits,
            CronTrigger(day=1, hour=0, minute=5),
            id="monthly_ai_credit_reset",
            name="Monthly AI credit reset",
            replace_existing=True,
        )

        self.scheduler.start()
        logger.info(f"Scheduler started (automations every {AUTOMATION_INTERVAL_MINUTES} min)")

    def stop(self):
        """Stop the scheduler"""
        if self.scheduler.running:
            self.scheduler.shutdown()
            logger.info("Scheduler stopped")

    # ==================== JOBS ====================

    async def run_email_automations(self):
        """Enroll contacts and process due automation states for every company"""
        from email_service import email_service
        from services.automation_runner import run_all_automations

        try:
            result = await run_all_automations()
            if result["total_errors"]:
                email_service.send_automation_run_summary(result)
            return result
        except Exception as e:
            logger.error(f"Email automation job failed: {str(e)}")
            email_service.send_critical_alert(
                "AUTOMATION_FAILURE",
                "Scheduled email automation run failed",
                {"error": str(e)[:300]}
            )

    async def run_campaign_jobs(self):
        """Work off pending campaign jobs and requeue stuck ones"""
        from email_service import email_service
        from services.campaigns import run_pending_campaign_jobs

        try:
            return await run_pending_campaign_jobs()
        except Exception as e:
            logger.error(f"Campaign job run failed: {str(e)}")
            email_service.send_critical_alert(
                "CAMPAIGN_FAILURE",
                "Scheduled campaign job run failed",
                {"error": str(e)[:300]}
            )

    async def reset_monthly_ai_credits(self):
        """Reset monthly AI usage for companies still on the previous month"""
        from services.ai_credits import reset_all_monthly_credits

        try:
            count = await reset_all_monthly_credits()
            logger.info(f"Monthly AI credit reset: {count} companies")
            return count
        except Exception as e:
            logger.error(f"Monthly AI credit reset failed: {str(e)}")


# Global instance
task_scheduler = TaskScheduler()
