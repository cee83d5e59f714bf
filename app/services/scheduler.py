"""
APScheduler Configuration

Manages scheduled jobs for periodic integrity checks.
"""
import logging
import os
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.services.integrity_auditor import get_integrity_auditor

logger = logging.getLogger(__name__)

INTEGRITY_AUDIT_INTERVAL_MINUTES = int(os.getenv("INTEGRITY_AUDIT_INTERVAL_MINUTES", "60"))

# Global scheduler instance
scheduler = AsyncIOScheduler()


async def audit_redemption_integrity():
    """
    Periodic job to verify every used access code has its enrollment.

    Violations are logged at CRITICAL by the auditor itself; this job only
    reports the summary.
    """
    logger.info("Starting redemption integrity audit")

    try:
        auditor = get_integrity_auditor()
        summary = await auditor.audit()

        if summary["violations"] > 0:
            logger.critical(
                f"Integrity ALERT: {summary['violations']} used access codes without enrollment"
            )

    except Exception as e:
        logger.error(f"Failed to audit redemption integrity: {e}", exc_info=True)


def configure_scheduler():
    """
    Configure APScheduler with all scheduled jobs.

    Jobs:
        - Redemption integrity audit: every INTEGRITY_AUDIT_INTERVAL_MINUTES
    """
    scheduler.add_job(
        audit_redemption_integrity,
        trigger=IntervalTrigger(minutes=INTEGRITY_AUDIT_INTERVAL_MINUTES),
        id='redemption_integrity_audit',
        name='Audit Redemption Integrity',
        replace_existing=True,
        coalesce=True,  # Combine missed runs into single execution
        max_instances=1  # Only one instance at a time
    )

    logger.info(
        f"Scheduler configured with integrity audit every {INTEGRITY_AUDIT_INTERVAL_MINUTES} minutes"
    )


def start_scheduler():
    """Start the APScheduler"""
    configure_scheduler()
    scheduler.start()
    logger.info("Scheduler started")


def stop_scheduler():
    """Stop the APScheduler"""
    if scheduler.running:
        scheduler.shutdown()
    logger.info("Scheduler stopped")
