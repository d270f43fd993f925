import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from lending.core.config import settings
from lending.core.database import AsyncSessionLocal
from lending.services.reconciliation_service import run_reconciliation


logger = logging.getLogger(__name__)

RECONCILIATION_JOB_ID = "daily-reconciliation"


async def reconciliation_job() -> None:
    async with AsyncSessionLocal() as session:
        report = await run_reconciliation(session)
    if report.failed or report.promotion_error:
        logger.warning(
            "Scheduled reconciliation had failures",
            extra={"failed": report.failed, "promotion_error": report.promotion_error},
        )


def build_scheduler() -> AsyncIOScheduler:
    """A scheduler with the single daily reconciliation job; not started."""
    options = {"timezone": settings.RECONCILIATION_TIMEZONE} if settings.RECONCILIATION_TIMEZONE else {}
    scheduler = AsyncIOScheduler(**options)
    scheduler.add_job(
        reconciliation_job,
        CronTrigger(hour=settings.RECONCILIATION_HOUR, minute=settings.RECONCILIATION_MINUTE, **options),
        id=RECONCILIATION_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    return scheduler
