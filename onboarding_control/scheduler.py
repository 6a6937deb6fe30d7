"""APScheduler — advances due sequence runs on an interval."""

import logging
from datetime import datetime, timezone

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from onboarding_control.config import SCHEDULER_INTERVAL_MINUTES
from onboarding_control.services.sequence_runner import SequenceRunner, process_due_runs

logger = logging.getLogger(__name__)


def build_scheduler(runner: SequenceRunner,
                    minutes: int = SCHEDULER_INTERVAL_MINUTES) -> AsyncIOScheduler:
    """Scheduler with one interval job; the first tick fires at startup to catch up."""
    scheduler = AsyncIOScheduler()

    async def process_sequences():
        """Advance due sequence runs."""
        try:
            result = await process_due_runs(runner)
            if result["processed"] > 0:
                logger.info(
                    "Sequence processing: %d runs, %d steps, %d completed, %d errors",
                    result["processed"],
                    result["steps"],
                    result["completed"],
                    result["errors"],
                )
        except Exception as e:
            logger.error("Sequence processing failed: %s", e)

    scheduler.add_job(
        process_sequences,
        "interval",
        minutes=minutes,
        id="process_sequences",
        next_run_time=datetime.now(timezone.utc),
        replace_existing=True,
    )
    return scheduler
