"""APScheduler setup for the poll loop and periodic housekeeping."""

import datetime
import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.config import Settings
from app.core.poller import MetroPoller

logger = logging.getLogger(__name__)

POLL_JOB_ID = "poll_metro"


def _run_at(delay_ms: float) -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(milliseconds=delay_ms)


async def run_poll_cycle(scheduler: AsyncIOScheduler, poller: MetroPoller, config: Settings) -> None:
    """Run one tick and re-arm the one-shot poll job with the delay it asked for."""
    delay_ms: float = config.poll_interval_ms
    try:
        delay_ms = await poller.tick()
    except Exception:
        logger.exception("Error in metro poll cycle")
    finally:
        schedule_poll(scheduler, poller, config, delay_ms)


def schedule_poll(
    scheduler: AsyncIOScheduler,
    poller: MetroPoller,
    config: Settings,
    delay_ms: float = 0,
) -> None:
    scheduler.add_job(
        run_poll_cycle,
        "date",
        run_date=_run_at(delay_ms),
        args=(scheduler, poller, config),
        id=POLL_JOB_ID,
        name="Poll metro arrival feed",
        replace_existing=True,
        max_instances=1,
        misfire_grace_time=None,
    )


def create_scheduler(poller: MetroPoller, config: Settings) -> AsyncIOScheduler:
    """Create and configure the scheduler with all jobs."""
    scheduler = AsyncIOScheduler()

    # One-shot job, re-armed after every tick so the next delay can vary
    schedule_poll(scheduler, poller, config)

    # Forget trains that vanished from the feed
    scheduler.add_job(
        poller.sweep,
        "interval",
        seconds=config.state_sweep_interval_seconds,
        id="sweep_segments",
        name="Sweep stale train segment state",
        max_instances=1,
    )

    return scheduler
