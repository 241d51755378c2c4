"""One-shot, cancellable timers for defence calls, backed by APScheduler.

Every timer is a ``DateTrigger`` job on the app's ``AsyncIOScheduler`` with
id ``"<channel_id>:<name>"``. The job id is the cancellation token: the call
manager cancels a channel's outstanding jobs before each state transition so a
stale expiry can never fire against a completed or deleted channel.

Callbacks are wrapped: an exception is logged and swallowed so one channel's
failure never reaches the scheduler or another channel. Timers are not
persisted; a restart rebuilds them from the call registry.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

logger = logging.getLogger(__name__)

TimerCallback = Callable[..., Awaitable[Any]]

# A timer that fires late (event loop busy, laptop asleep) still runs if it is
# within this many seconds of its due time.
MISFIRE_GRACE_SECONDS = 300


def timer_id(channel_id: str, name: str) -> str:
    return f"{channel_id}:{name}"


class CallTimers:
    """Schedules and cancels per-channel one-shot jobs."""

    def __init__(self, scheduler: AsyncIOScheduler) -> None:
        self.scheduler = scheduler

    def schedule(
        self,
        channel_id: str,
        name: str,
        run_at: datetime,
        callback: TimerCallback,
        *args: Any,
    ) -> str:
        """Run ``callback(*args)`` at *run_at*, replacing any timer of the same name.

        Returns the job id, which is the cancellation token.
        """
        job_id = timer_id(channel_id, name)
        self.cancel(job_id)
        self.scheduler.add_job(
            self._run,
            trigger=DateTrigger(run_date=run_at),
            id=job_id,
            name=f"Defence timer {name}",
            kwargs={"job_id": job_id, "callback": callback, "args": args},
            misfire_grace_time=MISFIRE_GRACE_SECONDS,
        )
        logger.debug("timer_scheduled id=%s run_at=%s", job_id, run_at.isoformat())
        return job_id

    def cancel(self, job_id: str) -> bool:
        """Cancel one timer. Unknown or already-fired ids are a no-op."""
        try:
            self.scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.debug("timer_cancelled id=%s", job_id)
        return True

    def cancel_channel(self, channel_id: str) -> list[str]:
        """Cancel every outstanding timer for *channel_id*."""
        cancelled = [job_id for job_id in self.pending(channel_id) if self.cancel(job_id)]
        if cancelled:
            logger.info("timers_cancelled channel=%s ids=%s", channel_id, cancelled)
        return cancelled

    def pending(self, channel_id: str) -> list[str]:
        """Ids of the timers still waiting to fire for *channel_id*."""
        prefix = f"{channel_id}:"
        return [job.id for job in self.scheduler.get_jobs() if job.id.startswith(prefix)]

    async def _run(
        self,
        job_id: str,
        callback: TimerCallback,
        args: tuple[Any, ...],
    ) -> None:
        # One-shot: make sure the token is gone before the callback reschedules.
        with contextlib.suppress(JobLookupError):
            self.scheduler.remove_job(job_id)
        try:
            await callback(*args)
        except Exception:  # Last-resort handler: a timer must never take down the scheduler
            logger.exception("timer_callback_failed id=%s", job_id)
