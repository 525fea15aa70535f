"""Registration of recurring and one-shot jobs with APScheduler."""

import logging
from datetime import datetime, timedelta, tzinfo
from typing import Any, Callable, List, Optional, Sequence, Set

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from .trigger_compiler import RecurringTrigger


logger = logging.getLogger(__name__)


class TriggerRegistry:
    """
    Thin wrapper over an AsyncIOScheduler keyed by dedupe keys.

    Recurring registrations are tracked so ``cancel_all`` can remove exactly
    those; one-shot delays from ``after`` are left alone.
    """

    # Seconds a firing may be late (e.g. after the event loop was busy) and still run
    MISFIRE_GRACE_TIME = 300

    def __init__(self, timezone: tzinfo, scheduler: Optional[AsyncIOScheduler] = None):
        self.timezone = timezone
        self.scheduler = scheduler or AsyncIOScheduler(timezone=timezone)
        self._keys: Set[str] = set()

    def register(
        self,
        trigger: RecurringTrigger,
        callback: Callable,
        dedupe_key: str,
        overwrite: bool = True,
        args: Sequence[Any] = ()
    ):
        """
        Register ``callback`` to run at every occurrence of ``trigger``.

        Args:
            trigger: Recurrence to fire on
            callback: Function or coroutine function to run
            dedupe_key: Job id; registering the same key again replaces the job
            overwrite: When False, keep an existing job with the same key
            args: Positional arguments passed to ``callback``

        Returns:
            The APScheduler job
        """
        existing = self.scheduler.get_job(dedupe_key)
        if existing is not None and not overwrite:
            logger.debug(f"Job '{dedupe_key}' already registered, keeping it")
            return existing

        job = self.scheduler.add_job(
            callback,
            trigger=trigger.to_cron_trigger(self.timezone),
            args=list(args),
            id=dedupe_key,
            replace_existing=True,
            misfire_grace_time=self.MISFIRE_GRACE_TIME,
            coalesce=True,
        )
        self._keys.add(dedupe_key)
        logger.debug(f"Registered job '{dedupe_key}': {trigger.to_cron()}")
        return job

    def cancel(self, dedupe_key: str):
        try:
            self.scheduler.remove_job(dedupe_key)
        except JobLookupError:
            logger.debug(f"Job '{dedupe_key}' was not registered")
        self._keys.discard(dedupe_key)

    def cancel_all(self):
        """Remove every recurring job registered through this registry."""
        count = len(self._keys)
        for key in list(self._keys):
            self.cancel(key)
        logger.debug(f"Cancelled {count} recurring job(s)")

    def after(self, seconds: float, callback: Callable, args: Sequence[Any] = ()):
        """Run ``callback`` once, ``seconds`` from now."""
        run_date = datetime.now(self.timezone) + timedelta(seconds=seconds)
        return self.scheduler.add_job(
            callback,
            trigger=DateTrigger(run_date=run_date, timezone=self.timezone),
            args=list(args),
            misfire_grace_time=self.MISFIRE_GRACE_TIME,
        )

    def registered_keys(self) -> List[str]:
        return sorted(self._keys)

    def start(self):
        """Start firing jobs; must be called with the event loop running."""
        self.scheduler.start()
        logger.info(f"Trigger registry started with {len(self._keys)} recurring job(s)")

    def shutdown(self):
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info("Trigger registry stopped")
