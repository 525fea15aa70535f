"""Pick which schedule to replay for each device after a restart."""

import logging
from datetime import datetime, timedelta, tzinfo
from typing import List, Optional, Tuple

from .schedule_types import Capability, Device, Schedule, TimeSource


logger = logging.getLogger(__name__)

DEFAULT_LOOKBACK_DAYS = 7


class RecoveryPlanner:
    """
    Finds, per device, the schedule that most recently should have fired.

    The replay only happens when that schedule has restore enabled; a more
    recent schedule with restore disabled is not skipped in favour of an
    older one.
    """

    def __init__(self, timezone: tzinfo, lookback_days: int = DEFAULT_LOOKBACK_DAYS):
        self.timezone = timezone
        self.lookback = timedelta(days=lookback_days)

    def last_firing(self, schedule: Schedule, now: datetime) -> Optional[datetime]:
        """
        Most recent time ``schedule`` should have fired before ``now``.

        A variable that encodes a date contributes only its exact instant,
        compared to ``now`` as a full timestamp rather than by date alone, so
        an occurrence earlier today counts and one later today does not. It
        must also fall on one of the schedule's days, since the trigger only
        fires on those.

        Args:
            schedule: Schedule with derived fields from the latest refresh
            now: Current time (timezone-aware)

        Returns:
            Firing time inside the lookback window, or None
        """
        window_start = now - self.lookback
        effective = schedule.effective

        # A dated variable only ever fires on its own date
        if (
            effective is not None
            and effective.source == TimeSource.VARIABLE
            and effective.specific_date is not None
        ):
            instant = effective.instant
            if not window_start <= instant < now:
                return None
            if not schedule.days.includes(instant.astimezone(self.timezone).date()):
                return None
            return instant

        if schedule.cron is None:
            return None
        return schedule.cron.last_occurrence_between(window_start, now, self.timezone)

    def plan_device(self, device: Device, now: datetime) -> Optional[Schedule]:
        """
        Schedule to replay for one device, or None.

        Ties between schedules with the same last firing go to the one
        listed first.
        """
        if device.capability == Capability.BUTTON:
            logger.debug(f"Not restoring button device '{device.name}'")
            return None

        winner: Optional[Schedule] = None
        winner_time: Optional[datetime] = None
        for schedule in device.schedules.values():
            if schedule.pause:
                continue
            fired = self.last_firing(schedule, now)
            if fired is None:
                continue
            if winner_time is None or fired > winner_time:
                winner, winner_time = schedule, fired

        if winner is None:
            logger.info(f"Nothing to restore for '{device.name}'")
            return None

        if not winner.restore:
            logger.info(
                f"Most recent schedule {winner.id} for '{device.name}' "
                f"({winner_time:%Y-%m-%d %H:%M}) has restore disabled; not restoring"
            )
            return None

        logger.info(f"Restoring '{device.name}' from schedule {winner.id} ({winner_time:%Y-%m-%d %H:%M})")
        return winner

    def plan_restore(self, devices: List[Device], now: datetime) -> List[Tuple[Device, Schedule]]:
        """
        Devices and the schedule each should be restored from.

        A failure while planning one device is logged and the rest are still
        planned.
        """
        plan = []
        for device in devices:
            try:
                schedule = self.plan_device(device, now)
            except Exception as e:
                logger.error(f"Failed to plan restore for '{device.name}': {e}", exc_info=True)
                continue
            if schedule is not None:
                plan.append((device, schedule))
        return plan
