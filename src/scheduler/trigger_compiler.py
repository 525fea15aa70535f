"""Compile effective times into recurring day-of-week triggers."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, tzinfo
from typing import TYPE_CHECKING, Any, Dict, List, Optional, Tuple

from apscheduler.triggers.cron import CronTrigger

if TYPE_CHECKING:
    from .schedule_types import DaySet


logger = logging.getLogger(__name__)

# Sunday-first, matching the order days are listed in cron strings
CRON_DAY_ORDER = ('sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat')


@dataclass(frozen=True)
class RecurringTrigger:
    """
    Minute-granularity trigger repeating on a set of weekdays.

    Equal (minute, hour, days) produce equal triggers, so the same trigger
    can be registered again under the same key without creating a duplicate.
    """
    minute: int
    hour: int
    days_of_week: Tuple[str, ...]

    def to_cron(self) -> str:
        """Quartz-style cron string, e.g. '0 0 18 ? * MON,WED,FRI *'."""
        days = ','.join(day.upper() for day in self.days_of_week)
        return f"0 {self.minute} {self.hour} ? * {days} *"

    def to_cron_trigger(self, tz: tzinfo) -> CronTrigger:
        """Build the APScheduler trigger that fires at this recurrence in ``tz``."""
        return CronTrigger(
            day_of_week=','.join(self.days_of_week),
            hour=self.hour,
            minute=self.minute,
            second=0,
            timezone=tz,
        )

    def occurrences_between(self, start: datetime, end: datetime, tz: tzinfo) -> List[datetime]:
        """
        All firings at or after ``start`` and strictly before ``end``.

        Args:
            start: Window start (timezone-aware)
            end: Window end (timezone-aware, exclusive)
            tz: Timezone the trigger's wall-clock fields are read in

        Returns:
            Firing times in chronological order
        """
        trigger = self.to_cron_trigger(tz)
        occurrences = []
        fire_time = trigger.get_next_fire_time(None, start)
        while fire_time is not None and fire_time < end:
            occurrences.append(fire_time)
            fire_time = trigger.get_next_fire_time(fire_time, fire_time + timedelta(seconds=1))
        return occurrences

    def last_occurrence_between(
        self,
        start: datetime,
        end: datetime,
        tz: tzinfo
    ) -> Optional[datetime]:
        """Latest firing in ``[start, end)``, or None when the window holds none."""
        occurrences = self.occurrences_between(start, end, tz)
        return occurrences[-1] if occurrences else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'minute': self.minute,
            'hour': self.hour,
            'days_of_week': list(self.days_of_week),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'RecurringTrigger':
        return cls(
            minute=int(data['minute']),
            hour=int(data['hour']),
            days_of_week=tuple(data['days_of_week']),
        )

    def __str__(self) -> str:
        return self.to_cron()


def compile_trigger(effective_time: datetime, days: 'DaySet') -> Optional[RecurringTrigger]:
    """
    Turn an effective time and a day set into a recurring trigger.

    Seconds and sub-seconds are dropped; triggers fire on the minute.

    Args:
        effective_time: Resolved effective time
        days: Days of the week the schedule applies to

    Returns:
        RecurringTrigger, or None when the day set is empty
    """
    if days.is_empty():
        logger.warning("No days selected for schedule; no trigger compiled")
        return None

    return RecurringTrigger(
        minute=effective_time.minute,
        hour=effective_time.hour,
        days_of_week=days.cron_days(),
    )
