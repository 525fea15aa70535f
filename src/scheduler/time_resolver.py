"""Resolve time specifications to concrete times for a given day."""

import logging
from dataclasses import dataclass
from datetime import date, datetime, tzinfo
from typing import Optional

from .schedule_types import FixedTime, SolarTime, TimeSource, TimeSpec, VariableTime
from .variable_time import VariableTimestamp, parse_variable_timestamp


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResolvedTime:
    """
    A time specification resolved for one day.

    For variable times ``timestamp`` holds the offset-adjusted value and
    ``raw`` its wire form; both are None for fixed and solar times.
    """
    instant: datetime
    source: TimeSource
    specific_date: Optional[date] = None
    raw: Optional[str] = None
    timestamp: Optional[VariableTimestamp] = None


class TimeResolver:
    """
    Turn FixedTime, SolarTime and VariableTime specs into concrete times.

    Resolution only reads from the providers; an unresolvable spec yields
    None and is logged, it never raises.
    """

    def __init__(self, solar_provider, variable_provider, timezone: tzinfo):
        """
        Initialize resolver.

        Args:
            solar_provider: Object with ``sunrise_sunset(target_date, offset_minutes)``
            variable_provider: Object with ``get(name) -> Optional[str]``
            timezone: Timezone resolved times are expressed in
        """
        self.solar_provider = solar_provider
        self.variable_provider = variable_provider
        self.timezone = timezone

    def resolve(self, spec: TimeSpec, today: date) -> Optional[ResolvedTime]:
        """
        Resolve a time specification for ``today``.

        Args:
            spec: Time specification to resolve
            today: Day to resolve fixed and solar times on

        Returns:
            ResolvedTime, or None if the spec cannot be resolved right now
        """
        if isinstance(spec, FixedTime):
            return self._resolve_fixed(spec, today)
        if isinstance(spec, SolarTime):
            return self._resolve_solar(spec, today)
        if isinstance(spec, VariableTime):
            return self._resolve_variable(spec, today)
        raise TypeError(f"Unknown time specification: {spec!r}")

    def _resolve_fixed(self, spec: FixedTime, today: date) -> Optional[ResolvedTime]:
        if spec.start_time is None:
            logger.warning("Fixed time has no start time selected")
            return None

        start = spec.start_time.replace(second=0, microsecond=0)
        return ResolvedTime(
            instant=datetime.combine(today, start, tzinfo=self.timezone),
            source=TimeSource.FIXED,
        )

    def _resolve_solar(self, spec: SolarTime, today: date) -> Optional[ResolvedTime]:
        times = self.solar_provider.sunrise_sunset(today, spec.offset_minutes)
        if times is None:
            logger.error(f"No solar data for {today}; {spec.describe()} unresolved")
            return None

        event = times.sunset if spec.use_sunset else times.sunrise
        return ResolvedTime(
            instant=event.astimezone(self.timezone),
            source=TimeSource.SOLAR,
        )

    def _resolve_variable(self, spec: VariableTime, today: date) -> Optional[ResolvedTime]:
        if not spec.variable_name:
            logger.warning("Variable time has no variable selected")
            return None

        raw = self.variable_provider.get(spec.variable_name)
        if raw is None:
            logger.warning(f"Variable '{spec.variable_name}' not found")
            return None

        timestamp = parse_variable_timestamp(raw)
        if timestamp is None:
            logger.error(f"Variable '{spec.variable_name}' has unparsable value '{raw}'")
            return None

        shifted = timestamp.add_minutes(spec.offset_minutes)
        return ResolvedTime(
            instant=shifted.to_datetime(today, self.timezone),
            source=TimeSource.VARIABLE,
            specific_date=shifted.specific_date,
            raw=raw if spec.offset_minutes == 0 else shifted.format(),
            timestamp=shifted,
        )
