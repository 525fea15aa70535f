"""Choose between a schedule's primary and secondary time."""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from .schedule_types import EARLIER_LATER_OPTIONS, TimeSpec
from .time_resolver import ResolvedTime, TimeResolver


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Selection:
    """Outcome of a dual-time selection."""
    effective: TimeSpec
    is_secondary: bool
    resolved: Optional[ResolvedTime]


class DualTimeSelector:
    """
    Pick the earlier or later of two time specs for a day.

    Nothing is cached: every call resolves both specs again.
    """

    def __init__(self, resolver: TimeResolver):
        self.resolver = resolver

    def select(
        self,
        primary: TimeSpec,
        secondary: Optional[TimeSpec],
        policy: str,
        today: date
    ) -> Selection:
        """
        Select the effective time spec.

        Args:
            primary: Primary time spec
            secondary: Secondary time spec, or None if there is none
            policy: '-' (primary only), 'earlier' or 'later'
            today: Day to resolve on

        Returns:
            Selection; ``resolved`` is None when neither side resolves.
            Equal times keep the primary.
        """
        if policy not in EARLIER_LATER_OPTIONS:
            raise ValueError(f"Invalid earlier/later policy '{policy}'")

        primary_time = self.resolver.resolve(primary, today)
        if policy == '-' or secondary is None:
            return Selection(effective=primary, is_secondary=False, resolved=primary_time)

        secondary_time = self.resolver.resolve(secondary, today)

        if secondary_time is None:
            return Selection(effective=primary, is_secondary=False, resolved=primary_time)
        if primary_time is None:
            logger.info("Primary time unresolved, using secondary time")
            return Selection(effective=secondary, is_secondary=True, resolved=secondary_time)

        if policy == 'earlier':
            use_secondary = secondary_time.instant < primary_time.instant
        else:
            use_secondary = secondary_time.instant > primary_time.instant

        if use_secondary:
            logger.debug(
                f"Secondary time {secondary_time.instant.strftime('%H:%M')} is {policy} than "
                f"primary {primary_time.instant.strftime('%H:%M')}"
            )
            return Selection(effective=secondary, is_secondary=True, resolved=secondary_time)
        return Selection(effective=primary, is_secondary=False, resolved=primary_time)
