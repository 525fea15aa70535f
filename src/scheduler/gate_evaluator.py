"""Go/no-go gates checked every time a schedule trigger fires."""

import logging
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import FrozenSet, Optional

from .schedule_types import Schedule, TimeSource


logger = logging.getLogger(__name__)


class SkipReason(Enum):
    """Why a fired trigger was not acted on."""
    GLOBAL_PAUSE = "global_pause"
    MODE = "mode"
    ACTIVATION_SWITCH = "activation_switch"
    SCHEDULE_PAUSE = "schedule_pause"
    VARIABLE_DATE = "variable_date"


@dataclass(frozen=True)
class GateContext:
    """
    Settings and hub state captured once per evaluation.

    ``activation_switch_state`` is None when the switch could not be read.
    """
    today: date
    pause_all: bool = False
    mode_restriction_enabled: bool = False
    allowed_modes: FrozenSet[str] = field(default_factory=frozenset)
    current_mode: Optional[str] = None
    activation_switch_enabled: bool = False
    activation_switch_expected: str = 'on'
    activation_switch_state: Optional[str] = None
    activate_on_before_level: bool = False


@dataclass(frozen=True)
class GateResult:
    passed: bool
    reason: Optional[SkipReason] = None
    message: str = ''

    @classmethod
    def go(cls) -> 'GateResult':
        return cls(passed=True)

    @classmethod
    def skip(cls, reason: SkipReason, message: str) -> 'GateResult':
        return cls(passed=False, reason=reason, message=message)


class GateEvaluator:
    """
    Checks, in order and stopping at the first failure:

    1. Global pause
    2. Mode restriction
    3. Activation switch
    4. Schedule pause
    5. Variable date validity
    """

    def evaluate(self, schedule: Schedule, ctx: GateContext, label: str = '') -> GateResult:
        """
        Run all gates for a fired schedule.

        Args:
            schedule: Schedule whose trigger fired
            ctx: Gate context captured for this firing
            label: Device/schedule description used in log messages

        Returns:
            GateResult; skips are logged with their reason
        """
        result = self.evaluate_global(ctx, label)
        if not result.passed:
            return result

        for check in (self._check_schedule_pause, self._check_variable_date):
            result = check(schedule, ctx)
            if not result.passed:
                self._log_skip(result, label)
                return result

        return GateResult.go()

    def evaluate_global(self, ctx: GateContext, label: str = '') -> GateResult:
        """Run only the gates that do not depend on a schedule (1-3)."""
        result = self.evaluate_hub(ctx, label)
        if not result.passed:
            return result
        return self._run((self._check_activation_switch,), ctx, label)

    def evaluate_hub(self, ctx: GateContext, label: str = '') -> GateResult:
        """
        Run the gates that need no device read (1-2).

        Callers check these before reading the activation switch, so a paused
        hub or a disallowed mode never touches the network.
        """
        return self._run((self._check_global_pause, self._check_mode), ctx, label)

    def _run(self, checks, ctx: GateContext, label: str) -> GateResult:
        for check in checks:
            result = check(ctx)
            if not result.passed:
                self._log_skip(result, label)
                return result
        return GateResult.go()

    def _check_global_pause(self, ctx: GateContext) -> GateResult:
        if ctx.pause_all:
            return GateResult.skip(SkipReason.GLOBAL_PAUSE, "All schedules paused")
        return GateResult.go()

    def _check_mode(self, ctx: GateContext) -> GateResult:
        if ctx.mode_restriction_enabled and ctx.current_mode not in ctx.allowed_modes:
            return GateResult.skip(
                SkipReason.MODE,
                f"Mode '{ctx.current_mode}' is not one of the allowed modes "
                f"{sorted(ctx.allowed_modes)}"
            )
        return GateResult.go()

    def _check_activation_switch(self, ctx: GateContext) -> GateResult:
        if ctx.activation_switch_enabled and ctx.activation_switch_state != ctx.activation_switch_expected:
            return GateResult.skip(
                SkipReason.ACTIVATION_SWITCH,
                f"Activation switch is {ctx.activation_switch_state}, "
                f"needs to be {ctx.activation_switch_expected}"
            )
        return GateResult.go()

    def _check_schedule_pause(self, schedule: Schedule, ctx: GateContext) -> GateResult:
        if schedule.pause:
            return GateResult.skip(SkipReason.SCHEDULE_PAUSE, f"Schedule {schedule.id} is paused")
        return GateResult.go()

    def _check_variable_date(self, schedule: Schedule, ctx: GateContext) -> GateResult:
        effective = schedule.effective
        if effective is None or effective.source != TimeSource.VARIABLE:
            return GateResult.go()
        if effective.specific_date is not None and effective.specific_date != ctx.today:
            return GateResult.skip(
                SkipReason.VARIABLE_DATE,
                f"Variable date {effective.specific_date} is not today ({ctx.today})"
            )
        return GateResult.go()

    def _log_skip(self, result: GateResult, label: str):
        if label:
            logger.info(f"{label}: skipped, {result.message}")
        else:
            logger.info(f"Skipped: {result.message}")
