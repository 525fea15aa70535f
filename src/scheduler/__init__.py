"""Scheduler package."""

from .schedule_types import (
    Capability,
    DaySet,
    Device,
    FixedTime,
    Schedule,
    ScheduleValidationError,
    SolarTime,
    TimeSource,
    VariableTime,
)
from .variable_time import VariableTimestamp, parse_variable_timestamp
from .trigger_compiler import RecurringTrigger, compile_trigger
from .time_resolver import ResolvedTime, TimeResolver
from .dual_time import DualTimeSelector
from .gate_evaluator import GateContext, GateEvaluator, GateResult, SkipReason
from .schedule_store import ScheduleStore, ScheduleStoreError
from .state_manager import ScheduleStateFile
from .solar_calculator import SolarCalculator
from .trigger_registry import TriggerRegistry

__all__ = [
    'Capability',
    'DaySet',
    'Device',
    'FixedTime',
    'Schedule',
    'ScheduleValidationError',
    'SolarTime',
    'TimeSource',
    'VariableTime',
    'VariableTimestamp',
    'parse_variable_timestamp',
    'RecurringTrigger',
    'compile_trigger',
    'ResolvedTime',
    'TimeResolver',
    'DualTimeSelector',
    'GateContext',
    'GateEvaluator',
    'GateResult',
    'SkipReason',
    'ScheduleStore',
    'ScheduleStoreError',
    'ScheduleStateFile',
    'SolarCalculator',
    'TriggerRegistry',
]
