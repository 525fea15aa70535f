"""Device and schedule data structures, validation and migration."""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import date, datetime, time
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Tuple, Union

from .trigger_compiler import CRON_DAY_ORDER, RecurringTrigger


logger = logging.getLogger(__name__)

DAY_NAMES = CRON_DAY_ORDER

# date.isoweekday(): 1=Monday, 7=Sunday
ISO_WEEKDAY_NAMES = {
    1: 'mon', 2: 'tue', 3: 'wed', 4: 'thu', 5: 'fri', 6: 'sat', 7: 'sun'
}

MIN_OFFSET_MINUTES = -1000
MAX_OFFSET_MINUTES = 1000

EARLIER_LATER_OPTIONS = ('-', 'earlier', 'later')
DESIRED_STATES = ('on', 'off')


class ScheduleValidationError(ValueError):
    """Raised when a schedule definition or edit is invalid."""
    pass


class Capability(Enum):
    """Device capability a schedule acts through."""
    SWITCH = "Switch"
    DIMMER = "Dimmer"
    BUTTON = "Button"


class ButtonAction(Enum):
    """Momentary actions for button devices."""
    PUSH = "push"
    HOLD = "hold"
    DOUBLE_TAP = "doubleTap"
    RELEASE = "release"


class TimeSource(Enum):
    """Kind of time specification an effective time was resolved from."""
    FIXED = "fixed"
    SOLAR = "solar"
    VARIABLE = "variable"


@dataclass(frozen=True)
class DaySet:
    """Days of the week a schedule applies to."""
    sun: bool = True
    mon: bool = True
    tue: bool = True
    wed: bool = True
    thu: bool = True
    fri: bool = True
    sat: bool = True

    ALL: ClassVar['DaySet']
    NONE: ClassVar['DaySet']

    @classmethod
    def from_names(cls, names) -> 'DaySet':
        selected = set(names)
        return cls(**{name: name in selected for name in DAY_NAMES})

    @classmethod
    def from_value(cls, value: Any) -> 'DaySet':
        """
        Build a DaySet from a persisted or configured value.

        Accepts a list of day names ('mon'), a list of ISO weekday numbers
        (1=Monday, 7=Sunday), or a mapping of day name to bool.

        Raises:
            ScheduleValidationError: If the value cannot be interpreted
        """
        if value is None:
            return cls.ALL

        if isinstance(value, dict):
            unknown = set(value) - set(DAY_NAMES)
            if unknown:
                raise ScheduleValidationError(f"Unknown day names: {sorted(unknown)}")
            return cls(**{name: bool(value.get(name, False)) for name in DAY_NAMES})

        if not isinstance(value, (list, tuple)):
            raise ScheduleValidationError(f"Invalid days specification: {value}")

        names = []
        for item in value:
            if isinstance(item, bool):
                raise ScheduleValidationError(f"Invalid day: {item}")
            if isinstance(item, int):
                if item not in ISO_WEEKDAY_NAMES:
                    raise ScheduleValidationError(f"Invalid day number: {item} (must be 1-7)")
                names.append(ISO_WEEKDAY_NAMES[item])
            elif isinstance(item, str) and item.strip().lower()[:3] in DAY_NAMES:
                names.append(item.strip().lower()[:3])
            else:
                raise ScheduleValidationError(f"Invalid day: {item}")
        return cls.from_names(names)

    def is_empty(self) -> bool:
        return not any(getattr(self, name) for name in DAY_NAMES)

    def includes(self, day: date) -> bool:
        """Check whether the weekday of ``day`` is selected."""
        return getattr(self, ISO_WEEKDAY_NAMES[day.isoweekday()])

    def with_day(self, name: str, enabled: bool) -> 'DaySet':
        if name not in DAY_NAMES:
            raise ScheduleValidationError(f"Unknown day name: {name}")
        return replace(self, **{name: enabled})

    def cron_days(self) -> Tuple[str, ...]:
        """Selected day names, Sunday first."""
        return tuple(name for name in DAY_NAMES if getattr(self, name))

    def to_list(self) -> List[str]:
        return list(self.cron_days())


DaySet.ALL = DaySet()
DaySet.NONE = DaySet(**{name: False for name in DAY_NAMES})


def _time_spec_dict(
    sun_time: bool = False,
    sunset: bool = True,
    offset: int = 0,
    start_time: Optional[str] = None,
    use_variable_time: bool = False,
    variable_time: Optional[str] = None
) -> Dict[str, Any]:
    return {
        'sun_time': sun_time,
        'sunset': sunset,
        'offset': offset,
        'start_time': start_time,
        'use_variable_time': use_variable_time,
        'variable_time': variable_time,
    }


@dataclass(frozen=True)
class FixedTime:
    """Wall-clock time of day, applied to the current day."""
    start_time: Optional[time] = None

    source: ClassVar[TimeSource] = TimeSource.FIXED

    def to_dict(self) -> Dict[str, Any]:
        start = self.start_time.strftime('%H:%M') if self.start_time else None
        return _time_spec_dict(start_time=start)

    def describe(self) -> str:
        return self.start_time.strftime('%H:%M') if self.start_time else 'not set'


@dataclass(frozen=True)
class SolarTime:
    """Sunrise or sunset plus an offset in minutes."""
    use_sunset: bool = True
    offset_minutes: int = 0

    source: ClassVar[TimeSource] = TimeSource.SOLAR

    def to_dict(self) -> Dict[str, Any]:
        return _time_spec_dict(sun_time=True, sunset=self.use_sunset, offset=self.offset_minutes)

    def describe(self) -> str:
        event = 'sunset' if self.use_sunset else 'sunrise'
        if self.offset_minutes:
            return f"{event} {self.offset_minutes:+d} min"
        return event


@dataclass(frozen=True)
class VariableTime:
    """Time read from a named hub variable plus an offset in minutes."""
    variable_name: Optional[str] = None
    offset_minutes: int = 0

    source: ClassVar[TimeSource] = TimeSource.VARIABLE

    def to_dict(self) -> Dict[str, Any]:
        return _time_spec_dict(
            offset=self.offset_minutes,
            use_variable_time=True,
            variable_time=self.variable_name,
        )

    def describe(self) -> str:
        name = self.variable_name or 'no variable selected'
        if self.offset_minutes:
            return f"{name} {self.offset_minutes:+d} min"
        return name


TimeSpec = Union[FixedTime, SolarTime, VariableTime]


def parse_clock_time(value: Any, label: str = 'start_time') -> Optional[time]:
    """
    Parse a configured time of day.

    Args:
        value: 'HH:MM', 'HH:MM:SS', a full timestamp string, a time object,
            or an integer number of minutes since midnight
        label: Field name used in error messages

    Returns:
        time, or None when the value is unset

    Raises:
        ScheduleValidationError: If the value is not a valid time of day
    """
    if value is None or value == '':
        return None
    if isinstance(value, time):
        return value.replace(second=0, microsecond=0)
    if isinstance(value, bool):
        raise ScheduleValidationError(f"Invalid {label}: {value}")
    if isinstance(value, int):
        # YAML 1.1 reads unquoted 18:00 as the base-60 integer 1080
        if not 0 <= value < 24 * 60:
            raise ScheduleValidationError(f"Invalid {label}: {value}")
        return time(value // 60, value % 60)
    if not isinstance(value, str):
        raise ScheduleValidationError(f"Invalid {label}: {value}")

    text = value.strip()
    if 'T' in text:
        # Full timestamps keep only their time of day
        text = text.split('T', 1)[1][:5]
    for fmt in ('%H:%M', '%H:%M:%S'):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    raise ScheduleValidationError(f"Invalid {label} '{value}'. Must be HH:MM (24-hour)")


def parse_offset(value: Any, label: str) -> int:
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ScheduleValidationError(f"{label} offset must be a number")
    if not MIN_OFFSET_MINUTES <= value <= MAX_OFFSET_MINUTES:
        raise ScheduleValidationError(
            f"{label} offset must be between {MIN_OFFSET_MINUTES} and "
            f"{MAX_OFFSET_MINUTES} minutes"
        )
    return int(value)


def parse_bool(value: Any, label: str) -> bool:
    if not isinstance(value, bool):
        raise ScheduleValidationError(f"{label} must be true or false")
    return value


def time_spec_from_dict(data: Optional[Dict[str, Any]], label: str = 'time') -> TimeSpec:
    """
    Build a TimeSpec from its persisted flag form.

    Neither flag set means a fixed time. If both ``sun_time`` and
    ``use_variable_time`` are set, the variable time wins.

    Raises:
        ScheduleValidationError: If any field is invalid
    """
    if not data:
        return FixedTime()
    if not isinstance(data, dict):
        raise ScheduleValidationError(f"{label} must be a mapping")

    sun_time = parse_bool(data.get('sun_time', False), f"{label} sun_time")
    use_variable = parse_bool(data.get('use_variable_time', False), f"{label} use_variable_time")
    offset = parse_offset(data.get('offset', 0), label)

    if use_variable:
        if sun_time:
            logger.warning(f"{label}: both sun_time and use_variable_time set, using variable time")
        name = data.get('variable_time') or None
        if name is not None and not isinstance(name, str):
            raise ScheduleValidationError(f"{label} variable_time must be a variable name")
        return VariableTime(variable_name=name, offset_minutes=offset)

    if sun_time:
        return SolarTime(
            use_sunset=parse_bool(data.get('sunset', True), f"{label} sunset"),
            offset_minutes=offset,
        )

    return FixedTime(start_time=parse_clock_time(data.get('start_time'), f"{label} start_time"))


@dataclass(frozen=True)
class EffectiveTime:
    """The concrete time a schedule resolved to on its last refresh."""
    instant: datetime
    source: TimeSource
    specific_date: Optional[date] = None
    is_secondary: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'instant': self.instant.isoformat(),
            'source': self.source.value,
            'specific_date': self.specific_date.isoformat() if self.specific_date else None,
            'is_secondary': self.is_secondary,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'EffectiveTime':
        specific = data.get('specific_date')
        return cls(
            instant=datetime.fromisoformat(data['instant']),
            source=TimeSource(data['source']),
            specific_date=date.fromisoformat(specific) if specific else None,
            is_secondary=bool(data.get('is_secondary', False)),
        )


@dataclass
class Schedule:
    """
    One trigger rule for a device.

    ``cron`` and ``effective`` are derived on refresh and never edited directly.
    """
    id: str
    days: DaySet = field(default_factory=DaySet)
    time_spec: TimeSpec = field(default_factory=FixedTime)
    secondary_time: TimeSpec = field(default_factory=FixedTime)
    earlier_later: str = '-'
    pause: bool = False
    restore: bool = True
    desired_state: str = 'on'
    desired_level: int = 100
    button_number: Optional[int] = None
    button_action: Optional[ButtonAction] = None
    cron: Optional[RecurringTrigger] = None
    effective: Optional[EffectiveTime] = None

    @property
    def has_secondary(self) -> bool:
        return self.earlier_later != '-'

    def time_specs(self) -> List[TimeSpec]:
        """Primary spec, plus the secondary one when dual-time is enabled."""
        if self.has_secondary:
            return [self.time_spec, self.secondary_time]
        return [self.time_spec]

    def clear_derived(self):
        self.cron = None
        self.effective = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert schedule to its persisted dictionary form."""
        return {
            'days': self.days.to_list(),
            'time': self.time_spec.to_dict(),
            'secondary_time': self.secondary_time.to_dict(),
            'earlier_later': self.earlier_later,
            'pause': self.pause,
            'restore': self.restore,
            'desired_state': self.desired_state,
            'desired_level': self.desired_level,
            'button_number': self.button_number,
            'button_action': self.button_action.value if self.button_action else None,
            'cron': self.cron.to_dict() if self.cron else None,
            'effective': self.effective.to_dict() if self.effective else None,
        }

    @classmethod
    def from_dict(cls, schedule_id: str, data: Dict[str, Any]) -> 'Schedule':
        """
        Build a schedule from a persisted or configured dictionary.

        Args:
            schedule_id: Identifier of the schedule within its device
            data: Schedule dictionary (snake_case keys)

        Raises:
            ScheduleValidationError: If the dictionary is invalid
        """
        if not isinstance(data, dict):
            raise ScheduleValidationError("Schedule must be a dictionary")

        earlier_later = data.get('earlier_later', '-')
        if earlier_later not in EARLIER_LATER_OPTIONS:
            raise ScheduleValidationError(
                f"Invalid earlier_later '{earlier_later}'. "
                f"Must be one of: {', '.join(EARLIER_LATER_OPTIONS)}"
            )

        schedule = cls(
            id=schedule_id,
            days=DaySet.from_value(data.get('days')),
            time_spec=time_spec_from_dict(data.get('time'), 'time'),
            secondary_time=time_spec_from_dict(data.get('secondary_time'), 'secondary_time'),
            earlier_later=earlier_later,
            pause=parse_bool(data.get('pause', False), 'pause'),
            restore=parse_bool(data.get('restore', True), 'restore'),
            desired_state=parse_desired_state(data.get('desired_state', 'on')),
            desired_level=parse_desired_level(data.get('desired_level', 100)),
            button_number=parse_button_number(data.get('button_number')),
            button_action=parse_button_action(data.get('button_action')),
        )

        cron = data.get('cron')
        effective = data.get('effective')
        try:
            schedule.cron = RecurringTrigger.from_dict(cron) if cron else None
            schedule.effective = EffectiveTime.from_dict(effective) if effective else None
        except (KeyError, TypeError, ValueError) as e:
            # Derived fields are recomputed on the next refresh anyway
            logger.warning(f"Discarding unreadable derived fields of schedule {schedule_id}: {e}")
            schedule.clear_derived()

        return schedule

    def __repr__(self) -> str:
        return (
            f"Schedule(id='{self.id}', days={self.days.to_list()}, "
            f"time='{self.time_spec.describe()}', pause={self.pause})"
        )


def parse_desired_state(value: Any) -> str:
    if not isinstance(value, str) or value.lower() not in DESIRED_STATES:
        raise ScheduleValidationError(f"desired_state must be 'on' or 'off', got {value!r}")
    return value.lower()


def parse_desired_level(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ScheduleValidationError("desired_level must be a number")
    if not 0 <= value <= 100:
        raise ScheduleValidationError("desired_level must be between 0 and 100")
    return int(value)


def parse_button_number(value: Any) -> Optional[int]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value < 1:
        raise ScheduleValidationError("button_number must be a positive integer")
    return value


def parse_button_action(value: Any) -> Optional[ButtonAction]:
    if value is None or isinstance(value, ButtonAction):
        return value
    try:
        return ButtonAction(value)
    except ValueError:
        raise ScheduleValidationError(
            f"Invalid button_action '{value}'. "
            f"Must be one of: {', '.join(a.value for a in ButtonAction)}"
        )


@dataclass
class Device:
    """A controllable device and its schedules, in insertion order."""
    id: str
    name: str = ''
    zone: int = 0
    capability: Capability = Capability.SWITCH
    schedules: Dict[str, Schedule] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'name': self.name,
            'zone': self.zone,
            'capability': self.capability.value,
            'schedules': {sid: schedule.to_dict() for sid, schedule in self.schedules.items()},
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Device':
        """
        Build a device from its persisted form, upgrading older schedule shapes.

        Raises:
            ScheduleValidationError: If the device or any schedule is invalid
        """
        try:
            capability = Capability(data.get('capability', Capability.SWITCH.value))
        except ValueError:
            raise ScheduleValidationError(f"Invalid capability '{data.get('capability')}'")

        schedules = {}
        for schedule_id, schedule_data in (data.get('schedules') or {}).items():
            schedules[schedule_id] = load_schedule(schedule_id, schedule_data)

        device = cls(
            id=str(data['id']),
            name=data.get('name', ''),
            zone=int(data.get('zone', 0)),
            capability=capability,
            schedules=schedules,
        )
        if not device.schedules:
            default = generate_default_schedule()
            device.schedules[default.id] = default
        return device


def new_schedule_id() -> str:
    return str(uuid.uuid4())


def generate_default_schedule(schedule_id: Optional[str] = None) -> Schedule:
    """
    Create a schedule with the defaults a newly added run starts from.

    Fixed time not yet chosen, all days selected, turn on at full level.
    """
    return Schedule(id=schedule_id or new_schedule_id())


_LEGACY_TIME_KEYS = {
    'sunTime': 'sun_time',
    'sunset': 'sunset',
    'offset': 'offset',
    'startTime': 'start_time',
    'useVariableTime': 'use_variable_time',
    'variableTime': 'variable_time',
}

_LEGACY_SCHEDULE_KEYS = {
    'desiredState': 'desired_state',
    'desiredLevel': 'desired_level',
    'earlierLater': 'earlier_later',
    'buttonNumber': 'button_number',
    'buttonAction': 'button_action',
    'pause': 'pause',
    'restore': 'restore',
}


def migrate_legacy_keys(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Convert a schedule saved in the flat camelCase layout to the current one.

    The flat layout kept one boolean per weekday and the time fields at the
    top level. Schedules already in the current layout are returned as is.
    """
    if 'time' in data or not any(key in data for key in ('sunTime', 'startTime', 'useVariableTime')):
        return data

    migrated = {
        new_key: data[old_key]
        for old_key, new_key in _LEGACY_SCHEDULE_KEYS.items()
        if old_key in data
    }

    time_data = {}
    for old_key, new_key in _LEGACY_TIME_KEYS.items():
        if old_key in data:
            time_data[new_key] = data[old_key]
    start = time_data.get('start_time')
    if isinstance(start, str) and ':' not in start:
        # Placeholder text such as "Select Time"
        time_data['start_time'] = None
    migrated['time'] = time_data

    if any(name in data for name in DAY_NAMES):
        migrated['days'] = [name for name in DAY_NAMES if data.get(name, False)]

    logger.info("Migrated schedule from legacy key layout")
    return migrated


def ensure_secondary_time_config(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Fill in fields added after a schedule was first saved.

    Returns a new dictionary; the input is not modified.
    """
    upgraded = dict(data)
    defaults = {
        'secondary_time': FixedTime().to_dict(),
        'earlier_later': '-',
        'restore': True,
        'button_number': None,
        'button_action': None,
    }
    missing = [key for key in defaults if key not in upgraded]
    for key in missing:
        upgraded[key] = defaults[key]
    if missing:
        logger.debug(f"Upgraded schedule with defaults for: {', '.join(missing)}")
    return upgraded


def load_schedule(schedule_id: str, data: Dict[str, Any]) -> Schedule:
    """Migrate, normalize and parse one persisted schedule."""
    if not isinstance(data, dict):
        raise ScheduleValidationError(f"Schedule {schedule_id}: Must be a dictionary")
    return Schedule.from_dict(schedule_id, ensure_secondary_time_config(migrate_legacy_keys(data)))


def validate_schedules(schedules: List[Dict[str, Any]]) -> Tuple[bool, List[str]]:
    """
    Validate a list of schedule configurations.

    Args:
        schedules: List of schedule dictionaries

    Returns:
        Tuple of (is_valid, list_of_errors)
    """
    errors = []

    if not isinstance(schedules, list):
        errors.append("Schedules must be a list")
        return False, errors

    for i, schedule_dict in enumerate(schedules):
        if not isinstance(schedule_dict, dict):
            errors.append(f"Schedule {i}: Must be a dictionary")
            continue

        try:
            load_schedule(f"config-{i}", schedule_dict)
        except ScheduleValidationError as e:
            errors.append(f"Schedule {i}: {e}")

    return len(errors) == 0, errors


def parse_schedules(schedules_config: List[Dict[str, Any]]) -> List[Schedule]:
    """
    Parse configured schedules into Schedule objects with fresh ids.

    Raises:
        ScheduleValidationError: If any schedule is invalid
    """
    schedules = []

    for i, schedule_dict in enumerate(schedules_config):
        try:
            schedules.append(load_schedule(new_schedule_id(), schedule_dict))
        except ScheduleValidationError as e:
            raise ScheduleValidationError(f"Invalid schedule at index {i}: {e}")

    return schedules
