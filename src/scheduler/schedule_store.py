"""Device and schedule model with edit commands and persistence."""

import copy
import logging
import threading
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Set, Tuple

from .schedule_types import (
    DAY_NAMES,
    EARLIER_LATER_OPTIONS,
    Capability,
    DaySet,
    Device,
    EffectiveTime,
    FixedTime,
    Schedule,
    ScheduleValidationError,
    SolarTime,
    TimeSpec,
    VariableTime,
    generate_default_schedule,
    parse_bool,
    parse_button_action,
    parse_button_number,
    parse_clock_time,
    parse_desired_level,
    parse_desired_state,
    parse_offset,
    parse_schedules,
)
from .state_manager import ScheduleStateFile
from .trigger_compiler import RecurringTrigger


logger = logging.getLogger(__name__)

TIME_FIELDS = ('start_time', 'offset', 'sun_time', 'sunset', 'use_variable_time', 'variable_time')
SCHEDULE_FIELDS = (
    'days', 'pause', 'restore', 'desired_state', 'desired_level',
    'button_number', 'button_action', 'earlier_later',
)


class ScheduleStoreError(ValueError):
    """Raised for unknown devices or schedules and edits that do not apply."""
    pass


@dataclass(frozen=True)
class CompiledSchedule:
    """Derived fields computed for one schedule during a refresh."""
    cron: Optional[RecurringTrigger]
    effective: Optional[EffectiveTime]


class ScheduleStore:
    """
    Owns the Device/Schedule model.

    Every device always has at least one schedule. All access goes through
    a lock so a refresh can swap in new derived fields while triggers read.
    Each mutation is written to the state file.
    """

    def __init__(
        self,
        state_file: Optional[ScheduleStateFile] = None,
        seeds: Optional[Dict[str, Dict[str, Any]]] = None
    ):
        """
        Initialize schedule store.

        Args:
            state_file: Where to persist the model (None keeps it in memory)
            seeds: Per-device initial capability/schedules from config,
                used only when a device is first added
        """
        self._lock = threading.RLock()
        self._devices: Dict[str, Device] = {}
        self.state_file = state_file
        self.seeds = seeds or {}

        if state_file is not None:
            for device in state_file.load():
                self._devices[device.id] = device

    def _save(self):
        if self.state_file is not None:
            self.state_file.save(list(self._devices.values()))

    def _device(self, device_id: str) -> Device:
        device = self._devices.get(device_id)
        if device is None:
            raise ScheduleStoreError(f"Unknown device '{device_id}'")
        return device

    def _schedule(self, device_id: str, schedule_id: str) -> Schedule:
        schedule = self._device(device_id).schedules.get(schedule_id)
        if schedule is None:
            raise ScheduleStoreError(f"Unknown schedule '{schedule_id}' for device '{device_id}'")
        return schedule

    # ------------------------------------------------------------------
    # Devices
    # ------------------------------------------------------------------

    def sync_devices(self, selected: Dict[str, str]):
        """
        Make the managed devices match a selection.

        Args:
            selected: Device id -> display name of every selected device
        """
        with self._lock:
            for device_id in list(self._devices):
                if device_id not in selected:
                    self._remove_device(device_id)

            for device_id, name in selected.items():
                if device_id in self._devices:
                    self._devices[device_id].name = name
                else:
                    self._add_device(device_id, name)

            self._renumber_zones()
            self._save()

    def add_device(self, device_id: str, name: str = '') -> Device:
        """
        Start managing a device, with seeded or default schedules.

        Raises:
            ScheduleStoreError: If the device is already managed
        """
        with self._lock:
            if device_id in self._devices:
                raise ScheduleStoreError(f"Device '{device_id}' is already managed")
            device = self._add_device(device_id, name)
            self._renumber_zones()
            self._save()
            return device

    def _add_device(self, device_id: str, name: str) -> Device:
        device = Device(id=device_id, name=name or device_id)
        seed = self.seeds.get(device_id, {})

        if seed.get('capability'):
            device.capability = Capability(seed['capability'])

        seeded = []
        if seed.get('schedules'):
            try:
                seeded = parse_schedules(seed['schedules'])
            except ScheduleValidationError as e:
                logger.warning(f"Ignoring configured schedules for '{device_id}': {e}")
        for schedule in seeded or [generate_default_schedule()]:
            device.schedules[schedule.id] = schedule

        self._devices[device_id] = device
        logger.info(f"Managing device '{device.name}' with {len(device.schedules)} schedule(s)")
        return device

    def remove_device(self, device_id: str):
        """Stop managing a device, dropping all its schedules."""
        with self._lock:
            self._device(device_id)
            self._remove_device(device_id)
            self._renumber_zones()
            self._save()

    def _remove_device(self, device_id: str):
        device = self._devices.pop(device_id)
        logger.info(f"Removed device '{device.name}' and {len(device.schedules)} schedule(s)")

    def _renumber_zones(self):
        ordered = sorted(self._devices.values(), key=lambda d: (d.name.lower(), d.id))
        for zone, device in enumerate(ordered, start=1):
            device.zone = zone

    def get_device(self, device_id: str) -> Device:
        """Copy of a device and its schedules."""
        with self._lock:
            return copy.deepcopy(self._device(device_id))

    def devices(self) -> List[Device]:
        """Copies of all devices, in zone order."""
        with self._lock:
            return [copy.deepcopy(d) for d in sorted(self._devices.values(), key=lambda d: d.zone)]

    def lookup(self, device_id: str, schedule_id: str) -> Tuple[Device, Schedule]:
        """Copies of a device and one of its schedules, read together."""
        with self._lock:
            device = copy.deepcopy(self._device(device_id))
            schedule = device.schedules.get(schedule_id)
            if schedule is None:
                raise ScheduleStoreError(f"Unknown schedule '{schedule_id}' for device '{device_id}'")
            return device, schedule

    def set_capability(self, device_id: str, capability: Capability, supported: List[Capability]):
        """
        Choose which capability schedules act through.

        Raises:
            ScheduleStoreError: If the device does not support ``capability``
        """
        with self._lock:
            device = self._device(device_id)
            if capability not in supported:
                raise ScheduleStoreError(
                    f"Device '{device_id}' does not support {capability.value} "
                    f"(supports: {', '.join(c.value for c in supported)})"
                )
            device.capability = capability
            self._save()
            logger.info(f"Device '{device.name}' now scheduled as {capability.value}")

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def add_schedule(self, device_id: str) -> str:
        """Add a default schedule to a device and return its id."""
        with self._lock:
            device = self._device(device_id)
            schedule = generate_default_schedule()
            device.schedules[schedule.id] = schedule
            self._save()
            logger.info(f"Added schedule {schedule.id} to '{device.name}'")
            return schedule.id

    def remove_schedule(self, device_id: str, schedule_id: str):
        """Remove a schedule; removing the last one leaves a fresh default."""
        with self._lock:
            device = self._device(device_id)
            self._schedule(device_id, schedule_id)
            del device.schedules[schedule_id]
            if not device.schedules:
                default = generate_default_schedule()
                device.schedules[default.id] = default
                logger.info(f"Last schedule of '{device.name}' removed; added default {default.id}")
            self._save()

    def sorted_schedules(self, device_id: str) -> List[Schedule]:
        """
        Schedules in display order: by effective time of day, unresolved last.

        Schedules with the same time keep their insertion order.
        """
        def key(schedule: Schedule):
            if schedule.effective is None:
                return (1, 0, 0)
            return (0, schedule.effective.instant.hour, schedule.effective.instant.minute)

        with self._lock:
            return sorted(copy.deepcopy(list(self._device(device_id).schedules.values())), key=key)

    def edit(
        self,
        device_id: str,
        schedule_id: str,
        field: str,
        value: Any,
        secondary: bool = False
    ) -> str:
        """
        Apply one edit to a schedule.

        Args:
            device_id: Device the schedule belongs to
            schedule_id: Schedule to edit
            field: Field name (a time field, a day name, or a schedule field)
            value: New value
            secondary: Edit the secondary time instead of the primary one

        Returns:
            Display value of the edited field

        Raises:
            ScheduleStoreError: Unknown ids, unknown field, or a time field
                that does not apply to the current kind of time
            ScheduleValidationError: Invalid value
        """
        with self._lock:
            schedule = self._schedule(device_id, schedule_id)

            if field in TIME_FIELDS:
                current = schedule.secondary_time if secondary else schedule.time_spec
                updated = _edit_time_spec(current, field, value)
                if secondary:
                    schedule.secondary_time = updated
                else:
                    schedule.time_spec = updated
                schedule.clear_derived()
                display = updated.describe()

            elif field in DAY_NAMES:
                schedule.days = schedule.days.with_day(field, parse_bool(value, field))
                schedule.clear_derived()
                display = _describe_days(schedule.days)

            elif field in SCHEDULE_FIELDS:
                display = self._edit_schedule_field(schedule, field, value)

            else:
                raise ScheduleStoreError(f"Unknown schedule field '{field}'")

            self._save()
            logger.info(f"{device_id}/{schedule_id}: {field} -> {display}")
            return display

    def _edit_schedule_field(self, schedule: Schedule, field: str, value: Any) -> str:
        if field == 'days':
            schedule.days = DaySet.from_value(value)
            schedule.clear_derived()
            return _describe_days(schedule.days)
        if field == 'pause':
            schedule.pause = parse_bool(value, field)
            return 'paused' if schedule.pause else 'active'
        if field == 'restore':
            schedule.restore = parse_bool(value, field)
            return 'restore' if schedule.restore else 'no restore'
        if field == 'desired_state':
            schedule.desired_state = parse_desired_state(value)
            return schedule.desired_state
        if field == 'desired_level':
            schedule.desired_level = parse_desired_level(value)
            return str(schedule.desired_level)
        if field == 'button_number':
            schedule.button_number = parse_button_number(value)
            return str(schedule.button_number) if schedule.button_number is not None else '-'
        if field == 'button_action':
            schedule.button_action = parse_button_action(value)
            return schedule.button_action.value if schedule.button_action else '-'

        if value not in EARLIER_LATER_OPTIONS:
            raise ScheduleValidationError(
                f"earlier_later must be one of: {', '.join(EARLIER_LATER_OPTIONS)}"
            )
        schedule.earlier_later = value
        schedule.clear_derived()
        return value

    # ------------------------------------------------------------------
    # Variables
    # ------------------------------------------------------------------

    def variables_in_use(self) -> Set[str]:
        """Names of variables referenced by any active time spec."""
        with self._lock:
            names = set()
            for device in self._devices.values():
                for schedule in device.schedules.values():
                    for spec in schedule.time_specs():
                        if isinstance(spec, VariableTime) and spec.variable_name:
                            names.add(spec.variable_name)
            return names

    def rename_variable(self, old_name: str, new_name: str) -> int:
        """
        Point every time spec that uses ``old_name`` at ``new_name``.

        Returns:
            Number of time specs rewritten
        """
        count = 0
        with self._lock:
            for device in self._devices.values():
                for schedule in device.schedules.values():
                    for attr in ('time_spec', 'secondary_time'):
                        spec = getattr(schedule, attr)
                        if isinstance(spec, VariableTime) and spec.variable_name == old_name:
                            setattr(schedule, attr, replace(spec, variable_name=new_name))
                            count += 1
            if count:
                self._save()

        logger.info(f"Variable '{old_name}' renamed to '{new_name}' in {count} time spec(s)")
        return count

    # ------------------------------------------------------------------
    # Refresh support
    # ------------------------------------------------------------------

    def apply_compiled(self, results: Dict[Tuple[str, str], CompiledSchedule]):
        """
        Swap in derived fields computed by a refresh, all under one lock.

        Results for schedules removed while the refresh ran are ignored.
        """
        with self._lock:
            for (device_id, schedule_id), result in results.items():
                device = self._devices.get(device_id)
                schedule = device.schedules.get(schedule_id) if device else None
                if schedule is None:
                    logger.debug(f"Schedule {device_id}/{schedule_id} removed during refresh")
                    continue
                schedule.cron = result.cron
                schedule.effective = result.effective
            self._save()


def _describe_days(days: DaySet) -> str:
    names = days.to_list()
    return ' '.join(name.capitalize() for name in names) if names else 'no days'


def _edit_time_spec(spec: TimeSpec, field: str, value: Any) -> TimeSpec:
    """Return ``spec`` with one flag-form field changed."""
    offset = getattr(spec, 'offset_minutes', 0)

    if field == 'sun_time':
        if parse_bool(value, field):
            use_sunset = spec.use_sunset if isinstance(spec, SolarTime) else True
            return SolarTime(use_sunset=use_sunset, offset_minutes=offset)
        return FixedTime() if isinstance(spec, SolarTime) else spec

    if field == 'use_variable_time':
        if parse_bool(value, field):
            name = spec.variable_name if isinstance(spec, VariableTime) else None
            return VariableTime(variable_name=name, offset_minutes=offset)
        return FixedTime() if isinstance(spec, VariableTime) else spec

    if field == 'offset':
        if isinstance(spec, FixedTime):
            raise ScheduleStoreError("offset applies only to sun or variable times")
        return replace(spec, offset_minutes=parse_offset(value, 'time'))

    if field == 'sunset':
        if not isinstance(spec, SolarTime):
            raise ScheduleStoreError("sunset applies only to sun times")
        return replace(spec, use_sunset=parse_bool(value, field))

    if field == 'start_time':
        if not isinstance(spec, FixedTime):
            raise ScheduleStoreError("start_time applies only to fixed times")
        return FixedTime(start_time=parse_clock_time(value))

    # variable_time
    if not isinstance(spec, VariableTime):
        raise ScheduleStoreError("variable_time applies only to variable times")
    if value is not None and not isinstance(value, str):
        raise ScheduleValidationError("variable_time must be a variable name")
    return replace(spec, variable_name=value or None)
