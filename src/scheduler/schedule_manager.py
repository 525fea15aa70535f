"""Schedule manager tying resolution, triggers, gates and dispatch together."""

import asyncio
import logging
import threading
from dataclasses import replace
from datetime import date, datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

from src.config import Config
from src.devices import DeviceAction, DeviceActionError, DeviceManager, KasaDevice
from src.state.hub_state import HubState
from src.state.variable_store import VariableStore
from .dispatcher import Dispatcher
from .dual_time import DualTimeSelector
from .gate_evaluator import GateContext, GateEvaluator
from .recovery_planner import RecoveryPlanner
from .schedule_store import CompiledSchedule, ScheduleStore, ScheduleStoreError
from .schedule_types import DAY_NAMES, EffectiveTime, Schedule
from .solar_calculator import SolarCalculator
from .state_manager import ScheduleStateFile
from .time_resolver import TimeResolver
from .trigger_compiler import RecurringTrigger, compile_trigger
from .trigger_registry import TriggerRegistry


logger = logging.getLogger(__name__)

DAILY_REFRESH_KEY = 'daily_refresh'


def pick_refresh_minute(
    triggers: Iterable[RecurringTrigger],
    hour: int,
    default_minute: int = 0
) -> int:
    """
    First minute of ``hour`` that no schedule trigger uses.

    Args:
        triggers: Compiled schedule triggers
        hour: Hour the daily refresh runs in
        default_minute: Minute to use when every minute is taken

    Returns:
        Minute for the daily refresh
    """
    taken = {trigger.minute for trigger in triggers if trigger.hour == hour}
    for minute in range(60):
        if minute not in taken:
            return minute

    logger.warning(
        f"Every minute of hour {hour} has a schedule trigger; daily refresh at "
        f"{hour:02d}:{default_minute:02d} may collide with one"
    )
    return default_minute


def disable_debug_logging():
    """Drop the root logger and its handlers back to INFO."""
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    for handler in root.handlers:
        handler.setLevel(logging.INFO)
    logger.info("Debug logging disabled")


class ScheduleManager:
    """
    Runs every device's schedules.

    A refresh resolves all schedules, swaps the results into the store and
    re-registers triggers; it runs at startup, after edits, when a referenced
    variable changes, and once a day to follow sunrise/sunset drift.
    """

    # Signal handlers set the shutdown event outside the loop; poll so it is noticed
    SHUTDOWN_POLL_SECONDS = 1.0

    def __init__(
        self,
        config: Config,
        device_manager: Optional[DeviceManager] = None,
        store: Optional[ScheduleStore] = None,
        variables: Optional[VariableStore] = None,
        hub_state: Optional[HubState] = None,
        registry: Optional[TriggerRegistry] = None,
        solar: Optional[SolarCalculator] = None
    ):
        """
        Initialize schedule manager.

        Args:
            config: Application configuration
            device_manager: Device adapters (built from config if None)
            store: Schedule store (loaded from the state directory if None)
            variables: Hub variable store
            hub_state: Hub mode and flag overrides
            registry: Trigger registry
            solar: Solar time provider
        """
        self.config = config
        self.timezone = config.timezone
        self.logger = logging.getLogger(__name__)

        location = config.location
        self.solar = solar or SolarCalculator(
            float(location['latitude']),
            float(location['longitude']),
            location.get('timezone', 'UTC'),
        )
        self.variables = variables or VariableStore(config.state_path('variables.json'))
        self.hub_state = hub_state or HubState(config.state_path('hub_state.json'))
        self.device_manager = device_manager or DeviceManager(config.devices)
        self.store = store or ScheduleStore(
            ScheduleStateFile(config.state_path('schedules.json')),
            seeds=config.device_seeds(),
        )
        self.registry = registry or TriggerRegistry(self.timezone)

        self.resolver = TimeResolver(self.solar, self.variables, self.timezone)
        self.selector = DualTimeSelector(self.resolver)
        self.gates = GateEvaluator()
        self.dispatcher = Dispatcher()
        self.planner = RecoveryPlanner(self.timezone, int(config.restore['lookback_days']))

        self.activation_switch: Optional[DeviceAction] = None
        self._refresh_lock = threading.Lock()
        self.loop = None

        self.variables.on_rename(self._on_variable_renamed)

    def _now(self) -> datetime:
        return datetime.now(self.timezone)

    def _pause_all(self) -> bool:
        return self.hub_state.get_flag('pause_all', self.config.gates['pause_all'])

    async def initialize(self):
        """Connect devices and bring the store in line with the configured devices."""
        await self.device_manager.initialize()
        self.store.sync_devices(self.device_manager.selected_devices())

        summary = self.device_manager.get_initialization_summary()
        unreachable = {failed['id'] for failed in summary['failed_devices']}
        for failed in summary['failed_devices']:
            self.logger.warning(
                f"Device '{failed['id']}' not reachable at startup ({failed['error']}); "
                f"its next firing will retry"
            )
        self.logger.info(
            f"{summary['initialized_count']} of {summary['configured_count']} device(s) connected; "
            f"managing {', '.join(self.device_manager.get_all_device_ids()) or 'none'}"
        )

        for device in self.store.devices():
            action = self.device_manager.get(device.id)
            if action is None or device.id in unreachable:
                continue
            supported = action.supported_capabilities()
            if device.capability not in supported:
                self.logger.warning(
                    f"Device '{device.name}' is scheduled as {device.capability.value} but supports "
                    f"{', '.join(c.value for c in supported)}"
                )

        switch = self.config.gates['activation_switch']
        if switch['enabled']:
            credentials = self.config.devices.get('credentials', {})
            try:
                self.activation_switch = KasaDevice(
                    switch['device'],
                    credentials.get('username'),
                    credentials.get('password'),
                )
                await self.activation_switch.initialize()
            except DeviceActionError as e:
                self.logger.error(f"Activation switch unavailable, schedules will be skipped: {e}")

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def compile_schedule(self, schedule: Schedule, today: date) -> CompiledSchedule:
        """
        Resolve a schedule for ``today`` and compile its trigger.

        When nothing resolves, the schedule keeps its previous trigger.
        """
        secondary = schedule.secondary_time if schedule.has_secondary else None
        selection = self.selector.select(schedule.time_spec, secondary, schedule.earlier_later, today)

        if selection.resolved is None:
            if schedule.cron is not None:
                self.logger.warning(
                    f"Schedule {schedule.id} unresolved; keeping previous trigger {schedule.cron}"
                )
            return CompiledSchedule(cron=schedule.cron, effective=schedule.effective)

        resolved = selection.resolved
        effective = EffectiveTime(
            instant=resolved.instant,
            source=resolved.source,
            specific_date=resolved.specific_date,
            is_secondary=selection.is_secondary,
        )
        return CompiledSchedule(cron=compile_trigger(resolved.instant, schedule.days), effective=effective)

    def compile_all(self, today: date) -> Dict[Tuple[str, str], CompiledSchedule]:
        results = {}
        for device in self.store.devices():
            for schedule in device.schedules.values():
                results[(device.id, schedule.id)] = self.compile_schedule(schedule, today)
        return results

    def refresh(self):
        """
        Recompute every schedule and re-register all triggers.

        Previous triggers and variable subscriptions are removed first, so
        repeated refreshes never leave duplicate triggers behind.
        """
        with self._refresh_lock:
            self.registry.cancel_all()
            self.variables.unsubscribe_all()
            self.variables.clear_all_in_use()

            if self._pause_all():
                self.logger.info("All schedules paused; no triggers registered")
                return

            results = self.compile_all(self._now().date())
            self.store.apply_compiled(results)

            triggers = []
            for device in self.store.devices():
                for schedule in device.schedules.values():
                    if schedule.cron is None:
                        continue
                    triggers.append(schedule.cron)
                    if schedule.pause:
                        continue
                    self.registry.register(
                        schedule.cron,
                        self.handle_trigger,
                        dedupe_key=f"{device.id}:{schedule.id}",
                        args=(device.id, schedule.id),
                    )

            for name in sorted(self.store.variables_in_use()):
                self.variables.mark_in_use(name)
                self.variables.on_change(name, self._on_variable_change)

            refresh = self.config.refresh
            hour = int(refresh['hour'])
            minute = pick_refresh_minute(triggers, hour, int(refresh['default_minute']))
            self.registry.register(
                RecurringTrigger(minute=minute, hour=hour, days_of_week=DAY_NAMES),
                self.daily_refresh,
                dedupe_key=DAILY_REFRESH_KEY,
            )

            self.logger.info(
                f"Refresh complete: {len(self.registry.registered_keys()) - 1} schedule trigger(s), "
                f"daily refresh at {hour:02d}:{minute:02d}"
            )

    async def daily_refresh(self):
        """Scheduled refresh; a coroutine so it runs on the event loop like every other refresh."""
        self.logger.info("Daily refresh")
        self.refresh()

    def _on_variable_change(self, name: str, value: Optional[str]):
        self.logger.info(f"Variable '{name}' changed to {value}; refreshing schedules")
        self.refresh()

    def _on_variable_renamed(self, old_name: str, new_name: str):
        self.store.rename_variable(old_name, new_name)
        self.refresh()

    # ------------------------------------------------------------------
    # Firing
    # ------------------------------------------------------------------

    def gate_context(self, today: Optional[date] = None) -> GateContext:
        """
        Capture settings and hub state for one evaluation.

        The activation switch is not read here; see ``read_activation_switch``.
        """
        gates = self.config.gates
        switch = gates['activation_switch']

        return GateContext(
            today=today or self._now().date(),
            pause_all=self._pause_all(),
            mode_restriction_enabled=gates['modes']['enabled'],
            allowed_modes=frozenset(gates['modes']['allowed']),
            current_mode=self.hub_state.current_mode(),
            activation_switch_enabled=switch['enabled'],
            activation_switch_expected=switch['expected_state'],
            activate_on_before_level=self.config.dispatch['activate_on_before_level'],
        )

    async def read_activation_switch(self, ctx: GateContext) -> GateContext:
        """Copy of ``ctx`` with the activation switch's current state filled in."""
        if not ctx.activation_switch_enabled or self.activation_switch is None:
            return ctx

        try:
            state = await self.activation_switch.current_state()
        except DeviceActionError as e:
            self.logger.error(f"Could not read activation switch: {e}")
            state = None
        return replace(ctx, activation_switch_state=state)

    async def check_gates(
        self,
        schedule: Optional[Schedule],
        label: str,
        today: Optional[date] = None
    ) -> Optional[GateContext]:
        """
        Run the gates for a firing, or the global gates when ``schedule`` is None.

        The activation switch is only read once the pause and mode gates pass.

        Returns:
            The completed gate context, or None when a gate skipped
        """
        ctx = self.gate_context(today)
        if not self.gates.evaluate_hub(ctx, label).passed:
            return None

        ctx = await self.read_activation_switch(ctx)
        if schedule is None:
            result = self.gates.evaluate_global(ctx, label)
        else:
            result = self.gates.evaluate(schedule, ctx, label)
        return ctx if result.passed else None

    async def handle_trigger(self, device_id: str, schedule_id: str):
        """Trigger callback: check the gates, then act on the device."""
        try:
            device, schedule = self.store.lookup(device_id, schedule_id)
        except ScheduleStoreError as e:
            self.logger.warning(f"Ignoring trigger for removed schedule: {e}")
            return

        label = f"{device.name}/{schedule.id}"
        try:
            ctx = await self.check_gates(schedule, label)
            if ctx is None:
                return

            action = self.device_manager.get(device_id)
            if action is None:
                self.logger.error(f"{label}: device '{device_id}' is not available")
                return

            await self.dispatcher.execute(device, schedule, action, ctx.activate_on_before_level)
        except DeviceActionError:
            self.logger.warning(f"{label}: action failed; next firing will retry")
        except Exception:
            self.logger.exception(f"{label}: unexpected error handling trigger")

    # ------------------------------------------------------------------
    # Restore
    # ------------------------------------------------------------------

    async def restore_state(self, now: Optional[datetime] = None) -> List[Tuple[str, str]]:
        """
        Replay the most recent applicable schedule of every device.

        Args:
            now: Current time (defaults to now in the configured timezone)

        Returns:
            (device_id, schedule_id) of every schedule replayed
        """
        now = now or self._now()
        ctx = await self.check_gates(None, 'Restore', today=now.date())
        if ctx is None:
            return []

        restored = []
        for device, schedule in self.planner.plan_restore(self.store.devices(), now):
            action = self.device_manager.get(device.id)
            if action is None:
                self.logger.error(f"Cannot restore '{device.name}': device is not available")
                continue
            try:
                await self.dispatcher.execute(device, schedule, action, ctx.activate_on_before_level)
            except Exception as e:
                self.logger.error(f"Restore failed for '{device.name}': {e}")
                continue
            restored.append((device.id, schedule.id))

        self.logger.info(f"Restored {len(restored)} device(s)")
        return restored

    # ------------------------------------------------------------------
    # Operator commands
    # ------------------------------------------------------------------

    def edit(self, device_id: str, schedule_id: str, field: str, value: Any, secondary: bool = False) -> str:
        """Edit a schedule field and apply it; returns the field's display value."""
        display = self.store.edit(device_id, schedule_id, field, value, secondary=secondary)
        self.refresh()
        return display

    def add_schedule(self, device_id: str) -> str:
        schedule_id = self.store.add_schedule(device_id)
        self.refresh()
        return schedule_id

    def remove_schedule(self, device_id: str, schedule_id: str):
        self.store.remove_schedule(device_id, schedule_id)
        self.refresh()

    def set_pause_all(self, paused: Optional[bool]):
        """Pause or resume all schedules; None drops back to the configured setting."""
        if paused is None:
            self.hub_state.clear_flag('pause_all')
        else:
            self.hub_state.set_flag('pause_all', paused)
        self.refresh()

    def set_mode(self, mode: str):
        self.hub_state.set_mode(mode)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _schedule_debug_auto_off(self):
        log_config = self.config.logging_config
        minutes = int(log_config.get('debug_auto_off_minutes', 0))
        if str(log_config.get('level', 'INFO')).upper() == 'DEBUG' and minutes > 0:
            self.logger.info(f"Debug logging will be disabled in {minutes} minute(s)")
            self.registry.after(minutes * 60, disable_debug_logging)

    async def run(self, shutdown_event: asyncio.Event):
        """
        Run until ``shutdown_event`` is set.

        Startup counts as the boot signal: after the first refresh the
        previous device states are restored once if enabled.
        """
        self.loop = asyncio.get_running_loop()
        await self.initialize()

        self.registry.start()
        self.refresh()
        self._schedule_debug_auto_off()

        if self.config.restore['on_startup']:
            await self.restore_state()

        try:
            while not shutdown_event.is_set():
                try:
                    await asyncio.wait_for(shutdown_event.wait(), timeout=self.SHUTDOWN_POLL_SECONDS)
                except asyncio.TimeoutError:
                    continue
        finally:
            self.logger.info("Shutting down schedule manager...")
            self.registry.shutdown()
            await self.device_manager.close()
            if isinstance(self.activation_switch, KasaDevice):
                await self.activation_switch.close()
            self.logger.info("Schedule manager shutdown complete")
