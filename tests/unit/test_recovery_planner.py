"""Unit tests for RecoveryPlanner."""

import logging
from datetime import date, datetime
from unittest.mock import patch

import pytest

from src.scheduler.recovery_planner import RecoveryPlanner
from src.scheduler.schedule_types import Capability, DaySet, Device, EffectiveTime, Schedule, TimeSource
from src.scheduler.trigger_compiler import RecurringTrigger


EVERY_DAY = ('sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat')


@pytest.fixture
def planner(timezone_ny):
    return RecoveryPlanner(timezone_ny, lookback_days=7)


@pytest.fixture
def now(timezone_ny):
    """Saturday 2024-06-15 at noon."""
    return datetime(2024, 6, 15, 12, 0, tzinfo=timezone_ny)


def daily(schedule_id: str, hour: int, minute: int = 0, **kwargs) -> Schedule:
    return Schedule(
        id=schedule_id,
        cron=RecurringTrigger(minute=minute, hour=hour, days_of_week=EVERY_DAY),
        **kwargs,
    )


def device_with(*schedules: Schedule, capability: Capability = Capability.SWITCH) -> Device:
    return Device(id='d1', name='Porch', capability=capability, schedules={s.id: s for s in schedules})


class TestLastFiring:
    """Test last_firing."""

    def test_recurring(self, planner, now, timezone_ny):
        assert planner.last_firing(daily('on', 6), now) == datetime(2024, 6, 15, 6, 0, tzinfo=timezone_ny)

    def test_yesterday_when_not_yet_fired_today(self, planner, now, timezone_ny):
        assert planner.last_firing(daily('off', 22), now) == datetime(2024, 6, 14, 22, 0, tzinfo=timezone_ny)

    def test_no_trigger(self, planner, now):
        assert planner.last_firing(Schedule(id='s1'), now) is None

    def test_weekly_trigger_inside_window(self, planner, now, timezone_ny):
        """Test a Saturday 13:00 trigger last fired a week ago, still inside the window."""
        schedule = Schedule(id='s1', cron=RecurringTrigger(minute=0, hour=13, days_of_week=('sat',)))
        assert planner.last_firing(schedule, now) == datetime(2024, 6, 8, 13, 0, tzinfo=timezone_ny)

    def test_weekly_trigger_outside_window(self, planner, now):
        """Test a Saturday trigger is not found by a one day window ending Friday."""
        schedule = Schedule(id='s1', cron=RecurringTrigger(minute=0, hour=11, days_of_week=('sat',)))
        short = RecoveryPlanner(planner.timezone, lookback_days=1)
        friday_noon = now.replace(day=14)

        assert short.last_firing(schedule, friday_noon) is None

    def test_dated_variable_uses_exact_instant(self, planner, now, timezone_ny):
        instant = datetime(2024, 6, 12, 7, 30, tzinfo=timezone_ny)
        schedule = daily(
            's1', 7, 30,
            effective=EffectiveTime(instant=instant, source=TimeSource.VARIABLE, specific_date=date(2024, 6, 12)),
        )

        assert planner.last_firing(schedule, now) == instant

    def test_dated_variable_older_than_window(self, planner, now, timezone_ny):
        """Test a dated variable from eight days ago is not restored."""
        instant = datetime(2024, 6, 7, 7, 30, tzinfo=timezone_ny)
        schedule = daily(
            's1', 7, 30,
            effective=EffectiveTime(instant=instant, source=TimeSource.VARIABLE, specific_date=date(2024, 6, 7)),
        )

        assert planner.last_firing(schedule, now) is None

    def test_dated_variable_in_future(self, planner, now, timezone_ny):
        instant = datetime(2024, 6, 20, 7, 30, tzinfo=timezone_ny)
        schedule = daily(
            's1', 7, 30,
            effective=EffectiveTime(instant=instant, source=TimeSource.VARIABLE, specific_date=date(2024, 6, 20)),
        )

        assert planner.last_firing(schedule, now) is None

    def test_dated_variable_earlier_today(self, planner, now, timezone_ny):
        """Test the instant is compared as a full timestamp, not by date."""
        earlier = datetime(2024, 6, 15, 11, 59, tzinfo=timezone_ny)
        later = datetime(2024, 6, 15, 12, 1, tzinfo=timezone_ny)

        def dated(instant):
            return Schedule(
                id='s1',
                effective=EffectiveTime(instant=instant, source=TimeSource.VARIABLE, specific_date=date(2024, 6, 15)),
            )

        assert planner.last_firing(dated(earlier), now) == earlier
        assert planner.last_firing(dated(later), now) is None

    def test_dated_variable_on_unselected_day(self, planner, now, timezone_ny):
        """Test a dated variable on a day the schedule does not run is not restored."""
        instant = datetime(2024, 6, 12, 7, 30, tzinfo=timezone_ny)
        schedule = Schedule(
            id='s1',
            days=DaySet.from_names(['mon', 'fri']),
            effective=EffectiveTime(instant=instant, source=TimeSource.VARIABLE, specific_date=date(2024, 6, 12)),
        )

        assert planner.last_firing(schedule, now) is None


class TestPlanDevice:
    """Test choosing the schedule to replay."""

    def test_most_recent_wins(self, planner, now):
        device = device_with(daily('off', 22, desired_state='off'), daily('on', 6))
        assert planner.plan_device(device, now).id == 'on'

    def test_most_recent_without_restore_blocks_older(self, planner, now, caplog):
        """Test no fallback to an older schedule when the newest has restore disabled."""
        caplog.set_level(logging.INFO)
        device = device_with(daily('off', 22, desired_state='off'), daily('on', 6, restore=False))

        assert planner.plan_device(device, now) is None
        assert "has restore disabled" in caplog.text

    def test_paused_schedules_ignored(self, planner, now):
        device = device_with(daily('off', 22, desired_state='off'), daily('on', 6, pause=True))
        assert planner.plan_device(device, now).id == 'off'

    def test_tie_keeps_first_listed(self, planner, now):
        device = device_with(daily('first', 6), daily('second', 6))
        assert planner.plan_device(device, now).id == 'first'

    def test_button_devices_not_restored(self, planner, now):
        device = device_with(daily('on', 6), capability=Capability.BUTTON)
        assert planner.plan_device(device, now) is None

    def test_nothing_fired(self, planner, now):
        assert planner.plan_device(device_with(Schedule(id='s1')), now) is None


class TestPlanRestore:
    """Test planning across devices."""

    def test_failure_on_one_device_does_not_stop_others(self, planner, now, caplog):
        broken = Device(id='d0', name='Broken')
        good = device_with(daily('on', 6))

        with patch.object(planner, 'plan_device', side_effect=[RuntimeError('boom'), good.schedules['on']]):
            plan = planner.plan_restore([broken, good], now)

        assert [(d.id, s.id) for d, s in plan] == [('d1', 'on')]
        assert "Failed to plan restore for 'Broken'" in caplog.text
