"""Unit tests for compiling effective times into recurring triggers."""

from datetime import datetime

import pytest
from apscheduler.triggers.cron import CronTrigger

from src.scheduler.schedule_types import DaySet
from src.scheduler.trigger_compiler import RecurringTrigger, compile_trigger


@pytest.fixture
def mwf_trigger():
    """18:00 on Monday, Wednesday and Friday."""
    return RecurringTrigger(minute=0, hour=18, days_of_week=('mon', 'wed', 'fri'))


class TestCompileTrigger:
    """Test compile_trigger."""

    def test_fixed_time_on_selected_days(self, timezone_ny):
        effective = datetime(2024, 6, 15, 18, 0, 45, tzinfo=timezone_ny)

        trigger = compile_trigger(effective, DaySet.from_names(['fri', 'mon', 'wed']))

        assert trigger == RecurringTrigger(minute=0, hour=18, days_of_week=('mon', 'wed', 'fri'))
        assert trigger.to_cron() == "0 0 18 ? * MON,WED,FRI *"

    def test_days_listed_sunday_first(self, timezone_ny):
        trigger = compile_trigger(datetime(2024, 6, 15, 7, 5, tzinfo=timezone_ny), DaySet.ALL)

        assert trigger.days_of_week == ('sun', 'mon', 'tue', 'wed', 'thu', 'fri', 'sat')

    def test_empty_day_set_compiles_nothing(self, timezone_ny, caplog):
        trigger = compile_trigger(datetime(2024, 6, 15, 7, 5, tzinfo=timezone_ny), DaySet.NONE)

        assert trigger is None
        assert "No days selected" in caplog.text

    def test_same_inputs_give_equal_triggers(self, timezone_ny):
        """Test recompiling yields an equal, hash-equal trigger."""
        effective = datetime(2024, 6, 15, 6, 30, tzinfo=timezone_ny)
        first = compile_trigger(effective, DaySet.ALL)
        second = compile_trigger(effective, DaySet.ALL)

        assert first == second
        assert len({first, second}) == 1


class TestRecurringTrigger:
    """Test recurrence queries and conversion."""

    def test_to_cron_trigger(self, mwf_trigger, timezone_ny):
        cron = mwf_trigger.to_cron_trigger(timezone_ny)

        assert isinstance(cron, CronTrigger)
        # Saturday noon -> next firing Monday 18:00
        now = datetime(2024, 6, 15, 12, 0, tzinfo=timezone_ny)
        assert cron.get_next_fire_time(None, now) == datetime(2024, 6, 17, 18, 0, tzinfo=timezone_ny)

    def test_occurrences_between(self, mwf_trigger, timezone_ny):
        start = datetime(2024, 6, 10, 0, 0, tzinfo=timezone_ny)
        end = datetime(2024, 6, 17, 0, 0, tzinfo=timezone_ny)

        occurrences = mwf_trigger.occurrences_between(start, end, timezone_ny)

        assert [o.day for o in occurrences] == [10, 12, 14]
        assert all(o.hour == 18 and o.minute == 0 for o in occurrences)

    def test_window_end_is_exclusive(self, mwf_trigger, timezone_ny):
        start = datetime(2024, 6, 10, 0, 0, tzinfo=timezone_ny)
        end = datetime(2024, 6, 14, 18, 0, tzinfo=timezone_ny)

        occurrences = mwf_trigger.occurrences_between(start, end, timezone_ny)

        assert [o.day for o in occurrences] == [10, 12]

    def test_last_occurrence_between(self, mwf_trigger, timezone_ny):
        start = datetime(2024, 6, 8, 12, 0, tzinfo=timezone_ny)
        end = datetime(2024, 6, 15, 12, 0, tzinfo=timezone_ny)

        last = mwf_trigger.last_occurrence_between(start, end, timezone_ny)

        assert last == datetime(2024, 6, 14, 18, 0, tzinfo=timezone_ny)

    def test_last_occurrence_empty_window(self, mwf_trigger, timezone_ny):
        # Saturday to Sunday holds no Mon/Wed/Fri firing
        start = datetime(2024, 6, 15, 0, 0, tzinfo=timezone_ny)
        end = datetime(2024, 6, 16, 23, 0, tzinfo=timezone_ny)

        assert mwf_trigger.last_occurrence_between(start, end, timezone_ny) is None

    def test_dict_form(self, mwf_trigger):
        data = mwf_trigger.to_dict()

        assert data == {'minute': 0, 'hour': 18, 'days_of_week': ['mon', 'wed', 'fri']}
        assert RecurringTrigger.from_dict(data) == mwf_trigger
