"""Unit tests for TriggerRegistry."""

from datetime import datetime
from unittest.mock import Mock

import pytest
from apscheduler.jobstores.base import JobLookupError
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from freezegun import freeze_time

from src.scheduler.trigger_compiler import RecurringTrigger
from src.scheduler.trigger_registry import TriggerRegistry


TRIGGER = RecurringTrigger(minute=0, hour=18, days_of_week=('mon', 'wed', 'fri'))


@pytest.fixture
def scheduler():
    scheduler = Mock()
    scheduler.get_job.return_value = None
    return scheduler


@pytest.fixture
def registry(scheduler, timezone_ny):
    return TriggerRegistry(timezone_ny, scheduler=scheduler)


def callback():
    pass


class TestRegister:
    """Test registering recurring jobs."""

    def test_register(self, registry, scheduler):
        registry.register(TRIGGER, callback, 'd1:s1', args=('d1', 's1'))

        scheduler.add_job.assert_called_once()
        _, kwargs = scheduler.add_job.call_args
        assert isinstance(kwargs['trigger'], CronTrigger)
        assert kwargs['id'] == 'd1:s1'
        assert kwargs['args'] == ['d1', 's1']
        assert kwargs['replace_existing'] is True
        assert kwargs['coalesce'] is True
        assert registry.registered_keys() == ['d1:s1']

    def test_keep_existing_without_overwrite(self, registry, scheduler):
        existing = Mock()
        scheduler.get_job.return_value = existing

        job = registry.register(TRIGGER, callback, 'd1:s1', overwrite=False)

        assert job is existing
        scheduler.add_job.assert_not_called()

    def test_overwrite_replaces(self, registry, scheduler):
        scheduler.get_job.return_value = Mock()

        registry.register(TRIGGER, callback, 'd1:s1')

        scheduler.add_job.assert_called_once()


class TestCancel:
    """Test removing jobs."""

    def test_cancel_unknown_key(self, registry, scheduler):
        scheduler.remove_job.side_effect = JobLookupError('d1:s1')

        registry.cancel('d1:s1')

        assert registry.registered_keys() == []

    def test_cancel_all_only_touches_registered_keys(self, registry, scheduler):
        registry.register(TRIGGER, callback, 'd1:s1')
        registry.register(TRIGGER, callback, 'daily_refresh')
        registry.after(60, callback)

        registry.cancel_all()

        removed = sorted(c.args[0] for c in scheduler.remove_job.call_args_list)
        assert removed == ['d1:s1', 'daily_refresh']
        assert registry.registered_keys() == []


class TestLifecycle:
    """Test one-shot jobs and start/stop."""

    def test_after(self, registry, scheduler):
        registry.after(3600, callback, args=('x',))

        _, kwargs = scheduler.add_job.call_args
        assert isinstance(kwargs['trigger'], DateTrigger)
        assert kwargs['args'] == ['x']

    def test_shutdown_only_when_running(self, registry, scheduler):
        scheduler.running = False
        registry.shutdown()
        scheduler.shutdown.assert_not_called()

        scheduler.running = True
        registry.shutdown()
        scheduler.shutdown.assert_called_once_with(wait=False)

    @freeze_time("2024-06-17 16:00:00")
    def test_after_run_date(self, registry, scheduler, timezone_ny):
        """Test one-shot jobs run the given number of seconds from now."""
        registry.after(3600, callback)

        _, kwargs = scheduler.add_job.call_args
        assert kwargs['trigger'].run_date == datetime(2024, 6, 17, 13, 0, tzinfo=timezone_ny)
