"""Unit tests for TimeResolver."""

from datetime import date, datetime, time

import pytest

from src.scheduler.schedule_types import FixedTime, SolarTime, TimeSource, VariableTime
from src.scheduler.time_resolver import TimeResolver


@pytest.fixture
def variables(static_variables):
    return static_variables({
        'wake': '2024-06-20T07:30:00.000-0400',
        'alarm': '9999-99-99T23:30:00.000-0400',
        'holiday': '2024-07-04T99:99:99.999-0400',
        'broken': 'soon',
    })


@pytest.fixture
def resolver(solar_provider, variables, timezone_ny):
    return TimeResolver(solar_provider, variables, timezone_ny)


class TestFixedTime:
    """Test fixed time resolution."""

    def test_resolves_on_today(self, resolver, test_date, timezone_ny):
        resolved = resolver.resolve(FixedTime(time(18, 0, 30)), test_date)

        assert resolved.instant == datetime(2024, 6, 15, 18, 0, tzinfo=timezone_ny)
        assert resolved.source == TimeSource.FIXED
        assert resolved.specific_date is None

    def test_unset_time(self, resolver, test_date, caplog):
        assert resolver.resolve(FixedTime(), test_date) is None
        assert "no start time" in caplog.text


class TestSolarTime:
    """Test sunrise/sunset resolution."""

    def test_sunset_with_offset(self, resolver, test_date, timezone_ny):
        resolved = resolver.resolve(SolarTime(use_sunset=True, offset_minutes=-15), test_date)

        assert resolved.instant == datetime(2024, 6, 15, 20, 15, tzinfo=timezone_ny)
        assert resolved.source == TimeSource.SOLAR

    def test_sunrise(self, resolver, test_date, timezone_ny):
        resolved = resolver.resolve(SolarTime(use_sunset=False), test_date)
        assert resolved.instant == datetime(2024, 6, 15, 5, 30, tzinfo=timezone_ny)

    def test_no_solar_data(self, solar_provider, variables, timezone_ny, test_date, caplog):
        solar_provider.available = False
        resolver = TimeResolver(solar_provider, variables, timezone_ny)

        assert resolver.resolve(SolarTime(), test_date) is None
        assert "No solar data" in caplog.text


class TestVariableTime:
    """Test variable time resolution."""

    def test_dated_variable(self, resolver, test_date, timezone_ny):
        resolved = resolver.resolve(VariableTime('wake'), test_date)

        assert resolved.instant == datetime(2024, 6, 20, 7, 30, tzinfo=timezone_ny)
        assert resolved.source == TimeSource.VARIABLE
        assert resolved.specific_date == date(2024, 6, 20)
        assert resolved.raw == '2024-06-20T07:30:00.000-0400'

    def test_time_only_variable_with_offset_wraps(self, resolver, test_date, timezone_ny):
        """Test 23:30 + 45 minutes stays time-only and lands on today."""
        resolved = resolver.resolve(VariableTime('alarm', 45), test_date)

        assert resolved.instant == datetime(2024, 6, 15, 0, 15, tzinfo=timezone_ny)
        assert resolved.specific_date is None
        assert resolved.raw == '9999-99-99T00:15:00.000-0400'

    def test_date_only_variable(self, resolver, test_date, timezone_ny):
        resolved = resolver.resolve(VariableTime('holiday'), test_date)

        assert resolved.instant == datetime(2024, 7, 4, 0, 0, tzinfo=timezone_ny)
        assert resolved.specific_date == date(2024, 7, 4)

    def test_no_variable_selected(self, resolver, test_date):
        assert resolver.resolve(VariableTime(), test_date) is None

    def test_missing_variable(self, resolver, test_date, caplog):
        assert resolver.resolve(VariableTime('nope'), test_date) is None
        assert "Variable 'nope' not found" in caplog.text

    def test_unparsable_variable(self, resolver, test_date, caplog):
        assert resolver.resolve(VariableTime('broken'), test_date) is None
        assert "unparsable value 'soon'" in caplog.text


def test_unknown_spec_type(resolver, test_date):
    with pytest.raises(TypeError):
        resolver.resolve("18:00", test_date)
