"""Pytest fixtures and configuration for testing the schedule manager."""

import os
from datetime import date, datetime, time, timedelta
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo

import pytest
import yaml

from src.config import Config
from src.devices.device_action import DeviceAction, DeviceActionError
from src.scheduler.schedule_types import ButtonAction, Capability
from src.scheduler.solar_calculator import SolarCalculator, SolarTimes


# ============================================================================
# Time and Location Fixtures
# ============================================================================

@pytest.fixture
def timezone_ny():
    """New York timezone."""
    return ZoneInfo("America/New_York")


@pytest.fixture
def test_date():
    """A fixed test date (a Saturday) for deterministic testing."""
    return date(2024, 6, 15)


@pytest.fixture
def test_date_winter():
    """A winter test date."""
    return date(2024, 12, 15)


@pytest.fixture
def location_ny():
    """New York location coordinates."""
    return {
        'latitude': 40.7128,
        'longitude': -74.0060,
        'timezone': 'America/New_York'
    }


# ============================================================================
# Solar and Variable Providers
# ============================================================================

class FixedSolarProvider:
    """Solar provider returning the same sunrise and sunset every day."""

    def __init__(self, timezone, sunrise=time(5, 30), sunset=time(20, 30), available=True):
        self.timezone = timezone
        self.sunrise = sunrise
        self.sunset = sunset
        self.available = available

    def sunrise_sunset(self, target_date: date, offset_minutes: int = 0) -> Optional[SolarTimes]:
        if not self.available:
            return None
        delta = timedelta(minutes=offset_minutes)
        return SolarTimes(
            sunrise=datetime.combine(target_date, self.sunrise, tzinfo=self.timezone) + delta,
            sunset=datetime.combine(target_date, self.sunset, tzinfo=self.timezone) + delta,
        )


class StaticVariables:
    """Variable provider backed by a plain dict."""

    def __init__(self, values: Optional[Dict[str, str]] = None):
        self.values = dict(values or {})

    def get(self, name: str) -> Optional[str]:
        return self.values.get(name)


@pytest.fixture
def solar_provider(timezone_ny):
    """Solar provider with sunrise 05:30 and sunset 20:30."""
    return FixedSolarProvider(timezone_ny)


@pytest.fixture
def solar_calculator(location_ny):
    """Create a solar calculator with NY location."""
    return SolarCalculator(
        latitude=location_ny['latitude'],
        longitude=location_ny['longitude'],
        timezone=location_ny['timezone']
    )


# ============================================================================
# Devices
# ============================================================================

class RecordingDevice(DeviceAction):
    """
    Device adapter that records every command it receives.

    Several devices can share one ``calls`` list to check ordering across them.
    """

    def __init__(
        self,
        name: str = 'Test Device',
        capabilities: Optional[List[Capability]] = None,
        button_actions: Optional[List[ButtonAction]] = None,
        state: Optional[str] = 'off',
        fail: bool = False,
        calls: Optional[list] = None
    ):
        self.name = name
        self.capabilities = capabilities or [Capability.SWITCH, Capability.DIMMER]
        self.button_actions = button_actions or []
        self.state = state
        self.level = None
        self.fail = fail
        self.calls = calls if calls is not None else []

    def _record(self, *call):
        if self.fail:
            raise DeviceActionError(f"Device '{self.name}' is unreachable")
        self.calls.append(call)

    async def turn_on(self):
        self._record('turn_on')
        self.state = 'on'

    async def turn_off(self):
        self._record('turn_off')
        self.state = 'off'

    async def set_level(self, level: int):
        self._record('set_level', level)
        self.level = level

    async def invoke(self, action: ButtonAction, button_number: int):
        self._record('invoke', action, button_number)

    async def current_state(self) -> Optional[str]:
        if self.fail:
            raise DeviceActionError(f"Device '{self.name}' is unreachable")
        return self.state

    async def current_level(self) -> Optional[int]:
        return self.level

    def supported_button_actions(self) -> List[ButtonAction]:
        return list(self.button_actions)

    def supported_capabilities(self) -> List[Capability]:
        return list(self.capabilities)


@pytest.fixture
def recording_device():
    """A switch/dimmer device that records commands."""
    return RecordingDevice()


@pytest.fixture
def device_factory():
    """The RecordingDevice class, for tests that need several or custom devices."""
    return RecordingDevice


@pytest.fixture
def static_variables():
    """The StaticVariables class."""
    return StaticVariables


# ============================================================================
# Configuration
# ============================================================================

def base_config_dict(state_dir) -> dict:
    """Minimal valid configuration with two devices and no schedules."""
    return {
        'location': {
            'latitude': 40.7128,
            'longitude': -74.0060,
            'timezone': 'America/New_York',
        },
        'devices': {
            'credentials': {'username': 'user@example.com', 'password': 'secret'},
            'items': [
                {'id': 'd1', 'name': 'Porch', 'ip_address': '192.168.1.100', 'capability': 'Switch'},
                {'id': 'd2', 'name': 'Hall', 'ip_address': '192.168.1.101', 'capability': 'Dimmer'},
            ],
        },
        'state': {'directory': str(state_dir)},
        'logging': {'level': 'INFO'},
    }


def write_config(tmp_path, config_dict: dict) -> Config:
    """Write ``config_dict`` as config.yaml under ``tmp_path`` and load it."""
    path = tmp_path / 'config.yaml'
    with open(path, 'w') as f:
        yaml.safe_dump(config_dict, f)
    return Config(str(path))


@pytest.fixture
def config_dict(tmp_path):
    """A mutable configuration dictionary; load it with ``load_config``."""
    return base_config_dict(tmp_path / 'state')


@pytest.fixture
def load_config(tmp_path):
    """Function writing a configuration dictionary to disk and loading it."""
    def _load(config: dict) -> Config:
        return write_config(tmp_path, config)
    return _load


@pytest.fixture(autouse=True)
def clear_env_overrides(monkeypatch):
    """Keep SCHEDULE_MANAGER_* variables from the environment out of tests."""
    for name in list(os.environ):
        if name.startswith('SCHEDULE_MANAGER_'):
            monkeypatch.delenv(name, raising=False)
