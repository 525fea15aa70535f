"""
Unit tests for the Kasa/Tapo device adapter and the device manager.
"""

import asyncio
from unittest.mock import AsyncMock, Mock, patch

import pytest
from kasa import Module

from src.devices.device_action import DeviceActionError
from src.devices.device_manager import DeviceManager
from src.devices.kasa_device import KasaDevice
from src.scheduler.schedule_types import ButtonAction, Capability


DEVICE_CONFIG = {'id': 'porch', 'name': 'Porch', 'ip_address': '192.168.1.100'}


def make_kasa(dimmable: bool = False):
    """A mocked python-kasa device."""
    device = Mock()
    device.update = AsyncMock()
    device.turn_on = AsyncMock()
    device.turn_off = AsyncMock()
    device.disconnect = AsyncMock()
    device.is_on = True
    device.model = 'KS220'
    device.alias = 'Porch'
    if dimmable:
        light = Mock()
        light.has_feature.return_value = True
        light.set_brightness = AsyncMock()
        light.brightness = 40
        device.modules = {Module.Light: light}
    else:
        device.modules = {}
    return device


class TestKasaDevice:
    """Test KasaDevice commands."""

    def test_requires_ip_address(self):
        with pytest.raises(DeviceActionError):
            KasaDevice({'id': 'porch'}, 'user', 'pass')

    def test_default_timeout(self):
        assert KasaDevice(dict(DEVICE_CONFIG), 'user', 'pass').timeout == 30

    @pytest.mark.asyncio
    @patch('src.devices.kasa_device.Discover')
    async def test_turn_on_initializes_first(self, mock_discover):
        kasa = make_kasa()
        mock_discover.discover_single = AsyncMock(return_value=kasa)
        device = KasaDevice(DEVICE_CONFIG, 'user', 'pass')

        await device.turn_on()

        mock_discover.discover_single.assert_awaited_once_with(
            '192.168.1.100', username='user', password='pass'
        )
        kasa.turn_on.assert_awaited_once()

    @pytest.mark.asyncio
    @patch('src.devices.kasa_device.Discover')
    async def test_discovery_timeout(self, mock_discover):
        mock_discover.discover_single = AsyncMock(side_effect=asyncio.TimeoutError())
        device = KasaDevice(DEVICE_CONFIG, 'user', 'pass')

        with pytest.raises(DeviceActionError) as context:
            await device.initialize()

        assert "Timeout after 30s" in str(context.value)
        assert device.initialization_error == "Timeout after 30s"

    @pytest.mark.asyncio
    @patch('src.devices.kasa_device.Discover')
    async def test_command_failure_wrapped(self, mock_discover):
        kasa = make_kasa()
        kasa.turn_off = AsyncMock(side_effect=OSError("connection reset"))
        mock_discover.discover_single = AsyncMock(return_value=kasa)
        device = KasaDevice(DEVICE_CONFIG, 'user', 'pass')

        with pytest.raises(DeviceActionError, match="connection reset"):
            await device.turn_off()

    @pytest.mark.asyncio
    @patch('src.devices.kasa_device.Discover')
    async def test_set_level(self, mock_discover):
        kasa = make_kasa(dimmable=True)
        mock_discover.discover_single = AsyncMock(return_value=kasa)
        device = KasaDevice(DEVICE_CONFIG, 'user', 'pass')

        await device.set_level(40)

        kasa.modules[Module.Light].set_brightness.assert_awaited_once_with(40)
        assert device.supported_capabilities() == [Capability.SWITCH, Capability.DIMMER]
        assert await device.current_level() == 40

    @pytest.mark.asyncio
    @patch('src.devices.kasa_device.Discover')
    async def test_set_level_without_dimming(self, mock_discover):
        mock_discover.discover_single = AsyncMock(return_value=make_kasa())
        device = KasaDevice(DEVICE_CONFIG, 'user', 'pass')

        with pytest.raises(DeviceActionError, match="does not support dimming"):
            await device.set_level(40)
        assert device.supported_capabilities() == [Capability.SWITCH]

    @pytest.mark.asyncio
    @patch('src.devices.kasa_device.Discover')
    async def test_current_state(self, mock_discover):
        kasa = make_kasa()
        kasa.is_on = False
        mock_discover.discover_single = AsyncMock(return_value=kasa)
        device = KasaDevice(DEVICE_CONFIG, 'user', 'pass')

        assert await device.current_state() == 'off'

    @pytest.mark.asyncio
    @patch('src.devices.kasa_device.Discover')
    async def test_command_reconnects_after_failed_initialize(self, mock_discover):
        """Test a device unreachable at startup is connected by its next command."""
        kasa = make_kasa()
        mock_discover.discover_single = AsyncMock(side_effect=[OSError("host unreachable"), kasa])
        device = KasaDevice(DEVICE_CONFIG, 'user', 'pass')

        with pytest.raises(DeviceActionError):
            await device.initialize()
        assert device.initialization_error == "OSError: host unreachable"

        await device.turn_on()

        kasa.turn_on.assert_awaited_once()
        assert device.initialization_error is None

    @pytest.mark.asyncio
    async def test_no_buttons(self):
        device = KasaDevice(DEVICE_CONFIG, 'user', 'pass')

        assert device.supported_button_actions() == []
        with pytest.raises(DeviceActionError):
            await device.invoke(ButtonAction.PUSH, 1)


class TestDeviceManager:
    """Test DeviceManager."""

    @pytest.fixture
    def devices_config(self):
        return {
            'credentials': {'username': 'user', 'password': 'pass'},
            'items': [
                DEVICE_CONFIG,
                {'id': 'hall', 'name': 'Hall', 'ip_address': '192.168.1.101'},
            ],
        }

    def test_selected_devices(self, devices_config):
        manager = DeviceManager(devices_config)
        assert manager.selected_devices() == {'porch': 'Porch', 'hall': 'Hall'}

    @pytest.mark.asyncio
    async def test_failed_device_does_not_stop_others(self, devices_config):
        manager = DeviceManager(devices_config)

        async def initialize(device):
            if device.id == 'porch':
                raise DeviceActionError("Timeout after 30s")

        with patch.object(KasaDevice, 'initialize', autospec=True, side_effect=initialize):
            await manager.initialize()

        assert manager.get_all_device_ids() == ['porch', 'hall']
        assert isinstance(manager.get('porch'), KasaDevice)
        summary = manager.get_initialization_summary()
        assert summary['initialized_count'] == 1
        assert summary['failed_count'] == 1
        assert summary['failed_devices'] == [{'id': 'porch', 'error': 'Timeout after 30s'}]

    @pytest.mark.asyncio
    async def test_unusable_config_left_out(self, devices_config):
        devices_config['items'].append({'id': 'garage', 'name': 'Garage'})
        manager = DeviceManager(devices_config)

        with patch.object(KasaDevice, 'initialize', new=AsyncMock()):
            await manager.initialize()

        assert manager.get('garage') is None
        assert manager.get_initialization_summary()['failed_devices'][0]['id'] == 'garage'

    @pytest.mark.asyncio
    async def test_close(self, devices_config, recording_device):
        manager = DeviceManager(devices_config)
        closable = Mock()
        closable.close = AsyncMock()
        manager.register('porch', closable)
        manager.register('hall', recording_device)

        await manager.close()

        closable.close.assert_awaited_once()
