"""Kasa/Tapo implementation of the device action interface."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from kasa import Discover, Module

from src.scheduler.schedule_types import ButtonAction, Capability
from .device_action import DeviceAction, DeviceActionError


logger = logging.getLogger(__name__)


class KasaDevice(DeviceAction):
    """A single Kasa/Tapo plug, switch or dimmer reached over the LAN."""

    # Default timeout for discovery, updates and commands (in seconds)
    DEFAULT_TIMEOUT = 30

    def __init__(self, config: Dict[str, Any], username: Optional[str], password: Optional[str]):
        """
        Initialize a Kasa device.

        Args:
            config: Device item configuration (id, name, ip_address)
            username: Kasa/Tapo account username
            password: Kasa/Tapo account password

        Raises:
            DeviceActionError: If the configuration has no IP address
        """
        self.id = str(config.get('id', ''))
        self.name = config.get('name') or self.id or 'Unknown Device'
        self.ip_address = config.get('ip_address')
        self.username = username
        self.password = password
        self.timeout = config.get('timeout_seconds', self.DEFAULT_TIMEOUT)
        self.device = None
        self._initialized = False
        self._initialization_error = None

        if not self.ip_address:
            raise DeviceActionError(f"IP address is required for device '{self.name}'")

    @property
    def initialization_error(self) -> Optional[str]:
        return self._initialization_error

    async def initialize(self):
        """Connect to the device using authenticated discovery."""
        logger.debug(f"Initializing device '{self.name}' at {self.ip_address} (timeout: {self.timeout}s)")

        try:
            self.device = await asyncio.wait_for(
                Discover.discover_single(
                    self.ip_address,
                    username=self.username,
                    password=self.password,
                ),
                timeout=self.timeout
            )
            await asyncio.wait_for(self.device.update(), timeout=self.timeout)
        except asyncio.TimeoutError as te:
            self._initialization_error = f"Timeout after {self.timeout}s"
            error_msg = (
                f"Timeout after {self.timeout}s while initializing device '{self.name}' "
                f"at {self.ip_address}"
            )
            logger.error(error_msg)
            raise DeviceActionError(error_msg) from te
        except Exception as e:
            error_msg = f"{type(e).__name__}: {e}"
            logger.error(f"Failed to initialize device '{self.name}' at {self.ip_address}: {error_msg}")
            logger.debug(f"Full exception for device '{self.name}':", exc_info=True)
            self._initialization_error = error_msg
            raise DeviceActionError(f"Failed to initialize device '{self.name}': {error_msg}") from e

        self._initialized = True
        self._initialization_error = None
        logger.info(
            f"Successfully initialized device '{self.name}': "
            f"model={getattr(self.device, 'model', 'Unknown')}, "
            f"alias={getattr(self.device, 'alias', 'Unknown')}"
        )

    async def _ensure_ready(self):
        if not self._initialized:
            await self.initialize()

    async def _run(self, description: str, coro_factory):
        """Run one device command with the configured timeout."""
        await self._ensure_ready()
        try:
            return await asyncio.wait_for(coro_factory(), timeout=self.timeout)
        except asyncio.TimeoutError as te:
            logger.error(f"Timeout after {self.timeout}s trying to {description} '{self.name}'")
            raise DeviceActionError(f"Timeout trying to {description} '{self.name}'") from te
        except DeviceActionError:
            raise
        except Exception as e:
            logger.error(f"Failed to {description} '{self.name}': {e}")
            raise DeviceActionError(f"Failed to {description} '{self.name}': {e}") from e

    def _light_module(self):
        if self.device is None:
            return None
        return self.device.modules.get(Module.Light)

    async def turn_on(self):
        await self._run('turn on', lambda: self.device.turn_on())
        logger.info(f"Turned ON device '{self.name}'")

    async def turn_off(self):
        await self._run('turn off', lambda: self.device.turn_off())
        logger.info(f"Turned OFF device '{self.name}'")

    async def set_level(self, level: int):
        """Set brightness through the device's light module."""
        await self._ensure_ready()
        light = self._light_module()
        if light is None or not light.has_feature('brightness'):
            raise DeviceActionError(f"Device '{self.name}' does not support dimming")

        await self._run('set level on', lambda: light.set_brightness(level))
        logger.info(f"Set level of device '{self.name}' to {level}")

    async def invoke(self, action: ButtonAction, button_number: int):
        raise DeviceActionError(f"Device '{self.name}' has no buttons")

    async def current_state(self) -> Optional[str]:
        await self._run('read state of', lambda: self.device.update())
        return 'on' if self.device.is_on else 'off'

    async def current_level(self) -> Optional[int]:
        await self._run('read level of', lambda: self.device.update())
        light = self._light_module()
        if light is None or not light.has_feature('brightness'):
            return None
        return light.brightness

    def supported_button_actions(self) -> List[ButtonAction]:
        return []

    def supported_capabilities(self) -> List[Capability]:
        capabilities = [Capability.SWITCH]
        light = self._light_module()
        if light is not None and light.has_feature('brightness'):
            capabilities.append(Capability.DIMMER)
        return capabilities

    async def close(self):
        """Close connection to the device."""
        if self.device:
            await self.device.disconnect()
            logger.debug(f"Closed connection to device '{self.name}'")
