"""Build and track one device adapter per configured device."""

import logging
from typing import Any, Dict, List, Optional

from .device_action import DeviceAction, DeviceActionError
from .kasa_device import KasaDevice


logger = logging.getLogger(__name__)


class DeviceManager:
    """Manager for the devices schedules act on."""

    def __init__(self, devices_config: Dict[str, Any]):
        """
        Initialize device manager.

        Args:
            devices_config: Configuration dictionary with devices section
        """
        self.devices_config = devices_config
        self.credentials = devices_config.get('credentials', {}) or {}
        self.username = self.credentials.get('username')
        self.password = self.credentials.get('password')
        self.devices: Dict[str, DeviceAction] = {}
        self._failed_devices: List[Dict[str, str]] = []

        if not self.username or not self.password:
            logger.warning("No device credentials configured; devices that require authentication will not connect")

    def _build(self, item: Dict[str, Any]) -> KasaDevice:
        return KasaDevice(item, self.username, self.password)

    async def initialize(self):
        """
        Connect to every configured device.

        A device that fails to connect is recorded but stays registered, so
        its next command reconnects; the rest are still brought up. Only a
        device whose configuration is unusable is left out.
        """
        logger.info("Initializing device manager...")

        for item in self.devices_config.get('items', []) or []:
            device_id = str(item.get('id', ''))
            try:
                device = self._build(item)
            except DeviceActionError as e:
                logger.error(f"Device '{device_id}' not configured: {e}")
                self._failed_devices.append({'id': device_id, 'error': str(e)})
                continue

            self.devices[device_id] = device
            try:
                await device.initialize()
            except DeviceActionError as e:
                logger.error(f"Device '{device_id}' unavailable, will retry on next command: {e}")
                self._failed_devices.append({
                    'id': device_id,
                    'error': device.initialization_error or str(e),
                })

        summary = self.get_initialization_summary()
        logger.info(
            f"Device manager initialized: {summary['initialized_count']} ready, "
            f"{summary['failed_count']} failed"
        )

    def register(self, device_id: str, device: DeviceAction):
        """Add an already constructed adapter under ``device_id``."""
        self.devices[device_id] = device

    def get(self, device_id: str) -> Optional[DeviceAction]:
        return self.devices.get(device_id)

    def get_all_device_ids(self) -> List[str]:
        return list(self.devices.keys())

    def selected_devices(self) -> Dict[str, str]:
        """Configured device ids mapped to display names."""
        return {
            str(item['id']): item.get('name') or str(item['id'])
            for item in self.devices_config.get('items', []) or []
        }

    def get_initialization_summary(self) -> Dict[str, Any]:
        failed_ids = {failed['id'] for failed in self._failed_devices}
        return {
            'configured_count': len(self.devices_config.get('items', []) or []),
            'initialized_count': len([d for d in self.devices if d not in failed_ids]),
            'failed_count': len(self._failed_devices),
            'failed_devices': list(self._failed_devices),
        }

    async def close(self):
        """Close all device connections."""
        for device_id, device in self.devices.items():
            close = getattr(device, 'close', None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(f"Error closing device '{device_id}': {e}")
