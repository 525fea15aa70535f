"""Device management package."""

from .device_action import DeviceAction, DeviceActionError
from .kasa_device import KasaDevice
from .device_manager import DeviceManager

__all__ = [
    'DeviceAction',
    'DeviceActionError',
    'KasaDevice',
    'DeviceManager',
]
