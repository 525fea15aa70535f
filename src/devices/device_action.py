"""Interface every schedulable device implements."""

from abc import ABC, abstractmethod
from typing import List, Optional

from src.scheduler.schedule_types import ButtonAction, Capability


class DeviceActionError(Exception):
    """Raised when a command to a device fails."""
    pass


class DeviceAction(ABC):
    """
    Commands and read-only state for one device.

    Implementations bound every call with their own timeout and raise
    DeviceActionError on failure.
    """

    name: str = ''

    @abstractmethod
    async def turn_on(self):
        pass

    @abstractmethod
    async def turn_off(self):
        pass

    @abstractmethod
    async def set_level(self, level: int):
        """Set the dimmer level (0-100)."""
        pass

    @abstractmethod
    async def invoke(self, action: ButtonAction, button_number: int):
        """Perform a button action such as push or hold."""
        pass

    @abstractmethod
    async def current_state(self) -> Optional[str]:
        """Return 'on', 'off', or None if unknown."""
        pass

    @abstractmethod
    async def current_level(self) -> Optional[int]:
        pass

    @abstractmethod
    def supported_button_actions(self) -> List[ButtonAction]:
        pass

    @abstractmethod
    def supported_capabilities(self) -> List[Capability]:
        pass
