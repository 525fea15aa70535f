"""Carry out a schedule's action on its device."""

import logging

from src.devices.device_action import DeviceAction, DeviceActionError
from .schedule_types import Capability, Device, Schedule


logger = logging.getLogger(__name__)


class Dispatcher:
    """
    Sends the on/off, level or button command a schedule asks for.

    Commands are not retried; the next firing of the schedule is the retry.
    """

    async def execute(
        self,
        device: Device,
        schedule: Schedule,
        action: DeviceAction,
        activate_on_before_level: bool = False
    ) -> bool:
        """
        Execute a schedule's action.

        Args:
            device: Device the schedule belongs to
            schedule: Schedule whose action to perform
            action: Adapter for the physical device
            activate_on_before_level: Send 'on' before setting a dimmer level

        Returns:
            True if a command was sent, False for a button schedule that is
            not fully configured

        Raises:
            DeviceActionError: If the device rejects a command
        """
        label = f"{device.name or device.id}/{schedule.id}"
        try:
            if device.capability == Capability.BUTTON:
                return await self._press(label, schedule, action)

            if device.capability == Capability.DIMMER and schedule.desired_state == 'on':
                if activate_on_before_level:
                    await action.turn_on()
                await action.set_level(schedule.desired_level)
                logger.info(f"{label}: level set to {schedule.desired_level}")
                return True

            if schedule.desired_state == 'on':
                await action.turn_on()
            else:
                await action.turn_off()
            logger.info(f"{label}: turned {schedule.desired_state}")
            return True

        except DeviceActionError as e:
            logger.error(f"{label}: device command failed: {e}")
            raise

    async def _press(self, label: str, schedule: Schedule, action: DeviceAction) -> bool:
        if schedule.button_action is None or schedule.button_number is None:
            logger.error(f"{label}: button action or number not set")
            return False
        if schedule.button_action not in action.supported_button_actions():
            logger.error(f"{label}: device does not support '{schedule.button_action.value}'")
            return False

        await action.invoke(schedule.button_action, schedule.button_number)
        logger.info(f"{label}: {schedule.button_action.value} button {schedule.button_number}")
        return True
