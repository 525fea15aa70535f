"""Persistence of devices and schedules across restarts."""

import json
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .schedule_types import Device, ScheduleValidationError


logger = logging.getLogger(__name__)


class ScheduleStateFile:
    """Reads and writes the device/schedule model as JSON."""

    def __init__(self, state_file: str = "state/schedules.json"):
        """
        Initialize schedule state file.

        Args:
            state_file: Path to the state file
        """
        self.state_file = Path(state_file)
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self.last_updated: Optional[datetime] = None

    def load(self) -> List[Device]:
        """
        Load devices from file.

        A missing or unreadable file yields no devices. A single bad device
        entry is dropped without discarding the others.
        """
        if not self.state_file.exists():
            logger.info("No existing schedule state file found, starting fresh")
            return []

        try:
            with open(self.state_file, 'r') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.error(f"Error loading schedule state file: {e}, starting fresh")
            return []

        if data.get('last_updated'):
            try:
                self.last_updated = datetime.fromisoformat(data['last_updated'])
            except ValueError:
                self.last_updated = None

        devices = []
        for device_data in data.get('devices', []):
            try:
                devices.append(Device.from_dict(device_data))
            except (ScheduleValidationError, AttributeError, KeyError, TypeError, ValueError) as e:
                entry_id = device_data.get('id', '?') if isinstance(device_data, dict) else '?'
                logger.error(f"Dropping unreadable device entry {entry_id}: {e}")

        logger.info(f"Loaded {len(devices)} device(s) from {self.state_file}")
        return devices

    def save(self, devices: List[Device]):
        """Save devices to file."""
        self.last_updated = datetime.now()
        data = {
            'devices': [device.to_dict() for device in devices],
            'last_updated': self.last_updated.isoformat(),
        }

        try:
            with open(self.state_file, 'w') as f:
                json.dump(data, f, indent=2)
            logger.debug(f"Saved schedule state to {self.state_file}")
        except OSError as e:
            logger.error(f"Error saving schedule state file: {e}")

