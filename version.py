"""Version information for the Schedule Manager."""

__version__ = "1.0.0"
__version_info__ = (1, 0, 0)

# Release notes for this version
RELEASE_NOTES = """
Schedule Manager v1.0.0

Runs per-device time-of-day schedules against TP-Link Kasa/Tapo devices.

Key Features:
- Fixed, sunrise/sunset and hub-variable start times
- Optional secondary time with earlier/later selection
- Global pause, mode restriction and activation switch gates
- Switch, dimmer and button actions
- Restore of device state from the most recent schedule after a restart
- Configuration via YAML and environment variables
"""
