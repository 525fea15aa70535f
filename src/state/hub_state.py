"""
Hub-wide state read by the schedule gates.

Holds the current hub mode and runtime overrides of gate flags from
config.yaml (for example pausing all schedules without editing the file).
"""

import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional


logger = logging.getLogger(__name__)


class HubState:
    """
    Current mode and gate flag overrides, persisted to JSON.

    When no override is present for a flag, the value from config.yaml is used.
    """

    def __init__(self, state_file: str = "state/hub_state.json", default_mode: Optional[str] = None):
        """
        Initialize hub state.

        Args:
            state_file: Path to JSON file storing the state
            default_mode: Mode to report until one has been set
        """
        self.state_file = Path(state_file)
        self.state: Dict[str, Any] = {'mode': default_mode, 'overrides': {}}
        self._ensure_state_dir()
        self._load_state()

    def _ensure_state_dir(self):
        """Ensure state directory exists."""
        self.state_file.parent.mkdir(parents=True, exist_ok=True)

    def _load_state(self):
        """Load state from JSON file."""
        if not self.state_file.exists():
            logger.info(f"No hub state file found at {self.state_file}")
            return

        try:
            with open(self.state_file, 'r') as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse hub state file {self.state_file}: {e}")
            return
        except OSError as e:
            logger.error(f"Failed to load hub state file {self.state_file}: {e}")
            return

        if not isinstance(data, dict):
            logger.warning(f"Invalid hub state file format (expected dict): {self.state_file}")
            return

        if data.get('mode') is not None:
            self.state['mode'] = data['mode']
        if isinstance(data.get('overrides'), dict):
            self.state['overrides'] = data['overrides']
        logger.info(f"Loaded hub state: mode={self.state['mode']}")

    def _save_state(self):
        """Save state to JSON file."""
        try:
            self._ensure_state_dir()
            with open(self.state_file, 'w') as f:
                json.dump(self.state, f, indent=2)
            logger.debug(f"Saved hub state to {self.state_file}")
        except OSError as e:
            logger.error(f"Failed to save hub state to {self.state_file}: {e}")

    def current_mode(self) -> Optional[str]:
        return self.state.get('mode')

    def set_mode(self, mode: str):
        previous = self.state.get('mode')
        self.state['mode'] = mode
        self._save_state()
        logger.info(f"Hub mode changed: {previous} -> {mode}")

    def get_flag(self, name: str, default: bool) -> bool:
        """
        Effective value of a gate flag.

        Args:
            name: Flag name (e.g. 'pause_all')
            default: Value from config.yaml

        Returns:
            Override if one is set, otherwise ``default``
        """
        return self.state['overrides'].get(name, default)

    def set_flag(self, name: str, value: bool):
        if not isinstance(value, bool):
            raise ValueError(f"Flag '{name}' must be a boolean")
        self.state['overrides'][name] = value
        self._save_state()
        logger.info(f"Set override {name}={value}")

    def clear_flag(self, name: str):
        if name in self.state['overrides']:
            del self.state['overrides'][name]
            self._save_state()
            logger.info(f"Cleared override for {name}")
