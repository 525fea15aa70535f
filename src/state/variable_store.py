"""Hub variable storage with change and rename notifications."""

import json
import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional, Set

logger = logging.getLogger(__name__)

ChangeHandler = Callable[[str, Optional[str]], None]
RenameHandler = Callable[[str, str], None]


class VariableStore:
    """
    Named datetime variables that schedules can take their time from.

    Values are kept as the hub's raw datetime strings and persisted to JSON.
    Schedules mark the variables they reference as in use and subscribe to
    changes; a rename rewrites the store and tells rename listeners.
    """

    def __init__(self, state_file: str = "state/variables.json"):
        """Initialize the variable store.

        Args:
            state_file: Path to JSON state file for persistence
        """
        self.state_file = Path(state_file)
        self.values: Dict[str, str] = {}
        self._in_use: Set[str] = set()
        self._change_handlers: Dict[str, List[ChangeHandler]] = {}
        self._rename_handlers: List[RenameHandler] = []

        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        self._load_state()

        logger.info(f"VariableStore initialized with state file: {self.state_file}")

    def _load_state(self):
        """Load variables from JSON file."""
        if self.state_file.exists():
            try:
                with open(self.state_file, 'r') as f:
                    data = json.load(f)
                self.values = dict(data.get('values', {}))
                self._in_use = set(data.get('in_use', []))
                logger.debug(f"Loaded {len(self.values)} variable(s) from {self.state_file}")
            except (json.JSONDecodeError, IOError, AttributeError) as e:
                logger.warning(f"Failed to load variable file: {e}. Starting with no variables.")
                self.values = {}
                self._in_use = set()
        else:
            logger.debug(f"Variable file {self.state_file} does not exist. Starting with no variables.")

    def _save_state(self):
        """Save variables to JSON file."""
        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.state_file, 'w') as f:
                json.dump({'values': self.values, 'in_use': sorted(self._in_use)}, f, indent=2)
            logger.debug(f"Saved variables to {self.state_file}")
        except IOError as e:
            logger.error(f"Failed to save variable file: {e}")

    def get(self, name: str) -> Optional[str]:
        """Raw value of a variable, or None if it does not exist."""
        return self.values.get(name)

    def names(self) -> List[str]:
        return sorted(self.values)

    def set(self, name: str, value: Optional[str]):
        """
        Set (or with None, delete) a variable and notify its subscribers.

        Args:
            name: Variable name
            value: Raw datetime string
        """
        previous = self.values.get(name)
        if value is None:
            self.values.pop(name, None)
        else:
            self.values[name] = value
        self._save_state()

        if previous == value:
            return

        logger.info(f"Variable '{name}' changed: {previous} -> {value}")
        for handler in list(self._change_handlers.get(name, [])):
            try:
                handler(name, value)
            except Exception as e:
                logger.error(f"Change handler for variable '{name}' failed: {e}", exc_info=True)

    def on_change(self, name: str, handler: ChangeHandler):
        """Call ``handler(name, value)`` whenever variable ``name`` changes."""
        self._change_handlers.setdefault(name, []).append(handler)

    def unsubscribe_all(self):
        """Remove every change subscription."""
        self._change_handlers.clear()

    def mark_in_use(self, name: str):
        if name not in self._in_use:
            self._in_use.add(name)
            self._save_state()

    def clear_all_in_use(self):
        if self._in_use:
            self._in_use.clear()
            self._save_state()

    def in_use(self) -> Set[str]:
        return set(self._in_use)

    def on_rename(self, handler: RenameHandler):
        """Call ``handler(old_name, new_name)`` whenever an in-use variable is renamed."""
        self._rename_handlers.append(handler)

    def rename(self, old_name: str, new_name: str):
        """
        Rename a variable, keeping its value and subscriptions.

        Raises:
            KeyError: If ``old_name`` does not exist
            ValueError: If ``new_name`` is already taken
        """
        if old_name not in self.values:
            raise KeyError(f"Variable '{old_name}' does not exist")
        if new_name in self.values:
            raise ValueError(f"Variable '{new_name}' already exists")

        self.values[new_name] = self.values.pop(old_name)
        if old_name in self._in_use:
            self._in_use.discard(old_name)
            self._in_use.add(new_name)
        if old_name in self._change_handlers:
            self._change_handlers[new_name] = self._change_handlers.pop(old_name)
        self._save_state()

        logger.info(f"Variable '{old_name}' renamed to '{new_name}'")
        for handler in list(self._rename_handlers):
            try:
                handler(old_name, new_name)
            except Exception as e:
                logger.error(f"Rename handler for variable '{old_name}' failed: {e}", exc_info=True)
