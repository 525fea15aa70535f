"""Configuration loader and validator for the schedule manager."""

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml

from src.scheduler.schedule_types import Capability, validate_schedules


logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Configuration error exception."""
    pass


def _to_bool(value: str) -> bool:
    return value.lower() in ('true', '1', 'yes', 'on')


def _to_list(value: str) -> List[str]:
    return [item.strip() for item in value.split(',') if item.strip()]


# Environment variable to config key mapping
# All environment variables must use the SCHEDULE_MANAGER_ prefix
ENV_VAR_MAPPING = {
    # Location settings
    'SCHEDULE_MANAGER_LATITUDE': ('location', 'latitude', float),
    'SCHEDULE_MANAGER_LONGITUDE': ('location', 'longitude', float),
    'SCHEDULE_MANAGER_TIMEZONE': ('location', 'timezone', str),

    # Device credentials
    'SCHEDULE_MANAGER_DEVICE_USERNAME': ('devices', 'credentials', 'username', str),
    'SCHEDULE_MANAGER_DEVICE_PASSWORD': ('devices', 'credentials', 'password', str),

    # Gates
    'SCHEDULE_MANAGER_PAUSE_ALL': ('gates', 'pause_all', _to_bool),
    'SCHEDULE_MANAGER_MODES_ENABLED': ('gates', 'modes', 'enabled', _to_bool),
    'SCHEDULE_MANAGER_ALLOWED_MODES': ('gates', 'modes', 'allowed', _to_list),
    'SCHEDULE_MANAGER_ACTIVATION_SWITCH_ENABLED': ('gates', 'activation_switch', 'enabled', _to_bool),
    'SCHEDULE_MANAGER_ACTIVATION_SWITCH_EXPECTED_STATE': ('gates', 'activation_switch', 'expected_state', str),

    # Dispatch
    'SCHEDULE_MANAGER_ACTIVATE_ON_BEFORE_LEVEL': ('dispatch', 'activate_on_before_level', _to_bool),

    # Daily refresh and restore
    'SCHEDULE_MANAGER_REFRESH_HOUR': ('refresh', 'hour', int),
    'SCHEDULE_MANAGER_RESTORE_ON_STARTUP': ('restore', 'on_startup', _to_bool),
    'SCHEDULE_MANAGER_RESTORE_LOOKBACK_DAYS': ('restore', 'lookback_days', int),

    # State files
    'SCHEDULE_MANAGER_STATE_DIRECTORY': ('state', 'directory', str),

    # Logging settings
    'SCHEDULE_MANAGER_LOG_LEVEL': ('logging', 'level', str),
    'SCHEDULE_MANAGER_DEBUG_AUTO_OFF_MINUTES': ('logging', 'debug_auto_off_minutes', int),
}

VALID_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


def get_env_var(env_var: str, convert_type: type) -> Optional[Any]:
    """
    Get environment variable and convert to specified type.

    Args:
        env_var: Environment variable name
        convert_type: Type conversion function (int, float, str, or callable)

    Returns:
        Converted value or None if not set
    """
    value = os.environ.get(env_var)
    if value is None:
        return None

    try:
        return convert_type(value)
    except (ValueError, TypeError) as e:
        logger.warning(f"Failed to convert environment variable {env_var}={value}: {e}")
        return None


def apply_env_overrides(config: Dict[str, Any]) -> tuple[Dict[str, Any], Dict[str, str]]:
    """
    Apply environment variable overrides to configuration and track which fields were overridden.

    Args:
        config: Configuration dictionary

    Returns:
        Tuple of (config with overrides applied, dict mapping config paths to env var names)
    """
    logger.debug("Checking for environment variable overrides...")

    env_overridden_paths = {}

    for env_var, mapping_tuple in ENV_VAR_MAPPING.items():
        value = get_env_var(env_var, mapping_tuple[-1])
        if value is None:
            continue

        sections = mapping_tuple[:-1]
        current = config
        for section in sections[:-1]:
            if not isinstance(current.get(section), dict):
                current[section] = {}
            current = current[section]
        current[sections[-1]] = value

        path = '.'.join(sections)
        env_overridden_paths[path] = env_var
        if 'password' in path:
            logger.info(f"Environment variable override: {env_var} -> {path} = ********")
        else:
            logger.info(f"Environment variable override: {env_var} -> {path} = {value}")

    return config, env_overridden_paths


def _empty_config() -> Dict[str, Any]:
    return {
        'location': {},
        'devices': {'credentials': {}, 'items': []},
        'gates': {},
        'dispatch': {},
        'refresh': {},
        'restore': {},
        'state': {},
        'logging': {},
    }


class Config:
    """Configuration manager for the application."""

    def __init__(self, config_path: str = None):
        """
        Initialize configuration from YAML file with environment variable overrides.

        Args:
            config_path: Path to the configuration file (defaults to
                SCHEDULE_MANAGER_CONFIG_PATH env var or "config.yaml")

        Raises:
            ConfigError: If the file cannot be parsed or fails validation
        """
        if config_path is None:
            config_path = os.environ.get('SCHEDULE_MANAGER_CONFIG_PATH', 'config.yaml')

        logger.info(f"Loading configuration from: {config_path}")
        self.config_path = Path(config_path)
        self._config = self._load_config()

        self._config, self._env_overridden_paths = apply_env_overrides(self._config)

        self._validate_config()
        logger.info("Configuration loaded and validated successfully")

    def _load_config(self) -> Dict[str, Any]:
        """Load configuration from YAML file, or an empty skeleton if there is none."""
        if not self.config_path.exists():
            # Logging is usually not configured yet when Config() is created
            print(f"INFO: Configuration file not found: {self.config_path}")
            print("INFO: Attempting to load configuration from environment variables...")
            logger.warning(f"Configuration file not found: {self.config_path}")
            return _empty_config()

        try:
            with open(self.config_path, 'r') as f:
                config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            logger.error(f"Error parsing YAML configuration file: {e}")
            raise ConfigError(f"Error parsing configuration file: {e}")
        except OSError as e:
            logger.error(f"Unexpected error loading configuration: {type(e).__name__}: {e}")
            raise ConfigError(f"Error loading configuration: {e}")

        if config is None:
            logger.warning("Configuration file is empty, using empty config structure")
            return _empty_config()

        if not isinstance(config, dict):
            logger.error(f"Configuration must be a dictionary, got: {type(config)}")
            raise ConfigError(f"Invalid configuration format: expected dictionary, got {type(config)}")

        logger.info(f"Successfully parsed configuration with {len(config)} top-level sections")
        logger.debug(f"Configuration sections: {list(config.keys())}")
        return config

    def _section(self, name: str) -> Dict[str, Any]:
        section = self._config.get(name)
        if section is None:
            section = {}
            self._config[name] = section
        if not isinstance(section, dict):
            logger.error(f"{name} must be a dictionary, got: {type(section)}")
            raise ConfigError(f"{name.capitalize()} configuration must be a dictionary")
        return section

    def _validate_config(self):
        """Validate configuration fields."""
        logger.info("Validating configuration...")
        self._validate_location()
        self._validate_devices()
        self._validate_gates()
        self._validate_refresh_and_restore()
        self._validate_logging()
        logger.info("Configuration validation completed successfully")

    def _validate_location(self):
        location = self._section('location')

        if 'latitude' not in location or 'longitude' not in location:
            logger.error(f"Location missing required fields. Has: {list(location.keys())}")
            raise ConfigError("Location must include latitude and longitude")

        try:
            lat = float(location['latitude'])
            lon = float(location['longitude'])
        except (ValueError, TypeError) as e:
            logger.error(f"Invalid latitude/longitude values: {e}")
            raise ConfigError(f"Latitude and longitude must be valid numbers: {e}")
        if not (-90 <= lat <= 90):
            logger.error(f"Invalid latitude value: {lat} (must be between -90 and 90)")
            raise ConfigError(f"Invalid latitude: {lat} (must be between -90 and 90)")
        if not (-180 <= lon <= 180):
            logger.error(f"Invalid longitude value: {lon} (must be between -180 and 180)")
            raise ConfigError(f"Invalid longitude: {lon} (must be between -180 and 180)")

        tz_name = location.setdefault('timezone', 'UTC')
        try:
            ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            logger.error(f"Unknown timezone '{tz_name}': {e}")
            raise ConfigError(f"Invalid timezone: {tz_name}")
        logger.debug(f"Location validated: lat={lat}, lon={lon}, tz={tz_name}")

    def _validate_devices(self):
        devices = self._section('devices')

        credentials = devices.setdefault('credentials', {}) or {}
        devices['credentials'] = credentials
        if not credentials.get('username') or not credentials.get('password'):
            logger.warning("Device credentials missing; devices that require authentication will not connect")

        items = devices.setdefault('items', []) or []
        devices['items'] = items
        if not isinstance(items, list):
            logger.error(f"Device items must be a list, got: {type(items)}")
            raise ConfigError("Device items must be a list")
        if not items:
            logger.warning("No devices configured - this is unusual but allowed")

        seen_ids = set()
        for i, item in enumerate(items):
            if not isinstance(item, dict):
                logger.error(f"Device item {i} must be a dictionary")
                raise ConfigError(f"Device item {i} must be a dictionary")

            device_id = str(item.get('id') or '').strip()
            if not device_id:
                logger.error(f"Device item {i} missing or empty id")
                raise ConfigError("All devices must have a non-empty 'id'")
            if device_id in seen_ids:
                logger.error(f"Duplicate device id '{device_id}'")
                raise ConfigError(f"Duplicate device id: {device_id}")
            seen_ids.add(device_id)

            if not item.get('ip_address'):
                logger.error(f"Device '{device_id}' missing or empty ip_address")
                raise ConfigError("All devices must have non-empty 'ip_address'")

            capability = item.get('capability')
            if capability is not None and capability not in [c.value for c in Capability]:
                logger.error(f"Device '{device_id}' has invalid capability '{capability}'")
                raise ConfigError(f"Invalid capability for device '{device_id}': {capability}")

            if 'schedules' in item:
                is_valid, errors = validate_schedules(item['schedules'])
                if not is_valid:
                    for error in errors:
                        logger.error(f"Device '{device_id}': {error}")
                    raise ConfigError(f"Invalid schedules for device '{device_id}': {'; '.join(errors)}")

        logger.debug(f"Validated {len(items)} device(s)")

    def _validate_gates(self):
        gates = self._section('gates')

        modes = gates.get('modes') or {}
        allowed = modes.get('allowed', [])
        if not isinstance(allowed, list) or not all(isinstance(m, str) for m in allowed):
            logger.error(f"Allowed modes must be a list of names, got: {allowed}")
            raise ConfigError("gates.modes.allowed must be a list of mode names")
        if modes.get('enabled') and not allowed:
            logger.warning("Mode restriction enabled with no allowed modes; no schedule will run")

        switch = gates.get('activation_switch') or {}
        expected = switch.get('expected_state', 'on')
        if expected not in ('on', 'off'):
            logger.error(f"Invalid activation switch expected_state: {expected}")
            raise ConfigError("gates.activation_switch.expected_state must be 'on' or 'off'")
        if switch.get('enabled'):
            device = switch.get('device') or {}
            if not device.get('ip_address'):
                logger.error("Activation switch enabled without a device ip_address")
                raise ConfigError("gates.activation_switch.device.ip_address is required when enabled")

    def _validate_refresh_and_restore(self):
        refresh = self.refresh
        if not (0 <= int(refresh['hour']) <= 23):
            logger.error(f"Invalid refresh hour: {refresh['hour']}")
            raise ConfigError(f"refresh.hour must be between 0 and 23, got: {refresh['hour']}")
        if not (0 <= int(refresh['default_minute']) <= 59):
            logger.error(f"Invalid refresh default_minute: {refresh['default_minute']}")
            raise ConfigError(f"refresh.default_minute must be between 0 and 59, got: {refresh['default_minute']}")

        restore = self.restore
        if int(restore['lookback_days']) < 1:
            logger.error(f"Invalid restore lookback_days: {restore['lookback_days']}")
            raise ConfigError(f"restore.lookback_days must be at least 1, got: {restore['lookback_days']}")

    def _validate_logging(self):
        level = str(self.logging_config['level']).upper()
        if level not in VALID_LOG_LEVELS:
            logger.error(f"Invalid log level: {level}")
            raise ConfigError(f"logging.level must be one of {', '.join(VALID_LOG_LEVELS)}")

    @property
    def location(self) -> Dict[str, Any]:
        """Get location configuration."""
        return self._config['location']

    @property
    def timezone(self) -> ZoneInfo:
        return ZoneInfo(self.location.get('timezone', 'UTC'))

    @property
    def devices(self) -> Dict[str, Any]:
        """Get devices configuration."""
        return self._config.get('devices', {})

    @property
    def gates(self) -> Dict[str, Any]:
        """Get gate configuration with defaults filled in."""
        gates = self._config.get('gates') or {}
        modes = gates.get('modes') or {}
        switch = gates.get('activation_switch') or {}
        return {
            'pause_all': bool(gates.get('pause_all', False)),
            'modes': {
                'enabled': bool(modes.get('enabled', False)),
                'allowed': list(modes.get('allowed', [])),
            },
            'activation_switch': {
                'enabled': bool(switch.get('enabled', False)),
                'expected_state': switch.get('expected_state', 'on'),
                'device': switch.get('device') or {},
            },
        }

    @property
    def dispatch(self) -> Dict[str, Any]:
        """Get dispatch configuration."""
        dispatch = self._config.get('dispatch') or {}
        return {'activate_on_before_level': bool(dispatch.get('activate_on_before_level', False))}

    @property
    def refresh(self) -> Dict[str, Any]:
        """Get daily refresh configuration."""
        refresh = self._config.get('refresh') or {}
        return {
            'hour': refresh.get('hour', 1),
            'default_minute': refresh.get('default_minute', 0),
        }

    @property
    def restore(self) -> Dict[str, Any]:
        """Get restore-on-startup configuration."""
        restore = self._config.get('restore') or {}
        return {
            'on_startup': bool(restore.get('on_startup', True)),
            'lookback_days': restore.get('lookback_days', 7),
        }

    @property
    def state_directory(self) -> Path:
        state = self._config.get('state') or {}
        return Path(state.get('directory', 'state'))

    def state_path(self, filename: str) -> str:
        """Path of a state file inside the state directory."""
        return str(self.state_directory / filename)

    @property
    def logging_config(self) -> Dict[str, Any]:
        """Get logging configuration."""
        defaults = {
            'level': 'INFO',
            'max_file_size_mb': 10,
            'backup_count': 5,
            'debug_auto_off_minutes': 60,
        }
        defaults.update(self._config.get('logging') or {})
        return defaults

    def device_seeds(self) -> Dict[str, Dict[str, Any]]:
        """Initial capability and schedules per configured device id."""
        seeds = {}
        for item in self.devices.get('items', []):
            seed = {key: item[key] for key in ('capability', 'schedules') if key in item}
            if seed:
                seeds[str(item['id'])] = seed
        return seeds

    @property
    def env_overridden_paths(self) -> Dict[str, str]:
        """
        Get mapping of config paths to environment variable names that override them.

        Returns:
            Dictionary mapping config paths (e.g., 'location.latitude') to env var
            names (e.g., 'SCHEDULE_MANAGER_LATITUDE')
        """
        return self._env_overridden_paths
