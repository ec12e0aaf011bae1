"""Provides functions for loading and accessing configuration settings.

Supports loading from a YAML configuration file (~/.callguard/config.yaml),
a .env file and environment variables, and builds the typed parameter sets
used to construct the rate gate, the result cache and the call monitor.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from callguard.infrastructure.cache.result_cache import DEFAULT_MAX_ENTRIES, DEFAULT_TTL_SECONDS
from callguard.infrastructure.monitoring.call_monitor import (
    DEFAULT_CALL_LOG_CAPACITY, DEFAULT_WARNING_LOG_CAPACITY,
)
from callguard.infrastructure.resilience.rate_gate import (
    DEFAULT_MAX_CONSECUTIVE_FAILURES, DEFAULT_MAX_DELAY_MS, DEFAULT_MIN_DELAY_MS,
    DEFAULT_QUERIES_PER_100_SECONDS, DEFAULT_QUERIES_PER_SECOND,
)

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".callguard"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "CALLGUARD_"

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


@dataclass(frozen=True)
class RateGateConfig:
    """Constructor parameters for RateGate."""
    min_delay_ms: float = DEFAULT_MIN_DELAY_MS
    max_delay_ms: float = DEFAULT_MAX_DELAY_MS
    queries_per_second: int = DEFAULT_QUERIES_PER_SECOND
    queries_per_100_seconds: int = DEFAULT_QUERIES_PER_100_SECONDS
    max_consecutive_failures: int = DEFAULT_MAX_CONSECUTIVE_FAILURES
    match_quota_messages: bool = False


@dataclass(frozen=True)
class CacheConfig:
    """Constructor parameters for ResultCache."""
    default_ttl: float = DEFAULT_TTL_SECONDS
    max_entries: int = DEFAULT_MAX_ENTRIES


@dataclass(frozen=True)
class MonitorConfig:
    """Constructor parameters for CallMonitor."""
    call_log_capacity: int = DEFAULT_CALL_LOG_CAPACITY
    warning_log_capacity: int = DEFAULT_WARNING_LOG_CAPACITY
    match_quota_messages: bool = False


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flattens nested YAML mappings into dotted keys ('rate_gate.min_delay_ms')."""
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{dotted}."))
        else:
            flat[dotted] = value
    return flat


def load_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Loads configuration from a YAML file and a .env file.

    Priority order (highest to lowest):
    1. Test overrides (set_config_for_testing)
    2. Environment Variables (CALLGUARD_<KEY>)
    3. .env file (exported into the environment without overriding it)
    4. YAML configuration file
    5. Default values passed to get_config

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    if config_file.exists():
        try:
            with open(config_file, 'r') as f:
                yaml_config = yaml.safe_load(f)
            if isinstance(yaml_config, dict):
                _config.update(_flatten(yaml_config))
                logger.info(f"Loaded configuration from YAML: {config_file}")
            elif yaml_config is not None:
                logger.warning(f"YAML config file {config_file} did not contain a dictionary.")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Failed to load or parse YAML config {config_file}: {e}")
    else:
        logger.debug(f"YAML config file not found: {config_file}")

    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("No .env file found at or above the current directory.")

    _loaded = True


def reload_configuration(config_file: Path = DEFAULT_CONFIG_FILE, env_file: Optional[Path] = None) -> None:
    """Forgets the loaded configuration and loads it again."""
    global _loaded
    _loaded = False
    load_configuration(config_file, env_file)


def env_var_name(key: str) -> str:
    """Maps a dotted key to its environment variable ('cache.max_entries' -> 'CALLGUARD_CACHE_MAX_ENTRIES')."""
    return ENV_PREFIX + key.upper().replace('.', '_')


def _coerce(value: str) -> Any:
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    try:
        if '.' in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def get_config(key: str, default: Any = None) -> Any:
    """Gets a configuration value by dotted key.

    Args:
        key: The configuration key (e.g., 'rate_gate.min_delay_ms').
        default: Default value if the key is not found.

    Returns:
        The configuration value.
    """
    if key in _test_config:
        return _test_config[key]

    env_key = env_var_name(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    if key in _config:
        return _config[key]

    return default


def set_config(key: str, value: Any) -> None:
    """Sets a configuration value for the running process."""
    logger.debug(f"Setting config: {key} = {value}")
    _config[key] = value


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


# --- Typed Builders ---

def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('1', 'true', 'yes', 'on')
    return bool(value)


def get_rate_gate_config() -> RateGateConfig:
    """Builds RateGate parameters from the 'rate_gate.*' keys."""
    defaults = RateGateConfig()
    return RateGateConfig(
        min_delay_ms=float(get_config('rate_gate.min_delay_ms', defaults.min_delay_ms)),
        max_delay_ms=float(get_config('rate_gate.max_delay_ms', defaults.max_delay_ms)),
        queries_per_second=int(get_config('rate_gate.queries_per_second', defaults.queries_per_second)),
        queries_per_100_seconds=int(get_config('rate_gate.queries_per_100_seconds', defaults.queries_per_100_seconds)),
        max_consecutive_failures=int(get_config('rate_gate.max_consecutive_failures', defaults.max_consecutive_failures)),
        match_quota_messages=_as_bool(get_config('errors.match_quota_messages', False)),
    )


def get_cache_config() -> CacheConfig:
    """Builds ResultCache parameters from the 'cache.*' keys."""
    defaults = CacheConfig()
    return CacheConfig(
        default_ttl=float(get_config('cache.default_ttl', defaults.default_ttl)),
        max_entries=int(get_config('cache.max_entries', defaults.max_entries)),
    )


def get_monitor_config() -> MonitorConfig:
    """Builds CallMonitor parameters from the 'monitor.*' keys."""
    defaults = MonitorConfig()
    return MonitorConfig(
        call_log_capacity=int(get_config('monitor.call_log_capacity', defaults.call_log_capacity)),
        warning_log_capacity=int(get_config('monitor.warning_log_capacity', defaults.warning_log_capacity)),
        match_quota_messages=_as_bool(get_config('errors.match_quota_messages', False)),
    )


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """Sets configuration values that override every other source (tests only)."""
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")
