"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a YAML
configuration file (~/.resilink/config.yaml). Also builds the rate limit
policy and default retry config from those settings.
"""

import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from resilink.domain.models.resilience import RateLimitPolicy, RetryConfig

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".resilink"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
DEFAULT_STATE_DIR = DEFAULT_CONFIG_DIR / "state"
ENV_FILE_NAME = ".env"
ENV_PREFIX = "RESILINK_"

# --- Global Configuration Store (Simple Approach) ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def _flatten(data: Dict[str, Any], prefix: str = "") -> Dict[str, Any]:
    """Flattens nested YAML mappings into dotted keys.

    Nested mappings are also kept under their own key, so both
    'resilience.base_intervals' and 'resilience.base_intervals.foo' resolve.
    """
    flat: Dict[str, Any] = {}
    for key, value in data.items():
        full_key = f"{prefix}{key}"
        flat[full_key] = value
        if isinstance(value, dict):
            flat.update(_flatten(value, f"{full_key}."))
    return flat


def load_configuration(
    config_file: Path = DEFAULT_CONFIG_FILE,
    env_file: Optional[Path] = None,
    force: bool = False,
) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Environment Variables
    2. .env file
    3. YAML configuration file
    4. Default values passed to get_config

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
        force: Reload even if configuration was already loaded.
    """
    global _config, _loaded
    if _loaded and not force:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # 1. Load from YAML file (Lowest priority)
    if config_file.exists():
        try:
            with open(config_file, "r") as f:
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

    # 2. Load from .env file (Medium priority)
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        # override=False: real environment variables take precedence
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (path not found).")

    # 3. Environment Variables (Highest priority) are handled by get_config
    _loaded = True
    logger.info("Configuration loading process completed.")


def env_var_name(key: str) -> str:
    """Environment variable consulted for a dotted config key."""
    return f"{ENV_PREFIX}{key.upper().replace('.', '_')}"


def _coerce(value: str) -> Any:
    """Converts common literal types found in environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        if "." in value:
            return float(value)
        return int(value)
    except (ValueError, TypeError):
        return value


def get_config(key: str, default: Any = None) -> Any:
    """
    Get a configuration value by key.

    Priority:
    1. Test configuration (if set)
    2. Environment variable (RESILINK_<KEY>, dots as underscores)
    3. YAML config
    4. Default value

    Args:
        key: The configuration key, e.g. 'resilience.min_interval'
        default: Default value if the key is not found

    Returns:
        The configuration value
    """
    if key in _test_config:
        return _test_config[key]

    env_key = env_var_name(key)
    if env_key in os.environ:
        return _coerce(os.environ[env_key])

    if key in _config:
        return _config[key]

    logger.debug(f"Config key '{key}' not found in environment or loaded config. Returning default: {default}")
    return default


def find_dotenv_path() -> Optional[Path]:
    """Searches for the .env file upwards from the current directory."""
    cwd = Path.cwd()
    for path in [cwd] + list(cwd.parents):
        env_path = path / ENV_FILE_NAME
        if env_path.is_file():
            return env_path
    return None


def set_config_for_testing(config_dict: Dict[str, Any]) -> None:
    """
    Set configuration values for testing purposes.
    These values will override any existing configuration.

    Args:
        config_dict: Dictionary of configuration values to set
    """
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


# --- Convenience Functions ---

def _get_float(key: str, default: float, minimum: Optional[float] = None) -> float:
    value = get_config(key, default)
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid numeric value for '{key}': {value!r}. Using default {default}.")
        return default
    if minimum is not None and number < minimum:
        logger.warning(f"Value for '{key}' must be at least {minimum}, got {number}. Using default {default}.")
        return default
    return number


def _get_int(key: str, default: int, minimum: Optional[int] = None) -> int:
    value = get_config(key, default)
    try:
        number = int(value)
    except (TypeError, ValueError):
        logger.warning(f"Invalid integer value for '{key}': {value!r}. Using default {default}.")
        return default
    if minimum is not None and number < minimum:
        logger.warning(f"Value for '{key}' must be at least {minimum}, got {number}. Using default {default}.")
        return default
    return number


def _get_bool(key: str, default: bool) -> bool:
    value = get_config(key, default)
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)


def get_base_intervals() -> Dict[str, float]:
    """Per-operation base intervals from 'resilience.base_intervals'."""
    raw = get_config("resilience.base_intervals", {}) or {}
    if not isinstance(raw, dict):
        logger.warning(f"'resilience.base_intervals' must be a mapping, got {type(raw).__name__}. Ignoring.")
        return {}
    intervals: Dict[str, float] = {}
    for key, value in raw.items():
        try:
            intervals[str(key)] = float(value)
        except (TypeError, ValueError):
            logger.warning(f"Ignoring non-numeric base interval for '{key}': {value!r}")
    return intervals


def build_rate_limit_policy() -> RateLimitPolicy:
    """Builds the admission/cache policy from the loaded configuration."""
    defaults = RateLimitPolicy()
    return RateLimitPolicy(
        default_interval=_get_float("resilience.default_interval", defaults.default_interval),
        min_interval=_get_float("resilience.min_interval", defaults.min_interval),
        base_intervals=get_base_intervals(),
        max_backoff=_get_float("resilience.max_backoff", defaults.max_backoff),
        dynamic_interval_ceiling=_get_float(
            "resilience.dynamic_interval_ceiling", defaults.dynamic_interval_ceiling
        ),
        cache_max_age=_get_float("resilience.cache_max_age", defaults.cache_max_age),
        cache_sweep_interval=_get_float("resilience.cache_sweep_interval", defaults.cache_sweep_interval),
    )


def build_retry_config() -> RetryConfig:
    """Builds the default retry config from the loaded configuration."""
    defaults = RetryConfig()
    return RetryConfig(
        max_retries=_get_int("retry.max_retries", defaults.max_retries, minimum=1),
        base_delay=_get_float("retry.base_delay", defaults.base_delay, minimum=0.0),
        max_delay=_get_float("retry.max_delay", defaults.max_delay, minimum=0.0),
        exponential_backoff=_get_bool("retry.exponential_backoff", defaults.exponential_backoff),
    )


def get_state_dir() -> Path:
    """Directory holding the persisted resilience state."""
    return Path(get_config("state.dir", str(DEFAULT_STATE_DIR))).expanduser()
