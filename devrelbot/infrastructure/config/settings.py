"""Provides functions for loading and accessing configuration settings.

Supports loading from .env files, environment variables, and a dedicated
YAML configuration file (~/.devrelbot/config.yaml, or DEVRELBOT_CONFIG).
build_resilience_settings() turns the loaded values into the static
ResilienceSettings object handed to the composition root.
"""

import logging
import os
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml
from dotenv import load_dotenv

from devrelbot.domain.errors import ConfigurationError
from devrelbot.domain.models.resilience import RateLimitRule
from devrelbot.domain.models.settings import (
    DEFAULT_ACTION_LIMITS,
    DEFAULT_ALERT_THRESHOLDS,
    DEFAULT_SERVICE_LIMITS,
    BudgetSettings,
    CircuitBreakerSettings,
    ResilienceSettings,
    RetrySettings,
    ThrottleSettings,
)

logger = logging.getLogger(__name__)

# --- Configuration Constants ---
DEFAULT_CONFIG_DIR = Path.home() / ".devrelbot"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
CONFIG_PATH_ENV = "DEVRELBOT_CONFIG"
ENV_PREFIX = "DEVRELBOT_"
ENV_FILE_NAME = ".env"

# --- Global Configuration Store ---
_config: Dict[str, Any] = {}
_test_config: Dict[str, Any] = {}
_loaded = False


def load_configuration(config_file: Optional[Path] = None, env_file: Optional[Path] = None) -> None:
    """Loads configuration from environment, .env file, and YAML file.

    Priority order (highest to lowest):
    1. Test overrides (set_config_for_testing)
    2. Environment Variables (DEVRELBOT_<DOTTED_KEY_IN_UPPER_SNAKE_CASE>)
    3. .env file
    4. YAML configuration file
    5. Defaults passed to get_config()

    Args:
        config_file: Path to the YAML configuration file.
        env_file: Path to the .env file (searches upwards from cwd if None).
    """
    global _config, _loaded
    if _loaded:
        logger.debug("Configuration already loaded.")
        return

    _config = {}

    # .env first so that DEVRELBOT_CONFIG may come from it
    dotenv_path = env_file or find_dotenv_path()
    if dotenv_path:
        if load_dotenv(dotenv_path=dotenv_path, override=False):
            logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.debug("Skipping .env file loading (no .env found).")

    yaml_path = config_file or Path(os.environ.get(CONFIG_PATH_ENV, DEFAULT_CONFIG_FILE))
    if yaml_path.is_file():
        try:
            with open(yaml_path, 'r', encoding='utf-8') as f:
                yaml_config = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"Failed to load or parse YAML config {yaml_path}: {e}") from e
        if isinstance(yaml_config, dict):
            _config.update(yaml_config)
            logger.info(f"Loaded configuration from YAML: {yaml_path}")
        elif yaml_config is not None:
            raise ConfigurationError(f"YAML config file {yaml_path} did not contain a mapping.")
    else:
        logger.debug(f"YAML config file not found: {yaml_path}")

    _loaded = True
    logger.info("Configuration loading process completed.")


def reset_configuration() -> None:
    """Forgets loaded values so the next load_configuration() reads again."""
    global _config, _loaded
    _config = {}
    _loaded = False


def _coerce_env(value: str) -> Any:
    if value.lower() == 'true':
        return True
    if value.lower() == 'false':
        return False
    try:
        return float(value) if '.' in value else int(value)
    except ValueError:
        return value


def _lookup_dotted(source: Mapping[str, Any], key: str) -> Any:
    if key in source:
        return source[key]
    node: Any = source
    for part in key.split('.'):
        if not isinstance(node, Mapping) or part not in node:
            raise KeyError(key)
        node = node[part]
    return node


def get_config(key: str, default: Any = None) -> Any:
    """Get a configuration value by dotted key (e.g. 'budget.daily_limit').

    Args:
        key: The configuration key.
        default: Default value if the key is not found.

    Returns:
        The configuration value.
    """
    try:
        return _lookup_dotted(_test_config, key)
    except KeyError:
        pass

    env_key = ENV_PREFIX + key.upper().replace('.', '_').replace('-', '_')
    if env_key in os.environ:
        return _coerce_env(os.environ[env_key])

    try:
        return _lookup_dotted(_config, key)
    except KeyError:
        logger.debug(f"Config key '{key}' not found. Returning default: {default}")
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
    """Set configuration values that override every other source."""
    _test_config.update(config_dict)
    logger.debug(f"Set testing configuration: {config_dict}")


def clear_test_config() -> None:
    """Clear all testing configuration values."""
    _test_config.clear()
    logger.debug("Cleared testing configuration")


# --- Typed accessors ---

def get_openai_api_key() -> Optional[str]:
    """Checks ENV OPENAI_API_KEY first, then yaml ai.api_key."""
    key = os.environ.get('OPENAI_API_KEY') or get_config('ai.api_key')
    return str(key) if key else None


def _int(key: str, default: Optional[int]) -> Optional[int]:
    value = get_config(key, default)
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ConfigurationError(f"Config key '{key}' must be an integer, got {value!r}") from e


def _decimal(key: str, default: Decimal) -> Decimal:
    value = get_config(key, default)
    try:
        return Decimal(str(value))
    except InvalidOperation as e:
        raise ConfigurationError(f"Config key '{key}' must be a number, got {value!r}") from e


def _rules(section: str, defaults: Mapping[str, RateLimitRule]) -> Dict[str, RateLimitRule]:
    """Merges `{name: {max_requests, window_ms}}` from config over the defaults."""
    rules = dict(defaults)
    configured = get_config(section) or {}
    if not isinstance(configured, Mapping):
        raise ConfigurationError(f"Config section '{section}' must be a mapping")
    for name, entry in configured.items():
        if not isinstance(entry, Mapping) or 'max_requests' not in entry:
            raise ConfigurationError(f"'{section}.{name}' needs at least max_requests")
        try:
            rules[str(name)] = RateLimitRule(
                max_requests=int(entry['max_requests']),
                window_ms=int(entry.get('window_ms', 60_000)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigurationError(f"Invalid rule '{section}.{name}': {e}") from e
    return rules


def build_resilience_settings() -> ResilienceSettings:
    """Assembles ResilienceSettings from the loaded configuration.

    Raises:
        ConfigurationError: If circuit_breaker.cooldown_ms is missing or any
            value has the wrong type.
    """
    load_configuration()

    cooldown_ms = _int('circuit_breaker.cooldown_ms', None)
    if cooldown_ms is None or cooldown_ms <= 0:
        raise ConfigurationError(
            "circuit_breaker.cooldown_ms must be configured "
            f"(YAML key or {ENV_PREFIX}CIRCUIT_BREAKER_COOLDOWN_MS)"
        )
    pause_on_open = get_config('circuit_breaker.pause_on_open', []) or []
    if isinstance(pause_on_open, str):
        pause_on_open = [name.strip() for name in pause_on_open.split(',') if name.strip()]

    default_service = RateLimitRule(
        max_requests=_int('throttle.default_limit', 60),
        window_ms=_int('throttle.default_window_ms', 60_000),
    )
    thresholds = get_config('budget.alert_thresholds', list(DEFAULT_ALERT_THRESHOLDS))
    if isinstance(thresholds, str):
        thresholds = [int(t) for t in thresholds.split(',') if t.strip()]

    settings = ResilienceSettings(
        circuit_breaker=CircuitBreakerSettings(
            cooldown_ms=cooldown_ms,
            failure_threshold=_int('circuit_breaker.failure_threshold', 5),
            pause_on_open=list(pause_on_open),
        ),
        rate_limits=_rules('rate_limits', DEFAULT_ACTION_LIMITS),
        throttle=ThrottleSettings(
            service_limits=_rules('throttle.services', DEFAULT_SERVICE_LIMITS),
            default_limit=default_service,
            max_queue_depth=_int('throttle.max_queue_depth', 50),
        ),
        retry=RetrySettings(
            max_attempts=_int('retry.max_attempts', 3),
            base_delay_ms=_int('retry.base_delay_ms', 1000),
            max_delay_ms=_int('retry.max_delay_ms', 10_000),
            attempt_timeout_ms=_int('retry.attempt_timeout_ms', 30_000),
            deadline_ms=_int('retry.deadline_ms', None),
        ),
        budget=BudgetSettings(
            daily_limit=_decimal('budget.daily_limit', Decimal("100")),
            monthly_limit=_decimal('budget.monthly_limit', Decimal("3000")),
            alert_thresholds=tuple(int(t) for t in thresholds),
        ),
        ai_model=str(get_config('ai.model', 'gpt-4o-mini')),
    )
    logger.debug(f"Resilience settings: {settings}")
    return settings
