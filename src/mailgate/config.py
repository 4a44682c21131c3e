"""Configuration loader with environment overrides.

Configuration is read from YAML, overlaid with environment variables, and
validated against the Pydantic schema.

Usage:
    from mailgate.config import get_config

    config = get_config()
    ttl = config.safety.execution_ttl_minutes
"""

import os
import threading
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from mailgate.config_schema import CURRENT_SCHEMA_VERSION, AppConfig
from mailgate.core.errors import ConfigLoadError, ConfigValidationError
from mailgate.core.logging import get_logger

logger = get_logger(__name__)

# Default config path - can be overridden via environment variable
DEFAULT_CONFIG_PATH = Path("config/config.yaml")

# Environment variable -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "MAILGATE_DB_PATH": ("database", "path"),
    "SAFETY_ENFORCE": ("safety", "enforce"),
    "EXECUTION_TTL_MINUTES": ("safety", "execution_ttl_minutes"),
    "EXPIRY_SWEEP_SECONDS": ("safety", "expiry_sweep_seconds"),
    "HASH_SALT": ("safety", "hash_salt"),
    "GMAIL_LIST_TTL_MIN": ("cache", "list_ttl_minutes"),
    "CACHE_SWEEP_SECONDS": ("cache", "sweep_seconds"),
    "CACHE_SWEEP_GRACE_SECONDS": ("cache", "sweep_grace_seconds"),
    "CACHE_SWEEP_JITTER_SECONDS": ("cache", "sweep_jitter_seconds"),
    "MAX_DELETE_PER_SWEEP": ("cache", "max_delete_per_sweep"),
    "NOTIFY_WEBHOOK_URL": ("notifications", "webhook_url"),
    "LOG_LEVEL": ("logging", "level"),
}

_TRUE_VALUES = {"1", "true", "on", "yes"}
_FALSE_VALUES = {"0", "false", "off", "no"}

# Global state for config singleton
_config_lock = threading.Lock()
_current_config: AppConfig | None = None


def _get_config_path() -> tuple[Path, bool]:
    """Get the config file path and whether it was set explicitly."""
    env_path = os.environ.get("MAILGATE_CONFIG_PATH")
    if env_path:
        return Path(env_path), True
    return DEFAULT_CONFIG_PATH, False


def _format_validation_errors(error: ValidationError) -> str:
    """Format Pydantic validation errors into actionable messages."""
    messages = []
    for err in error.errors():
        field_path = ".".join(str(loc) for loc in err["loc"])
        msg = err["msg"]
        err_type = err["type"]

        if err_type == "missing":
            messages.append(f"  - Missing required field '{field_path}'")
        elif err_type in ("int_type", "int_parsing"):
            messages.append(f"  - Field '{field_path}' must be an integer")
        elif err_type in ("bool_type", "bool_parsing"):
            messages.append(f"  - Field '{field_path}' must be true or false")
        else:
            messages.append(f"  - Field '{field_path}': {msg}")

    return "\n".join(messages)


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load and parse YAML file.

    Raises:
        ConfigLoadError: If the YAML cannot be parsed or is not a mapping
    """
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
            if data is None:
                return {}
            if not isinstance(data, dict):
                raise ConfigLoadError(
                    f"Configuration file must be a YAML mapping, got {type(data).__name__}"
                )
            return data
    except yaml.YAMLError as e:
        raise ConfigLoadError(f"Failed to parse YAML in {path}:\n{e}") from e


# Flags whose string values must be mapped to bools before validation
_BOOL_ENV_VARS = {"SAFETY_ENFORCE"}


def _coerce_env_value(var: str, raw: str) -> Any:
    """Convert an environment string for its target field.

    Boolean flags accept 1/true/on/yes and 0/false/off/no; numeric fields are
    left as strings for Pydantic to parse and report.
    """
    value = raw.strip()
    if var in _BOOL_ENV_VARS:
        lowered = value.lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    if var == "LOG_LEVEL":
        return value.upper()
    return value


def apply_env_overrides(data: dict[str, Any], environ: dict[str, str] | None = None) -> dict[str, Any]:
    """Overlay environment variables onto parsed YAML data.

    Empty variables are ignored. Returns a new dict; ``data`` is not mutated.
    """
    env = os.environ if environ is None else environ
    merged = {key: dict(value) if isinstance(value, dict) else value for key, value in data.items()}

    for var, (section, field) in ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw is None or not raw.strip():
            continue
        value = _coerce_env_value(var, raw)
        section_data = merged.setdefault(section, {})
        if not isinstance(section_data, dict):
            raise ConfigLoadError(f"Config section '{section}' must be a mapping")
        section_data[field] = value

    return merged


def _validate_config(data: dict[str, Any], source: str) -> AppConfig:
    """Validate config data against Pydantic schema.

    Raises:
        ConfigValidationError: If validation fails
    """
    try:
        config = AppConfig(**data)
    except ValidationError as e:
        error_details = _format_validation_errors(e)
        raise ConfigValidationError(
            f"Configuration validation failed for {source}:\n{error_details}"
        ) from e

    if config.schema_version > CURRENT_SCHEMA_VERSION:
        raise ConfigValidationError(
            f"Config schema version {config.schema_version} is newer than "
            f"supported version {CURRENT_SCHEMA_VERSION}. "
            "Please upgrade mailgate or downgrade the config."
        )
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load and validate configuration.

    A missing default config file is not an error: defaults plus environment
    overrides are used. A missing file that was requested explicitly (argument
    or MAILGATE_CONFIG_PATH) is.

    Raises:
        ConfigLoadError: If file cannot be loaded
        ConfigValidationError: If validation fails
    """
    if path is not None:
        config_path, explicit = path, True
    else:
        config_path, explicit = _get_config_path()

    if config_path.exists():
        logger.debug("Loading configuration", path=str(config_path))
        data = _load_yaml(config_path)
    elif explicit:
        raise ConfigLoadError(
            f"Configuration file not found: {config_path}\n"
            f"Create it by copying config/config.yaml.example to {config_path}"
        )
    else:
        data = {}

    config = _validate_config(apply_env_overrides(data), str(config_path))

    logger.info(
        "Configuration loaded successfully",
        path=str(config_path) if config_path.exists() else None,
        safety_enforce=config.safety.enforce,
        execution_ttl_minutes=config.safety.execution_ttl_minutes,
        list_ttl_minutes=config.cache.list_ttl_minutes,
    )
    if not config.safety.enforce:
        logger.warning("Confirmation gate DISABLED by configuration")

    return config


def get_config() -> AppConfig:
    """Get the current configuration singleton.

    On first call, loads configuration. Subsequent calls return the cached
    config. Thread-safe: the APScheduler thread and the uvicorn loop may both
    call this.
    """
    global _current_config

    with _config_lock:
        if _current_config is None:
            _current_config = load_config()
        return _current_config


def validate_config_file(path: Path | None = None) -> tuple[bool, str]:
    """Validate a config file without loading it into the singleton.

    Returns:
        Tuple of (is_valid, message)
    """
    try:
        config = load_config(path)
        return (
            True,
            f"Configuration valid (schema version {config.schema_version})\n"
            f"  - gate enforced: {config.safety.enforce}\n"
            f"  - {len(config.safety.dangerous_actions)} dangerous actions\n"
            f"  - execution TTL: {config.safety.execution_ttl_minutes} min\n"
            f"  - list cache TTL: {config.cache.list_ttl_minutes} min",
        )
    except ConfigLoadError as e:
        return (False, f"Load error: {e}")
    except ConfigValidationError as e:
        return (False, f"Validation error: {e}")


def reset_config() -> None:
    """Reset the config singleton. Primarily for testing."""
    global _current_config
    with _config_lock:
        _current_config = None
