"""Configuration file loader for Notes Automation.

Loads configuration from:
1. ~/.notesauto.toml (user-level, home directory)
2. .notesauto.toml (project-level, current directory)
3. NOTESAUTO_* environment variables
4. Defaults (if nothing above is set)

Configuration is resolved once per process by the caller and passed to the
executor and monitor constructors. CLI arguments override config values.
"""

try:
    import tomllib
except ModuleNotFoundError:
    import tomli as tomllib

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Any, List, Mapping, Optional, Tuple


_CONFIG_FILENAME = ".notesauto.toml"

DEFAULT_DATABASE_PATH = str(
    Path.home()
    / "Library"
    / "Group Containers"
    / "group.com.apple.notes"
    / "NoteStore.sqlite"
)

ENV_VERBOSE = "NOTESAUTO_VERBOSE"
ENV_LOG_LEVEL = "NOTESAUTO_LOG_LEVEL"

_TRUTHY_VALUES = {"1", "true", "yes", "on"}

_CLI_FIELD_MAPPING = {
    "log_level": "log_level",
    "verbose": "verbose",
}

_EXECUTOR_FIELD_MAPPING = {
    "interpreter": "interpreter",
    "timeout_ms": "timeout_ms",
    "max_attempts": "max_attempts",
    "retry_base_delay_ms": "retry_base_delay_ms",
}

_SYNC_FIELD_MAPPING = {
    "database_path": "database_path",
    "cache_ttl_ms": "sync_cache_ttl_ms",
    "recent_activity_threshold_seconds": "recent_activity_threshold_seconds",
    "verification_delay_ms": "verification_delay_ms",
}

_SECTION_MAPPINGS: List[Tuple[str, Dict[str, str]]] = [
    ("cli", _CLI_FIELD_MAPPING),
    ("executor", _EXECUTOR_FIELD_MAPPING),
    ("sync", _SYNC_FIELD_MAPPING),
]


@dataclass
class AutomationConfig:
    """Settings for the executor, the sync monitor and the CLI."""

    # CLI settings
    log_level: str = "INFO"
    verbose: bool = False

    # Executor settings
    interpreter: str = "osascript"
    timeout_ms: int = 30000
    max_attempts: int = 1
    retry_base_delay_ms: int = 1000

    # Sync monitor settings
    database_path: str = DEFAULT_DATABASE_PATH
    sync_cache_ttl_ms: int = 2000
    recent_activity_threshold_seconds: float = 5.0
    verification_delay_ms: int = 500


def load_config(environ: Optional[Mapping[str, str]] = None) -> AutomationConfig:
    """Load configuration from TOML files and the environment.

    Searches for configuration files in priority order (later overrides earlier):
    1. ~/.notesauto.toml (user-level defaults)
    2. .notesauto.toml (project-level overrides)

    Environment variables are applied last.

    Args:
        environ: Environment mapping to read overrides from (default: os.environ)

    Returns:
        AutomationConfig with merged settings. Missing or invalid files are
        ignored, falling back to defaults.
    """
    config = AutomationConfig()

    for config_path in _get_config_paths():
        if config_path.exists():
            config = _merge_config(config, config_path)

    _apply_environment(config, os.environ if environ is None else environ)
    return config


def _merge_config(base_config: AutomationConfig, config_path: Path) -> AutomationConfig:
    """Merge TOML config file into base configuration.

    Args:
        base_config: Configuration to update with file values
        config_path: Path to TOML configuration file

    Returns:
        Updated AutomationConfig, or unchanged base_config if the file
        cannot be loaded.
    """
    toml_data = _load_toml_file(config_path)
    if toml_data is None:
        return base_config

    for section_name, field_mapping in _SECTION_MAPPINGS:
        section_data = toml_data.get(section_name, {})
        _apply_field_mappings(base_config, section_data, field_mapping)
    return base_config


def _apply_environment(config: AutomationConfig, environ: Mapping[str, str]) -> None:
    """Apply NOTESAUTO_* environment overrides.

    Args:
        config: Configuration object to update
        environ: Environment mapping
    """
    verbose = environ.get(ENV_VERBOSE)
    if verbose is not None:
        config.verbose = verbose.strip().lower() in _TRUTHY_VALUES

    log_level = environ.get(ENV_LOG_LEVEL)
    if log_level:
        config.log_level = log_level.strip().upper()


def _get_config_paths() -> List[Path]:
    """Get configuration file paths in load order (user, then project)."""
    user_config = Path.home() / _CONFIG_FILENAME
    project_config = Path.cwd() / _CONFIG_FILENAME

    return [user_config, project_config]


def _load_toml_file(config_path: Path) -> Optional[Dict[str, Any]]:
    """Load and parse TOML configuration file.

    Args:
        config_path: Path to TOML configuration file

    Returns:
        Parsed TOML data, or None if the file is unreadable or invalid
    """
    try:
        with open(config_path, "rb") as toml_file:
            return tomllib.load(toml_file)
    except OSError:
        return None
    except (ValueError, tomllib.TOMLDecodeError):
        return None


def _apply_field_mappings(
    config: AutomationConfig,
    section_data: Dict[str, Any],
    field_mapping: Dict[str, str],
) -> None:
    """Apply field mappings from section data to config object.

    Args:
        config: Configuration object to update
        section_data: Data from a single TOML section
        field_mapping: Maps section keys to config attribute names

    Example:
        section_data = {"timeout_ms": 60000}
        field_mapping = {"timeout_ms": "timeout_ms"}
        Result: config.timeout_ms = 60000
    """
    if not isinstance(section_data, dict):
        return

    for toml_key, config_attribute_name in field_mapping.items():
        if toml_key in section_data:
            setattr(config, config_attribute_name, section_data[toml_key])


def get_config_example() -> str:
    """Get example config file content.

    Returns:
        Example .notesauto.toml content as string
    """
    return """# Notes Automation Configuration File
# Place this file as .notesauto.toml in your project root or ~/.notesauto.toml for user defaults

[cli]
# Logging level: DEBUG, INFO, WARNING, ERROR, CRITICAL
log_level = "INFO"

# Log every osascript attempt, not only failures
verbose = false

[executor]
interpreter = "osascript"
timeout_ms = 30000          # wall-clock budget per attempt
max_attempts = 1            # 1 = no retry
retry_base_delay_ms = 1000  # doubles after each failed attempt

[sync]
# database_path = "~/Library/Group Containers/group.com.apple.notes/NoteStore.sqlite"
cache_ttl_ms = 2000
recent_activity_threshold_seconds = 5
verification_delay_ms = 500
"""
