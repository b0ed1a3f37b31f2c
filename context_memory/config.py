"""
Configuration Module - Load and manage context memory configuration.

This module provides support for loading configuration from:
- YAML configuration files (.context-memory.yml)
- Environment variables
- Programmatic configuration

Configuration precedence (highest to lowest):
1. Programmatic configuration (passed as overrides)
2. Environment variables
3. Configuration file
4. Default values
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import yaml


logger = logging.getLogger(__name__)


# Default configuration file names (in order of precedence)
CONFIG_FILE_NAMES = [
    ".context-memory.yml",
    ".context-memory.yaml",
    "context-memory.yml",
    "context-memory.yaml",
]


@dataclass
class StoreConfig:
    """Configuration for the context store."""

    db_path: Optional[str] = None  # None means ~/.context_memory/context.db
    max_items: int = 100
    max_value_length: int = 500


@dataclass
class RetentionConfig:
    """Configuration for maintenance passes."""

    weak_pattern_min_data_points: int = 3
    weak_pattern_max_age_days: int = 30


@dataclass
class RankerConfig:
    """Defaults for relevance ranking."""

    max_items: int = 12
    min_confidence: float = 0.3


@dataclass
class ContextMemoryConfig:
    """
    Complete configuration for the context memory.

    Example YAML configuration:
        ```yaml
        store:
          db_path: "~/.context_memory/context.db"
          max_items: 100

        retention:
          weak_pattern_min_data_points: 3
          weak_pattern_max_age_days: 30

        ranker:
          max_items: 12
          min_confidence: 0.3

        logging:
          level: "INFO"
          json: false
        ```
    """

    store: StoreConfig = field(default_factory=StoreConfig)
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    ranker: RankerConfig = field(default_factory=RankerConfig)
    log_level: str = "WARNING"
    json_logs: bool = False

    @classmethod
    def from_dict(cls, data: dict) -> "ContextMemoryConfig":
        """Create configuration from dictionary."""
        store_data = data.get("store", {}) or {}
        retention_data = data.get("retention", {}) or {}
        ranker_data = data.get("ranker", {}) or {}
        logging_data = data.get("logging", {}) or {}

        db_path = store_data.get("db_path")
        if db_path:
            db_path = str(Path(db_path).expanduser())

        return cls(
            store=StoreConfig(
                db_path=db_path,
                max_items=int(store_data.get("max_items", 100)),
                max_value_length=int(store_data.get("max_value_length", 500)),
            ),
            retention=RetentionConfig(
                weak_pattern_min_data_points=int(retention_data.get("weak_pattern_min_data_points", 3)),
                weak_pattern_max_age_days=int(retention_data.get("weak_pattern_max_age_days", 30)),
            ),
            ranker=RankerConfig(
                max_items=int(ranker_data.get("max_items", 12)),
                min_confidence=float(ranker_data.get("min_confidence", 0.3)),
            ),
            log_level=str(logging_data.get("level", "WARNING")).upper(),
            json_logs=bool(logging_data.get("json", False)),
        )

    def to_dict(self) -> dict:
        """Convert configuration to dictionary."""
        return {
            "store": {
                "db_path": self.store.db_path,
                "max_items": self.store.max_items,
                "max_value_length": self.store.max_value_length,
            },
            "retention": {
                "weak_pattern_min_data_points": self.retention.weak_pattern_min_data_points,
                "weak_pattern_max_age_days": self.retention.weak_pattern_max_age_days,
            },
            "ranker": {
                "max_items": self.ranker.max_items,
                "min_confidence": self.ranker.min_confidence,
            },
            "logging": {
                "level": self.log_level,
                "json": self.json_logs,
            },
        }


def find_config_file(start_path: Optional[str] = None) -> Optional[Path]:
    """
    Find the configuration file starting from the given path.

    Searches the start path, the current directory and its parents, then
    the user's home directory.

    Args:
        start_path: Directory to start searching from.

    Returns:
        Path to configuration file if found, None otherwise.
    """
    search_dirs = []

    if start_path:
        search_dirs.append(Path(start_path))

    current = Path.cwd()
    search_dirs.append(current)
    while current.parent != current:
        current = current.parent
        search_dirs.append(current)

    search_dirs.append(Path.home())

    for directory in search_dirs:
        for config_name in CONFIG_FILE_NAMES:
            config_path = directory / config_name
            if config_path.is_file():
                logger.debug(f"Found config file: {config_path}")
                return config_path

    return None


def load_yaml_file(file_path: Path) -> dict:
    """
    Load a YAML configuration file.

    Unreadable or malformed files are logged and treated as empty.
    """
    try:
        with open(file_path, "r") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Error loading config file {file_path}: {e}")
        return {}

    if not isinstance(data, dict):
        logger.warning(f"Ignoring config file {file_path}: top level is not a mapping")
        return {}
    return data


def load_config_from_env() -> dict:
    """
    Load configuration from environment variables.

    Supported environment variables:
    - CONTEXT_MEMORY_DB_PATH: Database file
    - CONTEXT_MEMORY_MAX_ITEMS: Store capacity
    - CONTEXT_MEMORY_MAX_ITEMS_IN_PROMPT: Ranker default item count
    - CONTEXT_MEMORY_MIN_CONFIDENCE: Ranker default confidence floor
    - CONTEXT_MEMORY_LOG_LEVEL: Log level name

    Returns:
        Dictionary with configuration from environment.
    """
    config: dict = {"store": {}, "ranker": {}, "logging": {}}

    if os.environ.get("CONTEXT_MEMORY_DB_PATH"):
        config["store"]["db_path"] = os.environ["CONTEXT_MEMORY_DB_PATH"]

    if os.environ.get("CONTEXT_MEMORY_MAX_ITEMS"):
        try:
            config["store"]["max_items"] = int(os.environ["CONTEXT_MEMORY_MAX_ITEMS"])
        except ValueError:
            logger.warning("CONTEXT_MEMORY_MAX_ITEMS is not an integer, ignoring")

    if os.environ.get("CONTEXT_MEMORY_MAX_ITEMS_IN_PROMPT"):
        try:
            config["ranker"]["max_items"] = int(os.environ["CONTEXT_MEMORY_MAX_ITEMS_IN_PROMPT"])
        except ValueError:
            logger.warning("CONTEXT_MEMORY_MAX_ITEMS_IN_PROMPT is not an integer, ignoring")

    if os.environ.get("CONTEXT_MEMORY_MIN_CONFIDENCE"):
        try:
            config["ranker"]["min_confidence"] = float(os.environ["CONTEXT_MEMORY_MIN_CONFIDENCE"])
        except ValueError:
            logger.warning("CONTEXT_MEMORY_MIN_CONFIDENCE is not a number, ignoring")

    if os.environ.get("CONTEXT_MEMORY_LOG_LEVEL"):
        config["logging"]["level"] = os.environ["CONTEXT_MEMORY_LOG_LEVEL"]

    return config


def load_config(
    config_path: Optional[str] = None,
    start_path: Optional[str] = None,
    **overrides: Any,
) -> ContextMemoryConfig:
    """
    Load configuration from all sources.

    Args:
        config_path: Optional explicit path to config file.
        start_path: Optional directory to start the config file search from.
        **overrides: Section dictionaries (store=..., ranker=...) or
            db_path / max_items shortcuts.

    Returns:
        Merged ContextMemoryConfig.
    """
    merged_config: dict = {}

    if config_path:
        file_path = Path(config_path)
        if file_path.exists():
            merged_config = _deep_merge(merged_config, load_yaml_file(file_path))
        else:
            logger.warning(f"Config file not found: {config_path}")
    else:
        config_file = find_config_file(start_path)
        if config_file:
            merged_config = _deep_merge(merged_config, load_yaml_file(config_file))

    merged_config = _deep_merge(merged_config, load_config_from_env())

    if overrides:
        override_config: dict = {"store": {}}
        for key, value in overrides.items():
            if key in ["db_path", "max_items", "max_value_length"]:
                override_config["store"][key] = value
            else:
                override_config[key] = value
        merged_config = _deep_merge(merged_config, override_config)

    return ContextMemoryConfig.from_dict(merged_config)


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries.

    Args:
        base: Base dictionary.
        override: Dictionary with override values.

    Returns:
        Merged dictionary.
    """
    result = base.copy()

    for key, value in override.items():
        if (
            key in result
            and isinstance(result[key], dict)
            and isinstance(value, dict)
        ):
            result[key] = _deep_merge(result[key], value)
        elif value is not None:
            result[key] = value

    return result
