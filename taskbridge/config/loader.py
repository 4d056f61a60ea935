"""Configuration loader with validation."""

from pathlib import Path

import yaml
from pydantic import ValidationError

from .models import TaskbridgeConfig


class ConfigError(Exception):
    """Configuration error."""

    pass


def load_config(config_path: Path) -> TaskbridgeConfig:
    """Load and validate configuration from YAML file.

    A missing file yields the defaults; an existing but broken file is an error.

    Args:
        config_path: Path to config YAML file

    Returns:
        Validated TaskbridgeConfig instance

    Raises:
        ConfigError: If config file is invalid
    """
    if not config_path.exists():
        return TaskbridgeConfig()

    try:
        with open(config_path, "r") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}")

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise ConfigError(f"Configuration root must be a mapping: {config_path}")

    # Relative paths are anchored at the config file's directory
    for section, key in (("store", "graph_path"), ("logging", "log_dir")):
        value = (data.get(section) or {}).get(key)
        if value and not Path(value).is_absolute():
            data[section][key] = (config_path.parent / value).resolve()

    try:
        return TaskbridgeConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Configuration validation failed: {e}")


def create_default_config(config_path: Path) -> None:
    """Create default configuration file.

    Args:
        config_path: Path where config should be created
    """
    config_path.parent.mkdir(parents=True, exist_ok=True)

    default_config = {
        "gaps": {
            "time_gap_days": 7,
            "min_indicators": 2,
            "max_gaps": 3,
        },
        "insertion": {
            "min_text_length": 10,
            "max_text_length": 500,
            "min_hours": 8,
            "max_hours": 160,
            "max_batch_size": 9,
            "duplicate_threshold": 0.9,
            "duplicate_search_limit": 3,
            "embedding_timeout_sec": 10,
            "search_timeout_sec": 10,
            "store_timeout_sec": 30,
            "stage_conflict_deletions": False,
        },
        "store": {
            "graph_path": "graph.json",
            "recovery_page_size": 100,
        },
        "logging": {
            "level": "INFO",
            "log_dir": "logs",
        },
    }

    with open(config_path, "w") as f:
        yaml.dump(default_config, f, default_flow_style=False, sort_keys=False)
