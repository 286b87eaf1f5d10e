"""Configuration loading utilities for team9link."""

import json
from pathlib import Path
from typing import Any

from loguru import logger

from team9link.config.schema import Config

# Keys whose children are user-chosen identifiers (account ids, channel ids,
# agent ids) and must not be case-converted.
_MAP_KEYS = frozenset({"accounts", "groups", "agents"})


def get_config_path() -> Path:
    """Get the default configuration file path."""
    return Path.home() / ".team9link" / "config.json"


def load_config(config_path: Path | None = None) -> Config:
    """
    Load configuration from file or create default.

    Args:
        config_path: Optional path to config file. Uses default if not provided.

    Returns:
        Loaded configuration object.
    """
    path = config_path or get_config_path()

    if path.exists():
        try:
            with open(path) as f:
                data = json.load(f)
            data = _migrate_config(data)
            return Config.model_validate(convert_keys(data))
        except (json.JSONDecodeError, ValueError) as e:
            logger.warning(f"Failed to load config from {path}: {e}")
            logger.warning("Using default configuration.")

    return Config()


def save_config(config: Config, config_path: Path | None = None) -> None:
    """
    Save configuration to file.

    Args:
        config: Configuration to save.
        config_path: Optional path to save to. Uses default if not provided.
    """
    path = config_path or get_config_path()
    path.parent.mkdir(parents=True, exist_ok=True)

    data = config.model_dump(exclude_none=True)
    data = convert_to_camel(data)

    with open(path, "w") as f:
        json.dump(data, f, indent=2)


def _migrate_config(data: Any) -> dict:
    """Migrate old config formats to current."""
    if not isinstance(data, dict):
        return {}

    # Older files kept the channel block under channels.team9.
    channels = data.get("channels")
    if isinstance(channels, dict) and "team9" in channels and "team9" not in data:
        data["team9"] = channels.pop("team9")
        if not channels:
            data.pop("channels")

    team9 = data.get("team9")
    if isinstance(team9, dict):
        # Single-string token shorthand.
        token = team9.pop("token", None)
        if isinstance(token, str) and token and "credentials" not in team9:
            team9["credentials"] = {"token": token}
    return data


def convert_keys(data: Any, _parent: str | None = None) -> Any:
    """Convert camelCase keys to snake_case for Pydantic."""
    if isinstance(data, dict):
        preserve = _parent in _MAP_KEYS
        out: dict[str, Any] = {}
        for k, v in data.items():
            key = k if preserve else camel_to_snake(k)
            out[key] = convert_keys(v, None if preserve else key)
        return out
    if isinstance(data, list):
        return [convert_keys(item) for item in data]
    return data


def convert_to_camel(data: Any, _parent: str | None = None) -> Any:
    """Convert snake_case keys to camelCase."""
    if isinstance(data, dict):
        preserve = _parent in _MAP_KEYS
        out: dict[str, Any] = {}
        for k, v in data.items():
            key = k if preserve else snake_to_camel(k)
            out[key] = convert_to_camel(v, None if preserve else k)
        return out
    if isinstance(data, list):
        return [convert_to_camel(item) for item in data]
    return data


def camel_to_snake(name: str) -> str:
    """Convert camelCase to snake_case."""
    result = []
    for i, char in enumerate(name):
        if char.isupper() and i > 0:
            result.append("_")
        result.append(char.lower())
    return "".join(result)


def snake_to_camel(name: str) -> str:
    """Convert snake_case to camelCase."""
    components = name.split("_")
    return components[0] + "".join(x.title() for x in components[1:])
