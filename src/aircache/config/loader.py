"""
Configuration file loading.

Reads ``config.yaml`` (plus an optional ``config.{env}.yaml`` overlay),
substitutes environment variables and wraps the result in a Config.
"""

from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml

from aircache.config.resolver import resolve_config
from aircache.exceptions import ConfigurationError


class Config:
    """Aircache configuration container with dict-like access."""

    def __init__(self, data: dict[str, Any]):
        if not isinstance(data, dict):
            raise ConfigurationError(f"Configuration must be a mapping, got {type(data).__name__}")
        self.data = data

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation."""
        value: Any = self.data
        for k in key.split("."):
            if isinstance(value, dict):
                value = value.get(k)
                if value is None:
                    return default
            else:
                return default
        return value

    def section(self, key: str) -> dict[str, Any]:
        """Return a nested section as a dict, empty when absent."""
        value = self.get(key, {})
        return value if isinstance(value, dict) else {}

    def __getitem__(self, key: str) -> Any:
        if "." in key:
            return self.get(key)
        if key in self.data:
            return self.data[key]
        raise KeyError(f"Config key '{key}' not found")

    def __contains__(self, key: str) -> bool:
        value: Any = self.data
        for k in key.split("."):
            if not isinstance(value, dict) or k not in value:
                return False
            value = value[k]
        return True

    def __iter__(self) -> Iterator[str]:
        return iter(self.data)


def load_config(config_path: Path | None = None, env: str | None = None) -> Config:
    """
    Load Aircache configuration.

    Args:
        config_path: Path to config.yaml, or to the directory holding it.
            When None, ``./config.yaml`` is used if it exists; otherwise an
            empty config is returned and settings come from the environment.
        env: Optional environment name; ``config.{env}.yaml`` next to the
            base file overrides it.

    Returns:
        Config instance with merged, resolved configuration

    Raises:
        ConfigurationError: If the file is missing (when given explicitly)
            or is not valid YAML
    """
    explicit = config_path is not None
    path = Path(config_path) if config_path is not None else Path.cwd() / "config.yaml"
    if path.is_dir():
        path = path / "config.yaml"

    if not path.exists():
        if explicit:
            raise ConfigurationError(
                f"Configuration file not found: {path}",
                details={"path": str(path)},
            )
        return Config({})

    config_data = _read_yaml(path)

    if env:
        env_path = path.with_name(f"config.{env}.yaml")
        if env_path.exists():
            _merge_dict(config_data, _read_yaml(env_path))

    return Config(resolve_config(config_data))


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        mark = getattr(e, "problem_mark", None)
        where = f" at line {mark.line + 1}, column {mark.column + 1}" if mark else ""
        raise ConfigurationError(
            f"Error parsing {path.name}{where}: {e}",
            details={"path": str(path)},
        ) from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path.name} must contain a mapping, got {type(data).__name__}")
    return data


def _merge_dict(base: dict, override: dict) -> None:
    """Recursively merge override into base."""
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _merge_dict(base[key], value)
        else:
            base[key] = value
