"""
Configuration resolution and environment variable substitution.

Substitutes ``${VAR_NAME}`` anywhere in string values. Unknown variables
are left untouched so a missing secret is visible in error messages.
"""

import os
import re
from typing import Any

_ENV_VAR = re.compile(r"\${([^}]+)}")


def resolve_config(config_data: dict[str, Any]) -> dict[str, Any]:
    """
    Resolve configuration with environment variable substitution.

    Args:
        config_data: Configuration dictionary as parsed from YAML

    Returns:
        Resolved configuration
    """
    return _resolve_value(config_data)


def _resolve_value(value: Any) -> Any:
    """Recursively resolve values in configuration."""
    if isinstance(value, dict):
        return {k: _resolve_value(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_resolve_value(item) for item in value]
    elif isinstance(value, str):
        return _ENV_VAR.sub(lambda m: os.getenv(m.group(1), m.group(0)), value)
    else:
        return value
