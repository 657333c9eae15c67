"""Configuration loading from YAML with environment variable substitution."""

import os
import re
from pathlib import Path
from typing import Optional

import yaml

from .models import AppConfig

ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-([^}]*))?\}")


def _substitute_env_vars(value: str) -> str:
    """Replace ${ENV_VAR} and ${ENV_VAR:-default} with environment values."""

    def replacer(match):
        env_value = os.environ.get(match.group(1))
        if env_value is None:
            return match.group(2) or ""
        return env_value

    return ENV_PATTERN.sub(replacer, value)


def _process_config_values(obj):
    """Recursively substitute env vars in all string values."""
    if isinstance(obj, str):
        return _substitute_env_vars(obj)
    elif isinstance(obj, dict):
        return {k: _process_config_values(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_process_config_values(item) for item in obj]
    return obj


def load_config(config_path: Optional[str] = None) -> AppConfig:
    """Load and validate configuration from a YAML file.

    With no path, returns the defaults (anonymous access, 5 second polling).
    """
    if config_path is None:
        return AppConfig()

    path = Path(config_path)
    if not path.exists():
        raise FileNotFoundError(
            f"Configuration file not found: {config_path}. "
            f"Copy config.example.yaml to config.yaml and update it."
        )

    with open(path) as f:
        raw_config = yaml.safe_load(f) or {}

    return AppConfig(**_process_config_values(raw_config))
