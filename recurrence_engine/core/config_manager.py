"""Configuration management for the recurrence engine."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

ENV_PREFIX = "RECURRENCE_ENGINE_"

_TRUTHY = ("1", "true", "yes", "on")
_FALSY = ("0", "false", "no", "off")


@dataclass
class EngineSettings:
    """Tunables for generation bounds, caching and range queries."""

    cache_ttl_seconds: int = 300
    cache_max_entries: int = 2048
    max_occurrences: int = 500
    max_iterations: int = 1000
    inclusive_end: bool = True


class ConfigManager:
    """Builds ``EngineSettings`` from environment variables and an optional .env file."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment to avoid
        surprising overrides of user's environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        set_keys = []

        try:
            content = self.env_file_path.read_text(encoding="utf-8")
        except OSError:
            logger.debug("Failed to read .env file (continuing): %s", self.env_file_path, exc_info=True)
            return []

        for raw_line in content.splitlines():
            line = raw_line.strip()

            if not line or line.startswith("#") or "=" not in line:
                continue

            key, val = line.split("=", 1)
            key = key.strip()
            val = val.strip().strip('"').strip("'")

            if key and key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def build_settings_from_env(self) -> EngineSettings:
        """Build settings from RECURRENCE_ENGINE_* variables.

        Invalid values are logged and the default is kept.
        """
        settings = EngineSettings()
        for field in fields(EngineSettings):
            raw = os.environ.get(ENV_PREFIX + field.name.upper())
            if raw is None or raw.strip() == "":
                continue
            try:
                value = _convert(field.name, raw.strip(), type(getattr(settings, field.name)))
            except ValueError:
                logger.warning("Invalid %s%s=%r; ignoring", ENV_PREFIX, field.name.upper(), raw)
                continue
            setattr(settings, field.name, value)
        return settings

    def load_settings(self) -> EngineSettings:
        """Load .env file, then build settings from the environment.

        This is the main entry point for loading configuration.
        """
        self.load_env_file()
        return self.build_settings_from_env()


def _convert(name: str, raw: str, kind: type) -> Any:
    if kind is bool:
        lowered = raw.lower()
        if lowered in _TRUTHY:
            return True
        if lowered in _FALSY:
            return False
        raise ValueError(raw)
    if kind is int:
        value = int(raw)
        if value < 0 or (value == 0 and name != "cache_ttl_seconds"):
            raise ValueError(raw)
        return value
    return raw


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Get configuration value supporting both dict and dataclass-like objects."""
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
