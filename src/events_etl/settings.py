"""events_etl.settings

Optional YAML configuration for the import CLI.

Example (config/events_etl.yml):

    dialect: mysql
    database: certificados
    image_prefix: img
    variable_prefix: events_etl

Explicit CLI flags win over file values, file values win over defaults.
Credentials never belong in this file.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml

from events_etl.sql import DIALECTS

ALLOWED_KEYS = frozenset({"dialect", "database", "image_prefix", "variable_prefix"})


class SettingsValidationError(ValueError):
    """Raised when a YAML settings file fails validation."""


@dataclass(frozen=True)
class Settings:
    dialect: str = "mysql"
    database: str | None = None
    image_prefix: str = "img"
    variable_prefix: str = "events_etl"

    def override(self, **values: Any) -> Settings:
        """Return a copy with every non-None value applied."""
        return replace(self, **{k: v for k, v in values.items() if v is not None})


def validate_settings(data: Any) -> None:
    if not isinstance(data, dict):
        raise SettingsValidationError("settings file must contain a mapping")
    unknown = set(data) - ALLOWED_KEYS
    if unknown:
        raise SettingsValidationError(f"unknown settings keys: {sorted(unknown)}")
    for key, value in data.items():
        if key == "database" and value is None:
            continue
        if not isinstance(value, str) or not value.strip():
            raise SettingsValidationError(f"{key} must be a non-empty string, got {value!r}")
    if "dialect" in data and data["dialect"] not in DIALECTS:
        raise SettingsValidationError(
            f"dialect must be one of {DIALECTS}, got {data['dialect']!r}"
        )


def load_settings(yaml_path: Path | None) -> Settings:
    """Load and validate settings; a None path yields the defaults.

    Raises:
        SettingsValidationError: If the file content is invalid.
        FileNotFoundError: If the file does not exist.
    """
    if yaml_path is None:
        return Settings()
    raw = yaml_path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw)
    if data is None:
        return Settings()
    validate_settings(data)
    return Settings(**{k: v.strip() if isinstance(v, str) else v for k, v in data.items()})
