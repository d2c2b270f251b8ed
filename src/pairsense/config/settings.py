# src/pairsense/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/pairsense/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `OPENWEATHER_API_KEY`, `FIREBASE_CREDENTIALS_PATH`)
- an external YAML file via `PAIRSENSE_CONFIG_PATH`

Design rule:
- Deployment knobs (movement tolerance, debounce window, batch size) live in YAML,
  not hard-coded in trigger logic.
"""

from __future__ import annotations

import os
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from pairsense.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `pairsense.config`."""
    text = resources.files("pairsense.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "pairsense"
    timezone: str = "UTC"
    http_timeout_seconds: float = 10
    log_level: str = "INFO"


class FirebaseSettings(BaseModel):
    credentials_path: str | None = None
    database: str | None = None
    users_collection: str = "users"
    pairs_collection: str = "pairs"
    events_collection: str = "triggerEvents"
    # Claims carry `expireAt`; a Firestore TTL policy on that field removes them.
    events_retention_days: int = Field(7, ge=1)


class TriggerSettings(BaseModel):
    # Max per-axis coordinate delta (degrees) still treated as "the same place".
    movement_tolerance_deg: float = Field(0.001, ge=0)
    # 0 means any strictly later `lastOpenedAt` is a new open event.
    debounce_window_ms: int = Field(0, ge=0)


class NotificationSettings(BaseModel):
    batch_size: int = Field(500, ge=1, le=500)
    title: str = "pairsense"
    fallback_sender_name: str = "Your partner"


class WeatherSettings(BaseModel):
    base_url: str = "https://api.openweathermap.org/data/2.5/weather"
    api_key: str | None = None
    units: str = "metric"
    language: str = "en"


class TrackerSettings(BaseModel):
    location_refresh_interval_seconds: float = Field(600, gt=0)
    location_timeout_seconds: float = Field(10, gt=0)
    high_accuracy: bool = True


class PairingSettings(BaseModel):
    max_code_attempts: int = Field(5, ge=1)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    firebase: FirebaseSettings = Field(default_factory=FirebaseSettings)
    triggers: TriggerSettings = Field(default_factory=TriggerSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    weather: WeatherSettings = Field(default_factory=WeatherSettings)
    tracker: TrackerSettings = Field(default_factory=TrackerSettings)
    pairing: PairingSettings = Field(default_factory=PairingSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Note: We intentionally keep this whitelist small to avoid exposing unsafe overrides.
    """
    load_dotenv_if_present()
    data = dict(data)

    log_level = os.getenv("PAIRSENSE_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    api_key = os.getenv("OPENWEATHER_API_KEY")
    if api_key:
        data.setdefault("weather", {})["api_key"] = api_key

    cred_path = os.getenv("FIREBASE_CREDENTIALS_PATH")
    if cred_path:
        data.setdefault("firebase", {})["credentials_path"] = cred_path

    database = os.getenv("FIRESTORE_DATABASE")
    if database:
        data.setdefault("firebase", {})["database"] = database

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("PAIRSENSE_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
