"""
Weather lookup client (OpenWeather current conditions).

This module fetches the current weather for a coordinate and parses it into a small
`WeatherObservation` used by the trigger pipeline:
- condition keywords (e.g., "Clear", "Clouds", "Rain")
- temperature in °C
- observation / sunrise / sunset epochs (UTC seconds)
- icon code

Non-2xx responses, transport errors and malformed bodies all surface as
`WeatherLookupError`; callers treat that as a soft failure and never retry inline.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

import httpx

from pairsense.config.settings import Settings
from pairsense.core.http import get_json

logger = logging.getLogger(__name__)


class WeatherLookupError(RuntimeError):
    """Weather service unreachable, returned non-2xx, or sent an unusable body."""


@dataclass(frozen=True)
class WeatherObservation:
    """Parsed current-conditions response."""

    condition_keywords: list[str] = field(default_factory=list)
    temperature_c: float | None = None
    observation_epoch: int | None = None
    sunrise_epoch: int | None = None
    sunset_epoch: int | None = None
    icon_code: str | None = None


class WeatherLookup(Protocol):
    def lookup(self, *, lat: float, lon: float) -> WeatherObservation: ...


def _as_int(value: Any) -> int | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return int(value)


def _as_float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def parse_openweather(payload: Any) -> WeatherObservation:
    """Parse an OpenWeather `/weather` body; raises `WeatherLookupError` if it is not a mapping."""
    if not isinstance(payload, dict):
        raise WeatherLookupError(f"Unexpected weather payload type: {type(payload).__name__}")

    entries = payload.get("weather") or []
    if not isinstance(entries, list):
        entries = []
    keywords = [str(e["main"]) for e in entries if isinstance(e, dict) and e.get("main")]
    icon = next((str(e["icon"]) for e in entries if isinstance(e, dict) and e.get("icon")), None)

    main = payload.get("main") if isinstance(payload.get("main"), dict) else {}
    sys_block = payload.get("sys") if isinstance(payload.get("sys"), dict) else {}

    return WeatherObservation(
        condition_keywords=keywords,
        temperature_c=_as_float(main.get("temp")),
        observation_epoch=_as_int(payload.get("dt")),
        sunrise_epoch=_as_int(sys_block.get("sunrise")),
        sunset_epoch=_as_int(sys_block.get("sunset")),
        icon_code=icon,
    )


class WeatherClient:
    """Fetches current conditions from OpenWeather and parses them into `WeatherObservation`."""

    def __init__(self, settings: Settings):
        self._settings = settings

    def _require_api_key(self) -> str:
        api_key = self._settings.weather.api_key
        if not api_key:
            raise WeatherLookupError("OpenWeather API key is not configured. Set OPENWEATHER_API_KEY.")
        return api_key

    def lookup(self, *, lat: float, lon: float) -> WeatherObservation:
        cfg = self._settings.weather
        params = {
            "lat": lat,
            "lon": lon,
            "appid": self._require_api_key(),
            "units": cfg.units,
            "lang": cfg.language,
        }
        logger.info("Fetching weather for lat=%.4f lon=%.4f", lat, lon)
        try:
            payload = get_json(cfg.base_url, params=params, timeout_seconds=self._settings.app.http_timeout_seconds)
        except httpx.HTTPStatusError as exc:
            raise WeatherLookupError(f"Weather service returned HTTP {exc.response.status_code}") from exc
        except httpx.HTTPError as exc:
            raise WeatherLookupError(f"Weather service unreachable: {exc}") from exc
        except ValueError as exc:
            raise WeatherLookupError(f"Weather service sent invalid JSON: {exc}") from exc
        return parse_openweather(payload)
