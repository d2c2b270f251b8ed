# src/pairsense/triggers/weather.py
"""
Weather enrichment rules.

Converts a `WeatherObservation` (ingestion output) into the stored `WeatherSnapshot`:
- the free-form condition keyword collapses onto a closed set of conditions,
- day/night is derived from the observation time against sunrise/sunset,
- missing inputs stay None instead of failing.
"""

from __future__ import annotations

from typing import Iterable, Mapping

from pairsense.domain.models import WeatherCondition, WeatherSnapshot
from pairsense.ingestion.weather_client import WeatherObservation
from pairsense.store.base import SERVER_TIMESTAMP

# Checked in order; the first keyword that matches wins.
_CONDITION_RULES: tuple[tuple[tuple[str, ...], WeatherCondition], ...] = (
    (("clear",), "clear"),
    (("cloud",), "cloudy"),
    (("rain", "drizzle"), "rain"),
    (("thunder",), "storm"),
    (("snow",), "snow"),
)


def map_condition(keyword: str | None) -> WeatherCondition:
    text = (keyword or "").lower()
    for needles, condition in _CONDITION_RULES:
        if any(n in text for n in needles):
            return condition
    return "unknown"


def map_conditions(keywords: Iterable[str]) -> WeatherCondition:
    """Condition of the first keyword that maps to a known condition."""
    for kw in keywords:
        condition = map_condition(kw)
        if condition != "unknown":
            return condition
    return "unknown"


def is_daytime(observation: int | None, sunrise: int | None, sunset: int | None) -> bool | None:
    if observation is None or sunrise is None or sunset is None:
        return None
    return sunrise <= observation < sunset


def build_snapshot(obs: WeatherObservation, source: Mapping[str, float] | None = None) -> WeatherSnapshot:
    """Snapshot to merge into `users/{uid}.weather` (timestamp assigned by the store)."""
    return WeatherSnapshot(
        source_location=dict(source) if source is not None else None,
        condition=map_conditions(obs.condition_keywords),
        is_daytime=is_daytime(obs.observation_epoch, obs.sunrise_epoch, obs.sunset_epoch),
        temperature_c=obs.temperature_c,
        icon_code=obs.icon_code,
        raw_condition=obs.condition_keywords[0] if obs.condition_keywords else None,
        updated_at=SERVER_TIMESTAMP,
    )
