import httpx
import pytest

from pairsense.config.settings import get_settings
from pairsense.ingestion import weather_client as wc
from pairsense.ingestion.weather_client import WeatherClient, WeatherLookupError, parse_openweather

OPENWEATHER_BODY = {
    "weather": [{"id": 500, "main": "Rain", "description": "light rain", "icon": "10n"}],
    "main": {"temp": 8.4, "humidity": 81},
    "dt": 1_700_040_000,
    "sys": {"sunrise": 1_699_990_000, "sunset": 1_700_030_000},
}


def _settings(api_key="test-key"):
    settings = get_settings()
    return settings.model_copy(update={"weather": settings.weather.model_copy(update={"api_key": api_key})})


def test_parse_openweather_extracts_observation():
    obs = parse_openweather(OPENWEATHER_BODY)

    assert obs.condition_keywords == ["Rain"]
    assert obs.temperature_c == 8.4
    assert obs.observation_epoch == 1_700_040_000
    assert obs.sunrise_epoch == 1_699_990_000
    assert obs.sunset_epoch == 1_700_030_000
    assert obs.icon_code == "10n"


def test_parse_openweather_tolerates_missing_blocks():
    obs = parse_openweather({"weather": "oops", "main": None})

    assert obs.condition_keywords == []
    assert obs.temperature_c is None
    assert obs.sunrise_epoch is None

    with pytest.raises(WeatherLookupError):
        parse_openweather(["not", "a", "mapping"])


def test_lookup_sends_coordinates_key_and_units(monkeypatch):
    captured = {}

    def fake_get_json(url, *, params=None, headers=None, timeout_seconds=10):
        captured.update(url=url, params=params, timeout=timeout_seconds)
        return OPENWEATHER_BODY

    monkeypatch.setattr(wc, "get_json", fake_get_json)

    obs = WeatherClient(_settings()).lookup(lat=35.68, lon=139.76)

    assert obs.condition_keywords == ["Rain"]
    assert captured["url"] == "https://api.openweathermap.org/data/2.5/weather"
    assert captured["params"]["lat"] == 35.68
    assert captured["params"]["lon"] == 139.76
    assert captured["params"]["appid"] == "test-key"
    assert captured["params"]["units"] == "metric"
    assert captured["timeout"] == 10


def test_lookup_without_api_key_fails_before_any_request(monkeypatch):
    def fail(*args, **kwargs):
        raise AssertionError("no request expected")

    monkeypatch.setattr(wc, "get_json", fail)

    with pytest.raises(WeatherLookupError, match="OPENWEATHER_API_KEY"):
        WeatherClient(_settings(api_key=None)).lookup(lat=0.0, lon=0.0)


def test_non_2xx_maps_to_weather_lookup_error(monkeypatch):
    request = httpx.Request("GET", "https://api.openweathermap.org/data/2.5/weather")
    response = httpx.Response(401, request=request)

    def fake_get_json(*args, **kwargs):
        raise httpx.HTTPStatusError("unauthorized", request=request, response=response)

    monkeypatch.setattr(wc, "get_json", fake_get_json)

    with pytest.raises(WeatherLookupError, match="HTTP 401"):
        WeatherClient(_settings()).lookup(lat=0.0, lon=0.0)


def test_transport_and_decode_errors_map_to_weather_lookup_error(monkeypatch):
    def unreachable(*args, **kwargs):
        raise httpx.ConnectError("connection refused")

    monkeypatch.setattr(wc, "get_json", unreachable)
    with pytest.raises(WeatherLookupError, match="unreachable"):
        WeatherClient(_settings()).lookup(lat=0.0, lon=0.0)

    def bad_json(*args, **kwargs):
        raise ValueError("Expecting value")

    monkeypatch.setattr(wc, "get_json", bad_json)
    with pytest.raises(WeatherLookupError, match="invalid JSON"):
        WeatherClient(_settings()).lookup(lat=0.0, lon=0.0)
