from __future__ import annotations

# We use pytest because the repository already standardizes on it for automated checks.
import pytest

# We import the existing Settings loader so tests run with the real default config structure.
from pairsense.config.settings import get_settings

# We test the deployment-option helper directly because it is pure (no network).
from pairsense.config.overrides import apply_deployment_options, deployment_options


def test_apply_deployment_options_returns_same_object_when_none():
    # Load the baseline settings once (this is a cached Pydantic model).
    settings = get_settings()

    # When no options are provided, we expect a no-op and the same object back (fast path).
    assert apply_deployment_options(settings, None) is settings
    assert apply_deployment_options(settings, {}) is settings


def test_apply_deployment_options_overrides_recognized_knobs():
    settings = get_settings()

    out = apply_deployment_options(
        settings,
        {"movementToleranceDeg": 0.01, "debounceWindowMs": 30000, "notificationBatchSize": 100},
    )

    assert out.triggers.movement_tolerance_deg == 0.01
    assert out.triggers.debounce_window_ms == 30000
    assert out.notifications.batch_size == 100

    # The cached baseline settings must remain unchanged (shared via lru_cache).
    assert settings.triggers.movement_tolerance_deg == 0.001
    assert settings.notifications.batch_size == 500


def test_apply_deployment_options_rejects_unknown_keys_by_name():
    settings = get_settings()

    # Collection names and credentials are not deployment options.
    with pytest.raises(ValueError, match=r"Unknown deployment option 'usersCollection'"):
        apply_deployment_options(settings, {"usersCollection": "people"})


def test_apply_deployment_options_revalidates_ranges():
    settings = get_settings()

    # The push provider caps a multicast at 500 tokens; Pydantic rejects anything above.
    with pytest.raises(ValueError):
        apply_deployment_options(settings, {"notificationBatchSize": 501})

    with pytest.raises(ValueError):
        apply_deployment_options(settings, {"movementToleranceDeg": -1})


def test_deployment_options_round_trip_in_camel_case():
    settings = get_settings()
    opts = deployment_options(settings)
    assert opts == {"movementToleranceDeg": 0.001, "debounceWindowMs": 0, "notificationBatchSize": 500}


def test_settings_load_external_yaml_and_env_overlay(tmp_path, monkeypatch):
    config = tmp_path / "pairsense.yaml"
    config.write_text(
        "triggers:\n  movement_tolerance_deg: 0.05\nnotifications:\n  title: hello\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("PAIRSENSE_CONFIG_PATH", str(config))
    monkeypatch.setenv("OPENWEATHER_API_KEY", "test-key")

    get_settings.cache_clear()
    try:
        settings = get_settings()
        assert settings.triggers.movement_tolerance_deg == 0.05
        assert settings.notifications.title == "hello"
        assert settings.weather.api_key == "test-key"
        # Sections missing from the file fall back to model defaults.
        assert settings.tracker.location_refresh_interval_seconds == 600
    finally:
        get_settings.cache_clear()
