import pytest

from pairsense.config.settings import get_logging_config
from pairsense.core.logging import build_logging_config


def test_debug_level_keeps_client_libraries_pinned():
    config = build_logging_config("debug")

    assert config["root"]["level"] == "DEBUG"
    assert config["handlers"]["console"]["level"] == "DEBUG"
    assert config["loggers"]["httpx"]["level"] == "WARNING"
    assert config["loggers"]["google"]["level"] == "WARNING"


def test_stricter_level_raises_client_libraries_too():
    config = build_logging_config("ERROR")

    assert config["root"]["level"] == "ERROR"
    assert config["loggers"]["httpx"]["level"] == "ERROR"


def test_packaged_config_is_not_mutated():
    build_logging_config("DEBUG")

    assert get_logging_config()["root"]["level"] == "INFO"


def test_unknown_level_is_rejected():
    with pytest.raises(ValueError, match="Unknown log level"):
        build_logging_config("chatty")
