"""
Logging configuration.

`src/pairsense/config/logging.yaml` sends everything to stderr and pins the chatty
client libraries (`httpx` for weather lookups, `google` for Firestore/FCM calls) at
WARNING. `configure_logging()` applies the settings level (`PAIRSENSE_LOG_LEVEL`)
to the root logger and its handlers; a pinned library logger is only raised,
never lowered, so DEBUG on pairsense does not turn on SDK request logs.
"""

from __future__ import annotations

import copy
import logging
import logging.config
from typing import Any

from pairsense.config.settings import get_logging_config, get_settings


def build_logging_config(level: str) -> dict[str, Any]:
    """Packaged dictConfig with `level` applied (the cached YAML is not mutated)."""
    config = copy.deepcopy(get_logging_config())
    level = level.upper()
    numeric = logging.getLevelName(level)
    if not isinstance(numeric, int):
        raise ValueError(f"Unknown log level: {level}")

    config.setdefault("root", {})["level"] = level
    for handler in config.get("handlers", {}).values():
        if isinstance(handler, dict) and "level" in handler:
            handler["level"] = level

    for logger_cfg in config.get("loggers", {}).values():
        pinned = logger_cfg.get("level") if isinstance(logger_cfg, dict) else None
        if pinned and logging.getLevelName(str(pinned).upper()) < numeric:
            logger_cfg["level"] = level
    return config


def configure_logging() -> None:
    logging.config.dictConfig(build_logging_config(get_settings().app.log_level))
