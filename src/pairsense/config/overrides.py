"""
Deployment options (safe subset).

A deployment can tune the trigger pipeline with a small set of camelCase options
(`movementToleranceDeg`, `debounceWindowMs`, `notificationBatchSize`). This module:
- validates the option payload against a whitelist,
- maps each option onto its nested settings path,
- re-validates with Pydantic to ensure types/ranges remain correct.

Credentials, URLs and collection names are intentionally not overridable here.
"""

from __future__ import annotations

from typing import Any, Mapping

from pairsense.config.settings import Settings

# Recognized option name -> dotted path inside `Settings`.
RECOGNIZED_OPTIONS: dict[str, tuple[str, ...]] = {
    "movementToleranceDeg": ("triggers", "movement_tolerance_deg"),
    "debounceWindowMs": ("triggers", "debounce_window_ms"),
    "notificationBatchSize": ("notifications", "batch_size"),
}


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    # A new dict is returned so the cached `base` payload is never mutated.
    merged: dict[str, Any] = dict(base)
    for key, override_value in override.items():
        if isinstance(override_value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(dict(merged[key]), override_value)
            continue
        merged[key] = override_value
    return merged


def _options_to_tree(options: Mapping[str, Any]) -> dict[str, Any]:
    tree: dict[str, Any] = {}
    for name, value in options.items():
        path = RECOGNIZED_OPTIONS.get(name)
        if path is None:
            allowed = ", ".join(sorted(RECOGNIZED_OPTIONS))
            raise ValueError(f"Unknown deployment option '{name}' (recognized: {allowed})")
        node = tree
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value
    return tree


def apply_deployment_options(settings: Settings, options: Mapping[str, Any] | None) -> Settings:
    """Return `settings` with recognized deployment options applied.

    Raises:
        ValueError: On unknown option names or values Pydantic rejects.
    """
    if not options:
        return settings

    tree = _options_to_tree(options)
    merged_payload = _deep_merge(settings.model_dump(mode="python"), tree)
    return Settings.model_validate(merged_payload)


def deployment_options(settings: Settings) -> dict[str, Any]:
    """Expose the current recognized options in their camelCase form."""
    out: dict[str, Any] = {}
    for name, (section, field) in RECOGNIZED_OPTIONS.items():
        out[name] = getattr(getattr(settings, section), field)
    return out
