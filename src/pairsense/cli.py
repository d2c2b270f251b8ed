"""
pairsense CLI entrypoint.

Intended for local demos and debugging:
- `proximity`: distance/bearing between two coordinates (same math the client renders),
- `trigger`: replay one `users/{uid}` change event through the trigger pipeline,
- `serve`: run the HTTP API with uvicorn.
"""

from __future__ import annotations

import argparse
import json
from pathlib import Path
from typing import Any

import yaml

from pairsense.config.overrides import apply_deployment_options
from pairsense.config.settings import Settings, get_settings
from pairsense.core.geo import GeoPoint, bearing_deg, compass_label, distance_km, format_distance_text, needle_angle
from pairsense.core.logging import configure_logging
from pairsense.domain.models import MulticastResult, NotificationPayload, TokenResult
from pairsense.ingestion.weather_client import WeatherClient
from pairsense.notifications.dispatcher import NotificationDispatcher
from pairsense.store.base import DocumentStore
from pairsense.store.memory import InMemoryDocumentStore
from pairsense.triggers.pipeline import ChangeTriggerPipeline


def _parse_options(pairs: list[str]) -> dict[str, Any]:
    """Parse `NAME=VALUE` arguments; values are YAML scalars (`0.01`, `500`, `true`)."""
    out: dict[str, Any] = {}
    for pair in pairs:
        if "=" not in pair:
            raise ValueError(f"Invalid --option '{pair}', expected NAME=VALUE")
        name, value = pair.split("=", 1)
        out[name.strip()] = yaml.safe_load(value)
    return out


def _cmd_proximity(args: argparse.Namespace) -> int:
    a = GeoPoint(lat=float(args.from_lat), lng=float(args.from_lng))
    b = GeoPoint(lat=float(args.to_lat), lng=float(args.to_lng))
    km = distance_km(a, b)
    bearing = bearing_deg(a, b)
    result = {
        "distance_km": round(km, 3),
        "distance_text": format_distance_text(km),
        "bearing_deg": round(bearing, 1),
        "compass_label": compass_label(bearing),
        "needle_angle": round(needle_angle(bearing, args.heading), 1),
    }
    if args.json:
        print(json.dumps(result, ensure_ascii=False, indent=2))
        return 0

    print(f"{result['distance_text']} ({result['distance_km']} km)")
    print(f"bearing {result['bearing_deg']}° {result['compass_label']}  needle {result['needle_angle']}°")
    return 0


class _PrintingPushProvider:
    """Push provider for replays: prints the message and reports every token delivered."""

    def send_multicast(self, tokens: list[str], payload: NotificationPayload) -> MulticastResult:
        print(f"[push] to {len(tokens)} token(s): {payload.title}: {payload.body} {payload.data}")
        return MulticastResult(
            success_count=len(tokens),
            failure_count=0,
            responses=[TokenResult(token=t, success=True) for t in tokens],
        )


def _seed_store(store: InMemoryDocumentStore, documents: dict[str, Any]) -> None:
    for path, data in documents.items():
        collection, _, doc_id = str(path).partition("/")
        if not doc_id or not isinstance(data, dict):
            raise ValueError(f"Invalid seed document '{path}', expected 'collection/id' -> mapping")
        store.set(collection, doc_id, data)


def _build_pipeline(settings: Settings, store: DocumentStore, *, dry_run: bool) -> ChangeTriggerPipeline:
    if dry_run:
        provider: Any = _PrintingPushProvider()
    else:
        from pairsense.notifications.fcm import FcmPushProvider

        provider = FcmPushProvider(settings)
    dispatcher = NotificationDispatcher(store, provider, settings)
    return ChangeTriggerPipeline(store, WeatherClient(settings), dispatcher, settings)


def _cmd_trigger(args: argparse.Namespace) -> int:
    """Handle the `trigger` subcommand."""
    settings = apply_deployment_options(get_settings(), _parse_options(args.option or []))
    event = json.loads(Path(args.event).read_text(encoding="utf-8"))
    if not isinstance(event, dict) or not event.get("uid"):
        raise ValueError("Event file must be a JSON object with at least a 'uid'")

    store: DocumentStore
    if args.memory:
        memory = InMemoryDocumentStore()
        _seed_store(memory, event.get("documents") or {})
        store = memory
    else:
        from pairsense.store.firestore import FirestoreDocumentStore

        store = FirestoreDocumentStore(settings)

    pipeline = _build_pipeline(settings, store, dry_run=bool(args.memory or args.dry_run))
    outcome = pipeline.handle(str(event["uid"]), event.get("before"), event.get("after"))
    print(json.dumps(outcome.model_dump(mode="json"), ensure_ascii=False, indent=2))
    return 0


def _cmd_serve(args: argparse.Namespace) -> int:
    import uvicorn

    uvicorn.run("pairsense.api.app:app", host=args.host, port=int(args.port), reload=bool(args.reload))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the pairsense CLI."""
    parser = argparse.ArgumentParser(prog="pairsense")
    sub = parser.add_subparsers(dest="command", required=True)

    prox = sub.add_parser("proximity", help="Distance and direction between two coordinates.")
    prox.add_argument("--from-lat", required=True, type=float)
    prox.add_argument("--from-lng", required=True, type=float)
    prox.add_argument("--to-lat", required=True, type=float)
    prox.add_argument("--to-lng", required=True, type=float)
    prox.add_argument("--heading", type=float, default=None, help="Device heading in degrees (0 = north).")
    prox.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    prox.set_defaults(func=_cmd_proximity)

    trig = sub.add_parser("trigger", help="Replay one user-record change event through the trigger pipeline.")
    trig.add_argument(
        "--event",
        required=True,
        help="JSON file: {uid, before, after, documents?: {'collection/id': {...}}}",
    )
    trig.add_argument("--memory", action="store_true", help="Use an in-memory store seeded from 'documents'.")
    trig.add_argument("--dry-run", action="store_true", help="Print pushes instead of sending them.")
    trig.add_argument(
        "--option",
        action="append",
        default=[],
        help="Deployment option NAME=VALUE (e.g. movementToleranceDeg=0.01). Repeatable.",
    )
    trig.set_defaults(func=_cmd_trigger)

    srv = sub.add_parser("serve", help="Run the HTTP API.")
    srv.add_argument("--host", default="127.0.0.1")
    srv.add_argument("--port", type=int, default=8000)
    srv.add_argument("--reload", action="store_true")
    srv.set_defaults(func=_cmd_serve)
    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m pairsense.cli`."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    return int(func(args))


if __name__ == "__main__":
    raise SystemExit(main())
