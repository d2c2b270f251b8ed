"""
API routes.

Endpoints:
- POST `/api/pairs/invite`: create (or re-issue) the caller's invite code.
- POST `/api/pairs/join`: join a waiting pair by code.
- GET  `/api/pairs/{pair_id}`: read one pair document.
- POST `/api/triggers/user-written`: deliver one `users/{uid}` change to the trigger pipeline.
- GET  `/api/settings`: public deployment options (credentials removed).
- GET  `/api/health`: liveness probe.

Callers are identified by the `uid` in the request body; authentication happens in front
of this service.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, Field

from pairsense.config.overrides import deployment_options
from pairsense.config.settings import Settings, get_settings
from pairsense.domain.models import PairingResult, PairRecord, TriggerOutcome
from pairsense.ingestion.weather_client import WeatherClient
from pairsense.notifications.dispatcher import NotificationDispatcher
from pairsense.notifications.fcm import FcmPushProvider
from pairsense.pairing.service import PairingService
from pairsense.store.base import DocumentStore, StoreError
from pairsense.store.firestore import FirestoreDocumentStore
from pairsense.triggers.pipeline import ChangeTriggerPipeline

router = APIRouter()

_ERROR_STATUS = {
    "not_found": 404,
    "self_join": 400,
    "already_taken": 409,
    "already_paired": 409,
    "unavailable": 503,
}


@dataclass
class Services:
    settings: Settings
    store: DocumentStore
    pairing: PairingService
    pipeline: ChangeTriggerPipeline


def build_services(settings: Settings, store: DocumentStore, weather: Any, provider: Any) -> Services:
    dispatcher = NotificationDispatcher(store, provider, settings)
    return Services(
        settings=settings,
        store=store,
        pairing=PairingService(store, settings),
        pipeline=ChangeTriggerPipeline(store, weather, dispatcher, settings),
    )


@lru_cache
def _services() -> Services:
    settings = get_settings()
    return build_services(
        settings,
        FirestoreDocumentStore(settings),
        WeatherClient(settings),
        FcmPushProvider(settings),
    )


class InviteRequest(BaseModel):
    uid: str = Field(..., min_length=1)
    code: str | None = None


class JoinRequest(BaseModel):
    uid: str = Field(..., min_length=1)
    code: str


class UserWrittenEvent(BaseModel):
    uid: str = Field(..., min_length=1)
    before: dict[str, Any] | None = None
    after: dict[str, Any] | None = None


def _pairing_response(result: PairingResult) -> PairingResult:
    if result.ok:
        return result
    raise HTTPException(
        status_code=_ERROR_STATUS.get(result.error or "", 400),
        detail={"code": result.error, "message": result.message, "pair_id": result.pair_id},
    )


def _store_unavailable(exc: StoreError) -> HTTPException:
    return HTTPException(status_code=503, detail={"code": "STORE_UNAVAILABLE", "message": str(exc)})


@router.post("/api/pairs/invite", response_model=PairingResult)
def post_invite(req: InviteRequest) -> PairingResult:
    """Create a waiting pair owned by the caller; passing the earlier `code` retries idempotently."""
    try:
        result = _services().pairing.create_invite(req.uid, code=req.code)
    except StoreError as e:
        raise _store_unavailable(e) from e
    return _pairing_response(result)


@router.post("/api/pairs/join", response_model=PairingResult)
def post_join(req: JoinRequest) -> PairingResult:
    try:
        result = _services().pairing.join_pair(req.uid, req.code)
    except StoreError as e:
        raise _store_unavailable(e) from e
    return _pairing_response(result)


@router.get("/api/pairs/{pair_id}")
def get_pair(pair_id: str) -> dict:
    try:
        pair: PairRecord | None = _services().pairing.get_pair(pair_id)
    except StoreError as e:
        raise _store_unavailable(e) from e
    if pair is None:
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Pair not found."})
    return pair.model_dump(mode="json", by_alias=True)


@router.post("/api/triggers/user-written", response_model=TriggerOutcome)
def post_user_written(event: UserWrittenEvent) -> TriggerOutcome:
    """Run weather enrichment and partner notification for one user-record write."""
    return _services().pipeline.handle(event.uid, event.before, event.after)


@router.get("/api/settings")
def get_public_settings() -> dict:
    """Return deployment options and non-secret settings."""
    settings = _services().settings
    return {
        "app": {"name": settings.app.name, "timezone": settings.app.timezone},
        "options": deployment_options(settings),
        "tracker": settings.tracker.model_dump(mode="json"),
    }


@router.get("/api/health")
def get_health() -> dict:
    return {"status": "ok"}

