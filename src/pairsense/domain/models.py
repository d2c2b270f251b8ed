"""
Domain models (Pydantic).

These types represent the stable "contract" between layers:
- stored documents (`UserRecord`, `PairRecord`, `WeatherSnapshot`)
- client-local derived state (`ProximityState`)
- results of service calls (`PairingResult`, `DispatchResult`, `TriggerOutcome`)

Stored field names are camelCase (they are shared with web/mobile clients), so
models declare camelCase aliases and accept either spelling on input.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from pairsense.core.geo import GeoPoint, is_valid_coordinate
from pairsense.core.time import to_datetime

MoodCode = Literal["good", "ok", "tired", "bad"]
MOOD_CODES: tuple[str, ...] = ("good", "ok", "tired", "bad")

WeatherCondition = Literal["clear", "cloudy", "rain", "storm", "snow", "unknown"]

PairStatus = Literal["waiting", "active"]

PairingErrorCode = Literal["not_found", "self_join", "already_taken", "already_paired", "unavailable"]


class _DocumentModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True)


class Location(_DocumentModel):
    """Last-known device position."""

    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    updated_at: datetime | None = Field(default=None, alias="updatedAt")

    @field_validator("updated_at", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> datetime | None:
        return to_datetime(value)

    def point(self) -> GeoPoint:
        return GeoPoint(lat=self.lat, lng=self.lng)

    @classmethod
    def from_value(cls, value: Any) -> "Location | None":
        """Parse a stored `location` map; anything malformed counts as absent."""
        if not isinstance(value, Mapping):
            return None
        lat = value.get("lat")
        lng = value.get("lng")
        if not is_valid_coordinate(lat, lng):
            return None
        return cls(lat=float(lat), lng=float(lng), updated_at=value.get("updatedAt"))


class WeatherSnapshot(_DocumentModel):
    """Weather derived for a user's location by the trigger pipeline."""

    condition: WeatherCondition = "unknown"
    is_daytime: bool | None = Field(default=None, alias="isDaytime")
    temperature_c: float | None = Field(default=None, alias="temperatureC")
    icon_code: str | None = Field(default=None, alias="iconCode")
    raw_condition: str | None = Field(default=None, alias="rawCondition")
    # `{lat, lng}` the lookup was made for; a replay for the same point is a no-op.
    source_location: dict[str, float] | None = Field(default=None, alias="sourceLocation")
    updated_at: Any = Field(default=None, alias="updatedAt")

    def to_doc(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)

    @classmethod
    def from_value(cls, value: Any) -> "WeatherSnapshot | None":
        if not isinstance(value, Mapping):
            return None
        try:
            return cls.model_validate(dict(value))
        except ValueError:
            return None


class UserRecord(_DocumentModel):
    """One `users/{uid}` document."""

    uid: str
    display_name: str = Field(default="", alias="displayName")
    mood_code: MoodCode | None = Field(default=None, alias="moodCode")
    last_opened_at: datetime | None = Field(default=None, alias="lastOpenedAt")
    location: Location | None = None
    weather: WeatherSnapshot | None = None
    pair_id: str | None = Field(default=None, alias="pairId")
    notification_tokens: set[str] = Field(default_factory=set, alias="notificationTokens")

    @classmethod
    def from_doc(cls, uid: str, data: Mapping[str, Any] | None) -> "UserRecord":
        """Lenient parse of a stored document: malformed fields read as empty."""
        data = data or {}
        mood = data.get("moodCode")
        pair_id = data.get("pairId")
        return cls(
            uid=uid,
            display_name=str(data.get("displayName") or ""),
            mood_code=mood if mood in MOOD_CODES else None,
            last_opened_at=to_datetime(data.get("lastOpenedAt")),
            location=Location.from_value(data.get("location")),
            weather=WeatherSnapshot.from_value(data.get("weather")),
            pair_id=str(pair_id) if pair_id else None,
            notification_tokens=parse_token_set(data.get("notificationTokens")),
        )


def parse_token_set(value: Any) -> set[str]:
    """Read `notificationTokens`, stored as `{token: true}` (lists are tolerated)."""
    if isinstance(value, Mapping):
        return {str(t) for t, enabled in value.items() if t and enabled}
    if isinstance(value, (list, tuple, set)):
        return {str(t) for t in value if t}
    return set()


class PairRecord(_DocumentModel):
    """One `pairs/{pairId}` document; the id is the 6-digit invite code."""

    pair_id: str = Field(..., alias="id")
    owner_uid: str = Field(..., alias="ownerUid")
    partner_uid: str | None = Field(default=None, alias="partnerUid")
    status: PairStatus = "waiting"
    created_at: datetime | None = Field(default=None, alias="createdAt")

    @field_validator("created_at", mode="before")
    @classmethod
    def _coerce_timestamp(cls, value: Any) -> datetime | None:
        return to_datetime(value)

    @model_validator(mode="after")
    def _validate_roles(self) -> "PairRecord":
        if self.status == "active" and not self.partner_uid:
            raise ValueError("an active pair must have a partnerUid")
        if self.partner_uid is not None and self.partner_uid == self.owner_uid:
            raise ValueError("ownerUid and partnerUid must differ")
        return self

    @classmethod
    def from_doc(cls, pair_id: str, data: Mapping[str, Any]) -> "PairRecord":
        payload = dict(data)
        payload["id"] = pair_id
        return cls.model_validate(payload)


class ProximityState(BaseModel):
    """Client-local distance/direction to the partner (never persisted)."""

    distance_km: float | None = None
    bearing_deg: float | None = Field(default=None, ge=0, lt=360)
    compass_label: str = ""
    distance_text: str = ""

    @classmethod
    def empty(cls) -> "ProximityState":
        return cls()


class PairingResult(BaseModel):
    """Outcome of a pairing operation; user errors are values, not exceptions."""

    ok: bool
    pair_id: str | None = None
    status: PairStatus | None = None
    error: PairingErrorCode | None = None
    message: str = ""

    @classmethod
    def success(cls, pair_id: str, status: PairStatus, message: str) -> "PairingResult":
        return cls(ok=True, pair_id=pair_id, status=status, message=message)

    @classmethod
    def failure(cls, error: PairingErrorCode, message: str, pair_id: str | None = None) -> "PairingResult":
        return cls(ok=False, error=error, message=message, pair_id=pair_id)


class NotificationPayload(BaseModel):
    """One logical push notification (title/body + string-only data map)."""

    title: str
    body: str
    data: dict[str, str] = Field(default_factory=dict)


class TokenResult(BaseModel):
    token: str
    success: bool
    error_code: str | None = None


class MulticastResult(BaseModel):
    """Provider response for one batch."""

    success_count: int = 0
    failure_count: int = 0
    responses: list[TokenResult] = Field(default_factory=list)


class DispatchResult(BaseModel):
    """Aggregate over every batch of a `NotificationDispatcher.send` call."""

    success_count: int = 0
    failure_count: int = 0
    invalid_tokens: list[str] = Field(default_factory=list)


class EffectOutcome(BaseModel):
    ran: bool = False
    skipped_reason: str | None = None
    error: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


class TriggerOutcome(BaseModel):
    """What one user-record write caused (used for logging, the API and tests)."""

    uid: str
    weather: EffectOutcome = Field(default_factory=EffectOutcome)
    notification: EffectOutcome = Field(default_factory=EffectOutcome)
