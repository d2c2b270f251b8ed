"""
Proximity tracker (client-side reactive pipeline).

Subscriptions form a fixed chain, each level keyed by a value derived from the level
above it:

    session uid -> users/{uid} -> pairs/{pairId} -> users/{partnerUid}

When a key changes, the slot for the level below is re-bound (which cancels the old
subscription and everything under it). Location updates on either side recompute the
`ProximityState`; any other field update only touches that field.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Callable, Mapping

from pairsense.config.settings import Settings
from pairsense.core.geo import (
    bearing_deg,
    compass_label,
    distance_km,
    format_distance_text,
    needle_angle,
    normalize_heading,
)
from pairsense.domain.models import Location, ProximityState, UserRecord, WeatherSnapshot
from pairsense.pairing.service import parse_pair, resolve_partner
from pairsense.store.base import DocumentStore, Unsubscribe
from pairsense.tracker.session import SessionSource
from pairsense.tracker.subscriptions import SubscriptionSlot

logger = logging.getLogger(__name__)


@dataclass
class TrackerState:
    """Everything the UI needs about self and partner."""

    uid: str | None = None
    my_mood: str | None = None
    my_location: Location | None = None
    pair_id: str | None = None
    partner_uid: str | None = None
    partner_name: str = ""
    partner_mood: str | None = None
    partner_weather: WeatherSnapshot | None = None
    partner_location: Location | None = None
    partner_last_opened_at: datetime | None = None
    device_heading: float | None = None
    proximity: ProximityState = field(default_factory=ProximityState.empty)

    @property
    def needle_angle(self) -> float | None:
        if self.proximity.bearing_deg is None:
            return None
        return needle_angle(self.proximity.bearing_deg, self.device_heading)


def compute_proximity(me: Location | None, partner: Location | None) -> ProximityState:
    if me is None or partner is None:
        return ProximityState.empty()
    km = distance_km(me.point(), partner.point())
    deg = bearing_deg(me.point(), partner.point())
    return ProximityState(
        distance_km=km,
        bearing_deg=deg,
        compass_label=compass_label(deg),
        distance_text=format_distance_text(km),
    )


def _same_point(a: Location | None, b: Location | None) -> bool:
    if a is None or b is None:
        return a is b
    return a.lat == b.lat and a.lng == b.lng


class ProximityTracker:
    """Owns the subscription chain for one client and exposes `TrackerState`."""

    def __init__(self, store: DocumentStore, session: SessionSource, settings: Settings):
        self._store = store
        self._session = session
        self._users = settings.firebase.users_collection
        self._pairs = settings.firebase.pairs_collection
        self._fallback_name = settings.notifications.fallback_sender_name

        self._lock = threading.RLock()
        self._session_unsubscribe: Unsubscribe | None = None
        self._self_slot = SubscriptionSlot("self", lock=self._lock)
        self._pair_slot = SubscriptionSlot("pair", parent=self._self_slot, lock=self._lock)
        self._partner_slot = SubscriptionSlot("partner", parent=self._pair_slot, lock=self._lock)

        self._state = TrackerState()
        self._listeners: list[Callable[[TrackerState], None]] = []
        self._opened_listeners: list[Callable[[str], None]] = []

    # -- lifecycle -------------------------------------------------------

    def start(self) -> None:
        if self._session_unsubscribe is None:
            self._session_unsubscribe = self._session.subscribe(self._on_session)

    def close(self) -> None:
        """Release every subscription (session included)."""
        with self._lock:
            unsubscribe, self._session_unsubscribe = self._session_unsubscribe, None
            if unsubscribe is not None:
                unsubscribe()
            self._self_slot.cancel()
            self._state = TrackerState()

    @property
    def state(self) -> TrackerState:
        with self._lock:
            return replace(self._state)

    def add_listener(self, listener: Callable[[TrackerState], None]) -> None:
        self._listeners.append(listener)

    def on_partner_opened(self, listener: Callable[[str], None]) -> None:
        """`listener(partner_name)` runs when the partner's `lastOpenedAt` moves forward."""
        self._opened_listeners.append(listener)

    def set_device_heading(self, reading: Mapping[str, Any] | None) -> float | None:
        """Feed an orientation reading; returns the normalized heading (or None)."""
        heading = normalize_heading(reading)
        with self._lock:
            self._state.device_heading = heading
        self._emit()
        return heading

    # -- subscription handlers ------------------------------------------

    def _on_session(self, uid: str | None) -> None:
        with self._lock:
            if uid is not None and uid == self._state.uid and self._self_slot.active:
                return
            self._self_slot.cancel()
            self._state = TrackerState(uid=uid, device_heading=self._state.device_heading)
            if uid is None:
                logger.info("Session ended; tracker state cleared")
            else:
                self._self_slot.bind(
                    uid,
                    lambda cb: self._store.subscribe(self._users, uid, cb),
                    lambda _before, after: self._on_self(uid, after),
                )
        self._emit()

    def _on_self(self, uid: str, data: dict[str, Any] | None) -> None:
        with self._lock:
            record = UserRecord.from_doc(uid, data)
            state = self._state
            state.my_mood = record.mood_code
            if not _same_point(state.my_location, record.location):
                state.my_location = record.location
                state.proximity = compute_proximity(state.my_location, state.partner_location)

            if record.pair_id != state.pair_id or not self._pair_slot.active:
                state.pair_id = record.pair_id
                if record.pair_id is None:
                    self._pair_slot.cancel()
                    self._clear_partner()
                else:
                    pair_id = record.pair_id
                    self._pair_slot.bind(
                        pair_id,
                        lambda cb: self._store.subscribe(self._pairs, pair_id, cb),
                        lambda _before, after: self._on_pair(uid, pair_id, after),
                    )
        self._emit()

    def _on_pair(self, uid: str, pair_id: str, data: dict[str, Any] | None) -> None:
        with self._lock:
            partner_uid = resolve_partner(uid, parse_pair(pair_id, data))
            if partner_uid != self._state.partner_uid or not self._partner_slot.active:
                self._clear_partner()
                self._state.partner_uid = partner_uid
                if partner_uid is None:
                    self._partner_slot.cancel()
                else:
                    self._partner_slot.bind(
                        partner_uid,
                        lambda cb: self._store.subscribe(self._users, partner_uid, cb),
                        lambda _before, after: self._on_partner(partner_uid, after),
                    )
        self._emit()

    def _on_partner(self, partner_uid: str, data: dict[str, Any] | None) -> None:
        opened_name: str | None = None
        with self._lock:
            state = self._state
            if data is None:
                self._clear_partner(keep_uid=True)
            else:
                record = UserRecord.from_doc(partner_uid, data)
                state.partner_name = record.display_name
                state.partner_mood = record.mood_code
                state.partner_weather = record.weather

                previous = state.partner_last_opened_at
                current = record.last_opened_at
                # The first observation is a baseline, not an "opened" event.
                if previous is not None and current is not None and current > previous:
                    opened_name = record.display_name or self._fallback_name
                # Keep the latest value seen; an older write never re-arms an old open.
                if current is not None and (previous is None or current > previous):
                    state.partner_last_opened_at = current

                if not _same_point(state.partner_location, record.location):
                    state.partner_location = record.location
                    state.proximity = compute_proximity(state.my_location, state.partner_location)

        if opened_name is not None:
            for listener in list(self._opened_listeners):
                listener(opened_name)
        self._emit()

    # -- helpers ---------------------------------------------------------

    def _clear_partner(self, keep_uid: bool = False) -> None:
        state = self._state
        if not keep_uid:
            state.partner_uid = None
        state.partner_name = ""
        state.partner_mood = None
        state.partner_weather = None
        state.partner_location = None
        state.partner_last_opened_at = None
        state.proximity = ProximityState.empty()

    def _emit(self) -> None:
        snapshot = self.state
        for listener in list(self._listeners):
            listener(snapshot)
