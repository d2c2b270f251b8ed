"""
Periodic location sharing.

The client reads the geolocation sensor and merges `location{lat, lng, updatedAt}`
into its own user record. Refreshes are rate-limited to one per configured interval
(to bound battery and write volume), carry a sensor timeout, and are discarded if
the session that started them has ended by the time the sensor answers.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Literal, Protocol

from pairsense.config.settings import Settings
from pairsense.core.geo import is_valid_coordinate
from pairsense.store.base import SERVER_TIMESTAMP, DocumentStore, StoreError

logger = logging.getLogger(__name__)

GeolocationErrorKind = Literal["permission_denied", "unavailable", "timeout"]

LocationStatus = Literal[
    "shared",
    "permission_denied",
    "unavailable",
    "timeout",
    "failed",
    "stale_session",
    "throttled",
    "no_session",
]


@dataclass(frozen=True)
class Position:
    lat: float
    lng: float


class GeolocationError(Exception):
    def __init__(self, kind: GeolocationErrorKind, message: str = ""):
        super().__init__(message or kind)
        self.kind = kind


class GeolocationSensor(Protocol):
    def get_current_position(self, *, timeout_seconds: float, high_accuracy: bool) -> Position:
        """Return a fix or raise `GeolocationError`."""
        ...


class LocationReporter:
    """Shares the signed-in user's position at most once per interval."""

    def __init__(
        self,
        store: DocumentStore,
        sensor: GeolocationSensor,
        settings: Settings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._store = store
        self._sensor = sensor
        self._users = settings.firebase.users_collection
        self._interval = float(settings.tracker.location_refresh_interval_seconds)
        self._timeout = float(settings.tracker.location_timeout_seconds)
        self._high_accuracy = bool(settings.tracker.high_accuracy)
        self._clock = clock

        self._lock = threading.Lock()
        self._uid: str | None = None
        self._generation = 0
        self._last_attempt: float | None = None

    def start_session(self, uid: str) -> None:
        with self._lock:
            self._uid = uid
            self._generation += 1
            self._last_attempt = None

    def end_session(self) -> None:
        with self._lock:
            self._uid = None
            self._generation += 1

    def on_session(self, uid: str | None) -> None:
        """`SessionSource` callback adapter."""
        if uid is None:
            self.end_session()
        else:
            self.start_session(uid)

    def maybe_refresh(self) -> LocationStatus:
        """Refresh only if the interval has elapsed since the last attempt."""
        with self._lock:
            now = self._clock()
            if self._last_attempt is not None and now - self._last_attempt < self._interval:
                return "throttled"
        return self.refresh(silent=True)

    def refresh(self, silent: bool = False) -> LocationStatus:
        with self._lock:
            uid, generation = self._uid, self._generation
            if uid is None:
                return "no_session"
            self._last_attempt = self._clock()

        try:
            pos = self._sensor.get_current_position(
                timeout_seconds=self._timeout, high_accuracy=self._high_accuracy
            )
        except GeolocationError as exc:
            log = logger.debug if silent else logger.warning
            log("Geolocation failed for %s: %s", uid, exc.kind)
            return exc.kind

        with self._lock:
            if generation != self._generation:
                logger.info("Discarding location fix that outlived its session (%s)", uid)
                return "stale_session"

        if not is_valid_coordinate(pos.lat, pos.lng):
            logger.warning("Sensor returned an invalid coordinate for %s: %s", uid, pos)
            return "unavailable"

        try:
            self._store.set(
                self._users,
                uid,
                {"location": {"lat": float(pos.lat), "lng": float(pos.lng), "updatedAt": SERVER_TIMESTAMP}},
                merge=True,
            )
        except StoreError as exc:
            logger.warning("Saving location failed for %s: %s", uid, exc)
            return "failed"
        return "shared"

    def run(self, stop: threading.Event) -> None:
        """Poll until `stop` is set: one silent refresh now, then once per interval."""
        while not stop.is_set():
            self.maybe_refresh()
            stop.wait(self._interval)
