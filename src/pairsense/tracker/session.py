"""
Client session: sign-in state and the writes a signed-in user makes to their own record.

`LocalSessionSource` is the in-process source of "who is signed in" that drives the
proximity tracker. `UserSession` bootstraps the user record on sign-in and performs
the small owner-only writes (mood, notification token).
"""

from __future__ import annotations

import logging
import threading
from typing import Callable, Protocol

from pairsense.config.settings import Settings
from pairsense.domain.models import MOOD_CODES, UserRecord
from pairsense.store.base import SERVER_TIMESTAMP, DocumentStore, StoreError, Unsubscribe

logger = logging.getLogger(__name__)

SessionCallback = Callable[[str | None], None]


class SessionSource(Protocol):
    def subscribe(self, on_session: SessionCallback) -> Unsubscribe: ...


class LocalSessionSource:
    """Holds the signed-in uid and notifies listeners on sign-in/sign-out."""

    def __init__(self, uid: str | None = None):
        self._uid = uid
        self._listeners: dict[int, SessionCallback] = {}
        self._next_id = 0
        self._lock = threading.Lock()

    @property
    def uid(self) -> str | None:
        return self._uid

    def subscribe(self, on_session: SessionCallback) -> Unsubscribe:
        with self._lock:
            self._next_id += 1
            listener_id = self._next_id
            self._listeners[listener_id] = on_session
        on_session(self._uid)

        def unsubscribe() -> None:
            with self._lock:
                self._listeners.pop(listener_id, None)

        return unsubscribe

    def sign_in(self, uid: str) -> None:
        self._emit(uid)

    def sign_out(self) -> None:
        self._emit(None)

    def _emit(self, uid: str | None) -> None:
        with self._lock:
            self._uid = uid
            listeners = list(self._listeners.values())
        for listener in listeners:
            listener(uid)


class UserSession:
    """Owner-side writes to `users/{uid}`."""

    def __init__(self, store: DocumentStore, settings: Settings, uid: str):
        self._store = store
        self._users = settings.firebase.users_collection
        self.uid = uid

    def ensure_user_record(self, display_name: str = "") -> UserRecord:
        """Create the record on first sign-in, otherwise stamp `lastOpenedAt`.

        The `lastOpenedAt` write is what tells the partner that the app was opened.
        A storage failure is logged and a minimal in-memory record is returned so
        the client can keep running.
        """
        try:
            data = self._store.get(self._users, self.uid)
            if data is None:
                self._store.set(
                    self._users,
                    self.uid,
                    {
                        "uid": self.uid,
                        "displayName": display_name,
                        "moodCode": None,
                        "lastOpenedAt": SERVER_TIMESTAMP,
                        "location": None,
                        "weather": None,
                        "pairId": None,
                        "notificationTokens": {},
                    },
                )
                logger.info("Created user record for %s", self.uid)
            else:
                self._store.set(self._users, self.uid, {"lastOpenedAt": SERVER_TIMESTAMP}, merge=True)
            return UserRecord.from_doc(self.uid, self._store.get(self._users, self.uid))
        except StoreError as exc:
            logger.warning("User record bootstrap failed for %s: %s", self.uid, exc)
            return UserRecord(uid=self.uid, display_name=display_name)

    def set_mood(self, mood_code: str | None) -> None:
        if mood_code is not None and mood_code not in MOOD_CODES:
            raise ValueError(f"Unknown mood code '{mood_code}' (expected one of {', '.join(MOOD_CODES)})")
        self._store.set(self._users, self.uid, {"moodCode": mood_code}, merge=True)

    def register_notification_token(self, token: str) -> None:
        token = (token or "").strip()
        if not token:
            raise ValueError("notification token must be a non-empty string")
        self._store.set(self._users, self.uid, {"notificationTokens": {token: True}}, merge=True)
        logger.info("Registered notification token for %s", self.uid)
