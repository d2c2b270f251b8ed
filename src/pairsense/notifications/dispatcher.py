"""
Notification fan-out.

One logical notification goes to every registered device token of a user:
- tokens are de-duplicated and sliced to the provider's batch limit,
- a bad token never blocks delivery to the others,
- tokens the provider reports as invalid/unregistered are removed from the owner's
  `notificationTokens` map in a single merge write once all batches are done.

Only a provider transport failure is raised (`PushTransportError`).
"""

from __future__ import annotations

import logging
from typing import Iterable, Protocol

from pairsense.config.settings import Settings
from pairsense.domain.models import DispatchResult, MulticastResult, NotificationPayload
from pairsense.store.base import DELETE_FIELD, DocumentStore, StoreError

logger = logging.getLogger(__name__)

INVALID_TOKEN_CODES = frozenset({"registration-token-not-registered", "invalid-registration-token"})


class PushTransportError(RuntimeError):
    """The push provider could not be reached or rejected the whole request."""


class PushProvider(Protocol):
    def send_multicast(self, tokens: list[str], payload: NotificationPayload) -> MulticastResult: ...


def chunked(items: list[str], size: int) -> Iterable[list[str]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class NotificationDispatcher:
    def __init__(self, store: DocumentStore, provider: PushProvider, settings: Settings):
        self._store = store
        self._provider = provider
        self._users = settings.firebase.users_collection
        self._batch_size = int(settings.notifications.batch_size)

    def send(self, owner_uid: str, tokens: Iterable[str], payload: NotificationPayload) -> DispatchResult:
        unique = sorted({t for t in tokens if t})
        result = DispatchResult()
        if not unique:
            return result

        invalid: list[str] = []
        try:
            for batch in chunked(unique, self._batch_size):
                response = self._provider.send_multicast(batch, payload)
                result.success_count += response.success_count
                result.failure_count += response.failure_count
                for item in response.responses:
                    if not item.success and item.error_code in INVALID_TOKEN_CODES:
                        invalid.append(item.token)
                    elif not item.success:
                        logger.info("Push to one token of %s failed: %s", owner_uid, item.error_code)
        finally:
            # Cleanup also runs when a later batch hits a transport error.
            if invalid:
                self._remove_tokens(owner_uid, invalid)
                result.invalid_tokens = invalid

        logger.info(
            "Dispatched notification to %s: success=%s failure=%s invalid=%s",
            owner_uid,
            result.success_count,
            result.failure_count,
            len(invalid),
        )
        return result

    def _remove_tokens(self, owner_uid: str, tokens: list[str]) -> None:
        try:
            self._store.set(
                self._users,
                owner_uid,
                {"notificationTokens": {t: DELETE_FIELD for t in tokens}},
                merge=True,
            )
            logger.info("Removed %s invalid notification token(s) for %s", len(tokens), owner_uid)
        except StoreError as exc:
            logger.warning("Invalid-token cleanup failed for %s: %s", owner_uid, exc)
