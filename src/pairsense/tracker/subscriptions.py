"""
Owned, generation-scoped subscriptions.

Each `SubscriptionSlot` holds at most one live store subscription. Re-binding a slot
to a new key cancels the previous subscription first and bumps the slot generation;
callbacks still in flight from an older generation are dropped. Slots form a tree:
cancelling a parent synchronously cancels its children before anything re-subscribes.
"""

from __future__ import annotations

import logging
import threading
from contextlib import nullcontext
from typing import Any, Callable

from pairsense.store.base import Unsubscribe

logger = logging.getLogger(__name__)

Subscriber = Callable[[Callable[..., None]], Unsubscribe]


class SubscriptionSlot:
    def __init__(
        self,
        name: str,
        parent: "SubscriptionSlot | None" = None,
        *,
        lock: threading.RLock | None = None,
    ):
        self.name = name
        self._lock = lock
        self.key: str | None = None
        self.generation = 0
        self._unsubscribe: Unsubscribe | None = None
        self._children: list[SubscriptionSlot] = []
        if parent is not None:
            parent._children.append(self)

    @property
    def active(self) -> bool:
        return self._unsubscribe is not None

    def bind(self, key: str | None, subscribe: Subscriber, handler: Callable[..., None]) -> None:
        """Point the slot at `key`; a None key just tears the slot down."""
        if key is not None and key == self.key and self.active:
            return

        self.cancel()
        if key is None:
            return

        self.generation += 1
        generation = self.generation
        self.key = key

        def guarded(*args: Any) -> None:
            # Generation check and handler run under the owner lock.
            with self._lock if self._lock is not None else nullcontext():
                if generation != self.generation:
                    logger.debug("Dropping stale %s callback (generation %s < %s)", self.name, generation, self.generation)
                    return
                handler(*args)

        unsubscribe = subscribe(guarded)
        if generation == self.generation:
            self._unsubscribe = unsubscribe
        else:
            # The initial callback already re-bound or cancelled this slot.
            unsubscribe()

    def cancel(self) -> None:
        for child in self._children:
            child.cancel()
        self.generation += 1
        self.key = None
        unsubscribe, self._unsubscribe = self._unsubscribe, None
        if unsubscribe is not None:
            unsubscribe()
