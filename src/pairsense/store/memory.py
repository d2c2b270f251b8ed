"""
In-process document store.

Implements the `DocumentStore` contract with Firestore-like semantics:
- merge writes deep-merge nested maps and honor `DELETE_FIELD`,
- `SERVER_TIMESTAMP` resolves to the store clock,
- subscribers get `(before, after)` after every write to their document,
- transactions are serialized by a re-entrant lock, so a read-then-write inside
  `run_in_transaction` is a true compare-and-set.

Used by the test suite and by CLI replays that should not touch a real project.
"""

from __future__ import annotations

import copy
import itertools
import logging
import threading
from datetime import datetime
from typing import Any, Callable, Mapping, TypeVar

from pairsense.core.time import utc_now
from pairsense.store.base import DELETE_FIELD, SERVER_TIMESTAMP, ChangeCallback, Document, Unsubscribe

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _resolve(value: Any, now: datetime) -> Any:
    if value is SERVER_TIMESTAMP:
        return now
    if isinstance(value, Mapping):
        return {k: _resolve(v, now) for k, v in value.items() if v is not DELETE_FIELD}
    if isinstance(value, list):
        return [_resolve(v, now) for v in value]
    return value


def _merge(base: dict[str, Any], fields: Mapping[str, Any], now: datetime) -> dict[str, Any]:
    merged = dict(base)
    for key, value in fields.items():
        if value is DELETE_FIELD:
            merged.pop(key, None)
        elif isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _merge(dict(merged[key]), value, now)
        else:
            merged[key] = _resolve(value, now)
    return merged


class InMemoryDocumentStore:
    """Thread-safe dict-backed store keyed by (collection, doc_id)."""

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._clock = clock
        self._docs: dict[tuple[str, str], Document] = {}
        self._subscribers: dict[tuple[str, str], dict[int, ChangeCallback]] = {}
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self.write_count = 0

    def get(self, collection: str, doc_id: str) -> Document | None:
        with self._lock:
            doc = self._docs.get((collection, doc_id))
            return copy.deepcopy(doc) if doc is not None else None

    def set(self, collection: str, doc_id: str, fields: Document, *, merge: bool = False) -> None:
        with self._lock:
            before, after = self._apply(collection, doc_id, fields, merge=merge)
        self._notify(collection, doc_id, before, after)

    def subscribe(self, collection: str, doc_id: str, on_change: ChangeCallback) -> Unsubscribe:
        key = (collection, doc_id)
        with self._lock:
            sub_id = next(self._ids)
            self._subscribers.setdefault(key, {})[sub_id] = on_change
            current = copy.deepcopy(self._docs.get(key))

        on_change(None, current)

        def unsubscribe() -> None:
            with self._lock:
                self._subscribers.get(key, {}).pop(sub_id, None)

        return unsubscribe

    def subscriber_count(self, collection: str, doc_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get((collection, doc_id), {}))

    def run_in_transaction(self, fn: Callable[["_MemoryTransaction"], T]) -> T:
        with self._lock:
            tx = _MemoryTransaction(self)
            result = fn(tx)
            changes = [
                (collection, doc_id, *self._apply(collection, doc_id, fields, merge=merge))
                for collection, doc_id, fields, merge in tx.writes
            ]
        for collection, doc_id, before, after in changes:
            self._notify(collection, doc_id, before, after)
        return result

    def _apply(
        self, collection: str, doc_id: str, fields: Document, *, merge: bool
    ) -> tuple[Document | None, Document]:
        key = (collection, doc_id)
        now = self._clock()
        before = self._docs.get(key)
        if merge and before is not None:
            after = _merge(before, fields, now)
        else:
            after = _merge({}, fields, now)
        self._docs[key] = after
        self.write_count += 1
        return copy.deepcopy(before), copy.deepcopy(after)

    def _notify(self, collection: str, doc_id: str, before: Document | None, after: Document | None) -> None:
        with self._lock:
            callbacks = list(self._subscribers.get((collection, doc_id), {}).values())
        for cb in callbacks:
            try:
                cb(copy.deepcopy(before), copy.deepcopy(after))
            except Exception:
                logger.exception("Subscriber callback failed for %s/%s", collection, doc_id)


class _MemoryTransaction:
    """Buffers writes until the transaction function returns."""

    def __init__(self, store: InMemoryDocumentStore):
        self._store = store
        self.writes: list[tuple[str, str, Document, bool]] = []

    def get(self, collection: str, doc_id: str) -> Document | None:
        if self.writes:
            raise RuntimeError("Transaction reads must happen before writes.")
        return self._store.get(collection, doc_id)

    def set(self, collection: str, doc_id: str, fields: Document, *, merge: bool = False) -> None:
        self.writes.append((collection, doc_id, dict(fields), merge))
