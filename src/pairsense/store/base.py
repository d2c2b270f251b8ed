"""
Document store contract.

The engine talks to storage only through this narrow interface:
- `get` / `set` (with merge semantics) on `collection/doc_id`,
- `subscribe` for per-document change callbacks,
- `run_in_transaction` for the one compare-and-set the engine needs (pair join).

Two write sentinels are part of the contract and are translated by each backend:
`SERVER_TIMESTAMP` (resolved by the store at write time) and `DELETE_FIELD`
(removes a key during a merge write).
"""

from __future__ import annotations

from typing import Any, Callable, Protocol, TypeVar

T = TypeVar("T")

Document = dict[str, Any]
ChangeCallback = Callable[["Document | None", "Document | None"], None]
Unsubscribe = Callable[[], None]


class _Sentinel:
    def __init__(self, name: str):
        self._name = name

    def __repr__(self) -> str:
        return self._name


SERVER_TIMESTAMP = _Sentinel("SERVER_TIMESTAMP")
DELETE_FIELD = _Sentinel("DELETE_FIELD")


class StoreError(RuntimeError):
    """Transport/backend failure talking to the document store."""


class Transaction(Protocol):
    def get(self, collection: str, doc_id: str) -> Document | None: ...

    def set(self, collection: str, doc_id: str, fields: Document, *, merge: bool = False) -> None: ...


class DocumentStore(Protocol):
    def get(self, collection: str, doc_id: str) -> Document | None: ...

    def set(self, collection: str, doc_id: str, fields: Document, *, merge: bool = False) -> None: ...

    def subscribe(self, collection: str, doc_id: str, on_change: ChangeCallback) -> Unsubscribe:
        """Call `on_change(before, after)` now with the current state, then on every change."""
        ...

    def run_in_transaction(self, fn: Callable[[Transaction], T]) -> T:
        """Run `fn` atomically; reads inside `fn` must be done before its writes."""
        ...
