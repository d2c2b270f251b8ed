"""
Firestore-backed document store (firebase-admin).

Translates the store contract onto the Admin SDK:
- write sentinels -> `firestore.SERVER_TIMESTAMP` / `firestore.DELETE_FIELD`,
- `subscribe` -> `DocumentReference.on_snapshot` (callbacks run on the SDK's watch thread),
- `run_in_transaction` -> `@firestore.transactional` (the SDK retries on contention).
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Mapping, TypeVar

import firebase_admin
from firebase_admin import credentials, firestore
from google.api_core import exceptions as google_exceptions

from pairsense.config.settings import Settings
from pairsense.core.env import resolve_project_path
from pairsense.store.base import DELETE_FIELD, SERVER_TIMESTAMP, ChangeCallback, Document, StoreError, Unsubscribe

logger = logging.getLogger(__name__)

T = TypeVar("T")


def init_firebase_app(settings: Settings) -> firebase_admin.App:
    """Initialize the default Firebase app once (explicit credentials or ADC)."""
    if firebase_admin._apps:
        return firebase_admin.get_app()

    cred_path = settings.firebase.credentials_path
    if cred_path:
        resolved = resolve_project_path(cred_path)
        if not os.path.exists(resolved):
            raise FileNotFoundError(f"Firebase credentials file not found: {resolved}")
        app = firebase_admin.initialize_app(credentials.Certificate(str(resolved)))
    else:
        app = firebase_admin.initialize_app()
    logger.info("Firebase app initialized (project=%s)", app.project_id)
    return app


def _translate(value: Any, *, merge: bool) -> Any:
    if value is SERVER_TIMESTAMP:
        return firestore.SERVER_TIMESTAMP
    if isinstance(value, Mapping):
        out: dict[str, Any] = {}
        for k, v in value.items():
            if v is DELETE_FIELD:
                # Firestore only accepts DELETE_FIELD on merge writes.
                if merge:
                    out[k] = firestore.DELETE_FIELD
                continue
            out[k] = _translate(v, merge=merge)
        return out
    if isinstance(value, list):
        return [_translate(v, merge=merge) for v in value]
    return value


class FirestoreDocumentStore:
    """`DocumentStore` implementation over a (possibly named) Firestore database."""

    def __init__(self, settings: Settings, client: Any | None = None):
        if client is None:
            init_firebase_app(settings)
            database = settings.firebase.database
            client = firestore.client(database_id=database) if database else firestore.client()
        self._db = client

    def _ref(self, collection: str, doc_id: str) -> Any:
        return self._db.collection(collection).document(doc_id)

    def get(self, collection: str, doc_id: str) -> Document | None:
        try:
            snap = self._ref(collection, doc_id).get()
        except google_exceptions.GoogleAPICallError as exc:
            raise StoreError(f"Firestore read failed for {collection}/{doc_id}: {exc}") from exc
        return snap.to_dict() if snap.exists else None

    def set(self, collection: str, doc_id: str, fields: Document, *, merge: bool = False) -> None:
        try:
            self._ref(collection, doc_id).set(_translate(fields, merge=merge), merge=merge)
        except google_exceptions.GoogleAPICallError as exc:
            raise StoreError(f"Firestore write failed for {collection}/{doc_id}: {exc}") from exc

    def subscribe(self, collection: str, doc_id: str, on_change: ChangeCallback) -> Unsubscribe:
        last: dict[str, Document | None] = {"data": None}

        def _on_snapshot(doc_snapshots: list[Any], _changes: Any, _read_time: Any) -> None:
            snap = doc_snapshots[0] if doc_snapshots else None
            after = snap.to_dict() if snap is not None and snap.exists else None
            before = last["data"]
            last["data"] = after
            on_change(before, after)

        watch = self._ref(collection, doc_id).on_snapshot(_on_snapshot)
        return watch.unsubscribe

    def run_in_transaction(self, fn: Callable[["_FirestoreTransaction"], T]) -> T:
        transaction = self._db.transaction()

        @firestore.transactional
        def _run(transaction):
            return fn(_FirestoreTransaction(self, transaction))

        try:
            return _run(transaction)
        except google_exceptions.GoogleAPICallError as exc:
            raise StoreError(f"Firestore transaction failed: {exc}") from exc


class _FirestoreTransaction:
    def __init__(self, store: FirestoreDocumentStore, transaction: Any):
        self._store = store
        self._tx = transaction

    def get(self, collection: str, doc_id: str) -> Document | None:
        snap = self._store._ref(collection, doc_id).get(transaction=self._tx)
        return snap.to_dict() if snap.exists else None

    def set(self, collection: str, doc_id: str, fields: Document, *, merge: bool = False) -> None:
        self._tx.set(self._store._ref(collection, doc_id), _translate(fields, merge=merge), merge=merge)
