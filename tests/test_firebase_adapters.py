import pytest
from firebase_admin import exceptions, firestore, messaging
from google.api_core import exceptions as google_exceptions

from pairsense.config.settings import get_settings
from pairsense.notifications.fcm import error_code_for
from pairsense.store.base import DELETE_FIELD, SERVER_TIMESTAMP, StoreError
from pairsense.store.firestore import FirestoreDocumentStore, _translate


class _FakeSnapshot:
    def __init__(self, data):
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return dict(self._data)


class _FakeDocRef:
    def __init__(self, client, path):
        self.client = client
        self.path = path

    def get(self):
        if self.client.fail:
            raise google_exceptions.ServiceUnavailable("firestore down")
        return _FakeSnapshot(self.client.docs.get(self.path))

    def set(self, data, merge=False):
        if self.client.fail:
            raise google_exceptions.ServiceUnavailable("firestore down")
        self.client.writes.append((self.path, data, merge))


class _FakeCollection:
    def __init__(self, client, name):
        self.client = client
        self.name = name

    def document(self, doc_id):
        return _FakeDocRef(self.client, f"{self.name}/{doc_id}")


class _FakeClient:
    def __init__(self, docs=None, fail=False):
        self.docs = docs or {}
        self.fail = fail
        self.writes = []

    def collection(self, name):
        return _FakeCollection(self, name)


def test_translate_maps_sentinels():
    fields = {"lastOpenedAt": SERVER_TIMESTAMP, "notificationTokens": {"bad": DELETE_FIELD, "ok": True}}

    merged = _translate(fields, merge=True)
    assert merged["lastOpenedAt"] is firestore.SERVER_TIMESTAMP
    assert merged["notificationTokens"] == {"bad": firestore.DELETE_FIELD, "ok": True}

    # Outside a merge, deleting a field means leaving it out.
    assert _translate(fields, merge=False)["notificationTokens"] == {"ok": True}


def test_store_reads_and_writes_through_client():
    client = _FakeClient(docs={"users/alice": {"displayName": "Alice"}})
    store = FirestoreDocumentStore(get_settings(), client=client)

    assert store.get("users", "alice") == {"displayName": "Alice"}
    assert store.get("users", "nobody") is None

    store.set("users", "alice", {"moodCode": "ok"}, merge=True)
    assert client.writes == [("users/alice", {"moodCode": "ok"}, True)]


def test_backend_errors_become_store_errors():
    store = FirestoreDocumentStore(get_settings(), client=_FakeClient(fail=True))

    with pytest.raises(StoreError, match="read failed"):
        store.get("users", "alice")
    with pytest.raises(StoreError, match="write failed"):
        store.set("users", "alice", {"moodCode": "ok"})


def test_fcm_error_codes():
    assert error_code_for(None) is None
    assert error_code_for(messaging.UnregisteredError("gone")) == "registration-token-not-registered"
    assert (
        error_code_for(exceptions.InvalidArgumentError("The registration token is not a valid FCM registration token"))
        == "invalid-registration-token"
    )
    assert error_code_for(messaging.SenderIdMismatchError("other project")) == "mismatched-credential"


def test_fcm_payload_level_invalid_argument_keeps_tokens():
    exc = exceptions.InvalidArgumentError("Android message is too big")
    assert error_code_for(exc) == "invalid-argument"
