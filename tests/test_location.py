from datetime import datetime, timezone

import pytest

from pairsense.config.settings import get_settings
from pairsense.store.base import StoreError
from pairsense.store.memory import InMemoryDocumentStore
from pairsense.tracker.location import GeolocationError, LocationReporter, Position

NOW = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)


class StubSensor:
    def __init__(self, result):
        self.result = result
        self.calls = []
        self.on_read = None

    def get_current_position(self, *, timeout_seconds, high_accuracy):
        self.calls.append((timeout_seconds, high_accuracy))
        if self.on_read is not None:
            self.on_read()
        if isinstance(self.result, Exception):
            raise self.result
        return self.result


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class FailingStore(InMemoryDocumentStore):
    def set(self, collection, doc_id, fields, *, merge=False):
        raise StoreError("offline")


def _reporter(sensor, store=None, clock=None):
    store = store or InMemoryDocumentStore(clock=lambda: NOW)
    reporter = LocationReporter(store, sensor, get_settings(), clock=clock or FakeClock())
    return store, reporter


def test_refresh_merges_location_with_server_timestamp():
    store, reporter = _reporter(StubSensor(Position(lat=35.0, lng=139.0)))
    store.set("users", "alice", {"displayName": "Alice", "moodCode": "ok"})
    reporter.start_session("alice")

    assert reporter.refresh() == "shared"

    doc = store.get("users", "alice")
    assert doc["location"] == {"lat": 35.0, "lng": 139.0, "updatedAt": NOW}
    assert doc["moodCode"] == "ok"


def test_refresh_passes_timeout_and_accuracy_to_sensor():
    sensor = StubSensor(Position(lat=35.0, lng=139.0))
    _, reporter = _reporter(sensor)
    reporter.start_session("alice")

    reporter.refresh()

    assert sensor.calls == [(10.0, True)]


@pytest.mark.parametrize("kind", ["permission_denied", "unavailable", "timeout"])
def test_sensor_errors_map_to_status(kind):
    store, reporter = _reporter(StubSensor(GeolocationError(kind)))
    reporter.start_session("alice")

    assert reporter.refresh() == kind
    assert store.get("users", "alice") is None


def test_invalid_coordinates_are_not_written():
    store, reporter = _reporter(StubSensor(Position(lat=120.0, lng=0.0)))
    reporter.start_session("alice")

    assert reporter.refresh() == "unavailable"
    assert store.get("users", "alice") is None


def test_store_failure_reports_failed():
    _, reporter = _reporter(StubSensor(Position(lat=35.0, lng=139.0)), store=FailingStore())
    reporter.start_session("alice")

    assert reporter.refresh() == "failed"


def test_no_session_means_no_read():
    sensor = StubSensor(Position(lat=35.0, lng=139.0))
    _, reporter = _reporter(sensor)

    assert reporter.refresh() == "no_session"
    assert sensor.calls == []


def test_fix_that_outlives_its_session_is_discarded():
    sensor = StubSensor(Position(lat=35.0, lng=139.0))
    store, reporter = _reporter(sensor)
    reporter.start_session("alice")
    sensor.on_read = reporter.end_session

    assert reporter.refresh() == "stale_session"
    assert store.get("users", "alice") is None


def test_maybe_refresh_is_rate_limited_by_interval():
    clock = FakeClock()
    sensor = StubSensor(Position(lat=35.0, lng=139.0))
    _, reporter = _reporter(sensor, clock=clock)
    reporter.start_session("alice")

    assert reporter.maybe_refresh() == "shared"
    clock.now += 599
    assert reporter.maybe_refresh() == "throttled"
    clock.now += 1
    assert reporter.maybe_refresh() == "shared"
    assert len(sensor.calls) == 2

    # A new session starts with a fresh interval.
    reporter.on_session("bob")
    assert reporter.maybe_refresh() == "shared"
