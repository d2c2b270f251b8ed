"""
Change-trigger pipeline for `users/{uid}` writes.

Every write to a user record is delivered here as `(before, after)`. Two independent
effects may run:

- Weather enrichment: when the location moved beyond the configured tolerance, look
  up current conditions and merge `weather` back into the same record.
- Partner notification: when `lastOpenedAt` advanced, push "opened the app" to the
  partner's devices.

Invariants:
- effects only write fields that cannot re-trigger them (`weather`, token cleanup,
  the event claim), so the pipeline never loops on its own output;
- each effect fails on its own; a failed weather lookup never blocks the push;
- external failures are logged and the event is dropped (no inline retry);
- duplicate deliveries are harmless: the stored weather records the location it was
  looked up for and a replay for that location neither looks up nor writes, and
  each open event is claimed once before dispatch.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping

from pairsense.config.settings import Settings
from pairsense.core.time import to_epoch_ms, utc_now
from pairsense.domain.models import EffectOutcome, Location, NotificationPayload, TriggerOutcome, UserRecord
from pairsense.ingestion.weather_client import WeatherLookup, WeatherLookupError
from pairsense.notifications.dispatcher import NotificationDispatcher, PushTransportError
from pairsense.pairing.service import parse_pair, resolve_partner
from pairsense.store.base import SERVER_TIMESTAMP, DocumentStore, StoreError, Transaction
from pairsense.triggers.weather import build_snapshot

logger = logging.getLogger(__name__)


def _location(doc: Mapping[str, Any] | None) -> Location | None:
    if not doc:
        return None
    return Location.from_value(doc.get("location"))


def _weather_source(doc: Mapping[str, Any] | None) -> Any:
    weather = (doc or {}).get("weather")
    if not isinstance(weather, Mapping):
        return None
    return weather.get("sourceLocation")


def should_refresh_weather(
    before: Mapping[str, Any] | None,
    after: Mapping[str, Any] | None,
    tolerance_deg: float,
) -> tuple[bool, str | None]:
    """Decide whether a write moved the user far enough to refresh weather.

    Returns `(run, skip_reason)`.
    """
    new = _location(after)
    if new is None:
        return False, "no_location"
    old = _location(before)
    if old is None:
        return True, None
    if abs(new.lat - old.lat) <= tolerance_deg and abs(new.lng - old.lng) <= tolerance_deg:
        return False, "location_unchanged"
    return True, None


def should_notify_partner(
    before: Mapping[str, Any] | None,
    after: Mapping[str, Any] | None,
    debounce_window_ms: int = 0,
) -> tuple[bool, str | None]:
    """Decide whether a write is a new "app opened" event."""
    opened = to_epoch_ms((after or {}).get("lastOpenedAt"))
    if opened is None:
        return False, "no_last_opened_at"
    previous = to_epoch_ms((before or {}).get("lastOpenedAt"))
    if previous is None:
        return True, None
    if opened <= previous:
        return False, "last_opened_at_unchanged"
    if debounce_window_ms and opened - previous <= debounce_window_ms:
        return False, "within_debounce_window"
    return True, None


class ChangeTriggerPipeline:
    def __init__(
        self,
        store: DocumentStore,
        weather: WeatherLookup,
        dispatcher: NotificationDispatcher,
        settings: Settings,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._store = store
        self._weather = weather
        self._dispatcher = dispatcher
        self._settings = settings
        self._clock = clock
        self._users = settings.firebase.users_collection
        self._pairs = settings.firebase.pairs_collection
        self._events = settings.firebase.events_collection

    def handle(
        self,
        uid: str,
        before: Mapping[str, Any] | None,
        after: Mapping[str, Any] | None,
    ) -> TriggerOutcome:
        outcome = TriggerOutcome(uid=uid)
        if after is None:
            outcome.weather.skipped_reason = "deleted"
            outcome.notification.skipped_reason = "deleted"
            logger.info("User %s deleted; nothing to do", uid)
            return outcome

        tolerance = float(self._settings.triggers.movement_tolerance_deg)
        run, reason = should_refresh_weather(before, after, tolerance)
        outcome.weather = self.refresh_weather(uid, after) if run else EffectOutcome(skipped_reason=reason)

        debounce = int(self._settings.triggers.debounce_window_ms)
        run, reason = should_notify_partner(before, after, debounce)
        outcome.notification = self.notify_partner(uid, after) if run else EffectOutcome(skipped_reason=reason)

        logger.debug("Trigger outcome for %s: %s", uid, outcome.model_dump())
        return outcome

    # ----------------------------
    # Weather
    # ----------------------------
    def refresh_weather(self, uid: str, after: Mapping[str, Any]) -> EffectOutcome:
        location = _location(after)
        if location is None:
            return EffectOutcome(skipped_reason="no_location")
        source = {"lat": location.lat, "lng": location.lng}

        try:
            if _weather_source(self._store.get(self._users, uid)) == source:
                logger.info("Weather for %s already reflects %s; skipping replay", uid, source)
                return EffectOutcome(skipped_reason="already_enriched")
        except StoreError as exc:
            logger.error("Reading weather of %s failed: %s", uid, exc)
            return EffectOutcome(ran=True, error=str(exc))

        try:
            observation = self._weather.lookup(lat=location.lat, lon=location.lng)
        except WeatherLookupError as exc:
            logger.warning("Weather lookup for %s failed: %s", uid, exc)
            return EffectOutcome(ran=True, error=str(exc))

        snapshot = build_snapshot(observation, source)

        def write(tx: Transaction) -> bool:
            # A concurrent delivery of the same event may have written first.
            if _weather_source(tx.get(self._users, uid)) == source:
                return False
            tx.set(self._users, uid, {"weather": snapshot.to_doc()}, merge=True)
            return True

        try:
            written = self._store.run_in_transaction(write)
        except StoreError as exc:
            logger.error("Writing weather for %s failed: %s", uid, exc)
            return EffectOutcome(ran=True, error=str(exc))
        if not written:
            return EffectOutcome(skipped_reason="already_enriched")

        logger.info("Weather for %s updated: %s", uid, snapshot.condition)
        return EffectOutcome(
            ran=True,
            details={"condition": snapshot.condition, "isDaytime": snapshot.is_daytime},
        )

    # ----------------------------
    # Partner notification
    # ----------------------------
    def notify_partner(self, uid: str, after: Mapping[str, Any]) -> EffectOutcome:
        record = UserRecord.from_doc(uid, after)
        if not record.pair_id:
            return EffectOutcome(skipped_reason="not_paired")

        try:
            pair = parse_pair(record.pair_id, self._store.get(self._pairs, record.pair_id))
            partner_uid = resolve_partner(uid, pair)
            if partner_uid is None:
                return EffectOutcome(skipped_reason="no_partner")

            partner = UserRecord.from_doc(partner_uid, self._store.get(self._users, partner_uid))
            if not partner.notification_tokens:
                return EffectOutcome(skipped_reason="no_tokens", details={"partnerUid": partner_uid})

            event_id = f"{uid}_{to_epoch_ms(after.get('lastOpenedAt'))}"
            if not self._claim_event(event_id, uid, partner_uid):
                logger.info("Open event %s already handled; skipping duplicate delivery", event_id)
                return EffectOutcome(skipped_reason="duplicate_event", details={"eventId": event_id})
        except StoreError as exc:
            logger.error("Resolving partner of %s failed: %s", uid, exc)
            return EffectOutcome(ran=True, error=str(exc))

        sender = record.display_name or self._settings.notifications.fallback_sender_name
        payload = NotificationPayload(
            title=self._settings.notifications.title,
            body=f"{sender} opened the app",
            data={
                "type": "partner_opened",
                "fromUid": uid,
                "fromName": sender,
                "pairId": record.pair_id,
            },
        )
        try:
            result = self._dispatcher.send(partner_uid, partner.notification_tokens, payload)
        except PushTransportError as exc:
            logger.error("Push to partner %s of %s failed: %s", partner_uid, uid, exc)
            return EffectOutcome(ran=True, error=str(exc), details={"partnerUid": partner_uid})

        return EffectOutcome(
            ran=True,
            details={
                "partnerUid": partner_uid,
                "successCount": result.success_count,
                "failureCount": result.failure_count,
                "invalidTokens": list(result.invalid_tokens),
            },
        )

    def _claim_event(self, event_id: str, uid: str, partner_uid: str) -> bool:
        """Record the open event once; False when an earlier delivery already claimed it.

        Claims carry `expireAt` so a TTL policy can remove them after the retention window.
        """
        retention = timedelta(days=self._settings.firebase.events_retention_days)

        def claim(tx: Transaction) -> bool:
            if tx.get(self._events, event_id) is not None:
                return False
            tx.set(
                self._events,
                event_id,
                {
                    "type": "partner_opened",
                    "fromUid": uid,
                    "toUid": partner_uid,
                    "claimedAt": SERVER_TIMESTAMP,
                    "expireAt": self._clock() + retention,
                },
            )
            return True

        return self._store.run_in_transaction(claim)
