"""
Pairing state machine.

A pair moves `Unpaired -> Waiting (owner only) -> Active` and is identified by a
6-digit invite code that doubles as the pair id. Both transitions run inside a store
transaction so that the pair document and the participant's `pairId` stamp are
written together, and so that two simultaneous joiners cannot both win.

User errors (unknown code, self-join, code already used, caller already paired) are
returned as `PairingResult` values; only storage failures propagate as exceptions.
"""

from __future__ import annotations

import logging
import secrets
from typing import Any, Callable

from pydantic import ValidationError

from pairsense.config.settings import Settings
from pairsense.domain.models import PairingResult, PairRecord
from pairsense.store.base import SERVER_TIMESTAMP, DocumentStore, Transaction

logger = logging.getLogger(__name__)

CODE_MIN = 100_000
CODE_MAX = 999_999


def generate_invite_code() -> str:
    """Random 6-digit numeric code (100000..999999)."""
    return str(CODE_MIN + secrets.randbelow(CODE_MAX - CODE_MIN + 1))


def resolve_partner(self_uid: str, pair: PairRecord | None) -> str | None:
    """Return the other participant's uid, or None while waiting / not a participant."""
    if pair is None or pair.status != "active":
        return None
    if pair.owner_uid == self_uid:
        return pair.partner_uid
    if pair.partner_uid == self_uid:
        return pair.owner_uid
    return None


def parse_pair(pair_id: str, data: dict[str, Any] | None) -> PairRecord | None:
    """Parse a stored pair document; malformed documents are treated as missing."""
    if data is None:
        return None
    try:
        return PairRecord.from_doc(pair_id, data)
    except ValidationError as exc:
        logger.warning("Ignoring malformed pair document %s: %s", pair_id, exc.errors())
        return None


class _CodeCollision(Exception):
    pass


class PairingService:
    """Create/join pairs against a `DocumentStore`."""

    def __init__(
        self,
        store: DocumentStore,
        settings: Settings,
        *,
        code_factory: Callable[[], str] = generate_invite_code,
    ):
        self._store = store
        self._users = settings.firebase.users_collection
        self._pairs = settings.firebase.pairs_collection
        self._max_attempts = int(settings.pairing.max_code_attempts)
        self._code_factory = code_factory

    def get_pair(self, pair_id: str) -> PairRecord | None:
        return parse_pair(pair_id, self._store.get(self._pairs, pair_id))

    def partner_of(self, uid: str, pair_id: str | None) -> str | None:
        if not pair_id:
            return None
        return resolve_partner(uid, self.get_pair(pair_id))

    def create_invite(self, owner_uid: str, code: str | None = None) -> PairingResult:
        """Create a waiting pair owned by `owner_uid`.

        Passing the `code` chosen by an earlier attempt makes the call an idempotent
        re-write of that same invite (safe to retry after a failed network write).
        """
        candidate = code.strip() if code else None
        for attempt in range(self._max_attempts):
            chosen = candidate or self._code_factory()
            try:
                result = self._store.run_in_transaction(
                    lambda tx, chosen=chosen: self._create_in_transaction(tx, owner_uid, chosen)
                )
            except _CodeCollision:
                logger.info("Invite code collision on attempt %s; drawing a new code", attempt + 1)
                candidate = None
                continue
            if result.ok:
                logger.info("Invite %s ready for owner %s", result.pair_id, owner_uid)
            return result

        logger.warning("Could not allocate an invite code after %s attempts", self._max_attempts)
        return PairingResult.failure("unavailable", "Could not create an invite code. Please try again.")

    def _create_in_transaction(self, tx: Transaction, owner_uid: str, code: str) -> PairingResult:
        user = tx.get(self._users, owner_uid) or {}
        pair_doc = tx.get(self._pairs, code)

        existing = user.get("pairId")
        if existing and existing != code:
            return PairingResult.failure("already_paired", "You are already in a pair.", pair_id=existing)

        pair = parse_pair(code, pair_doc)
        if pair_doc is not None and (pair is None or pair.owner_uid != owner_uid):
            raise _CodeCollision(code)

        if pair is not None and pair.status == "active":
            return PairingResult.success(code, "active", "You are already connected.")

        if pair is None:
            tx.set(
                self._pairs,
                code,
                {
                    "id": code,
                    "ownerUid": owner_uid,
                    "partnerUid": None,
                    "status": "waiting",
                    "createdAt": SERVER_TIMESTAMP,
                },
            )
        tx.set(self._users, owner_uid, {"pairId": code}, merge=True)
        return PairingResult.success(code, "waiting", "Invite code created. Share it with your partner.")

    def join_pair(self, joiner_uid: str, code: str) -> PairingResult:
        """Join a waiting pair as its partner (atomic compare-and-set on the pair status)."""
        code = (code or "").strip()
        if not code:
            return PairingResult.failure("not_found", "Enter an invite code.")

        result = self._store.run_in_transaction(lambda tx: self._join_in_transaction(tx, joiner_uid, code))
        if result.ok:
            logger.info("User %s joined pair %s", joiner_uid, code)
        else:
            logger.info("Join of pair %s by %s refused: %s", code, joiner_uid, result.error)
        return result

    def _join_in_transaction(self, tx: Transaction, joiner_uid: str, code: str) -> PairingResult:
        pair = parse_pair(code, tx.get(self._pairs, code))
        joiner = tx.get(self._users, joiner_uid) or {}

        if pair is None:
            return PairingResult.failure("not_found", "That invite code was not found.")
        if pair.owner_uid == joiner_uid:
            return PairingResult.failure("self_join", "You cannot use your own invite code.", pair_id=code)
        if pair.status == "active" and pair.partner_uid != joiner_uid:
            return PairingResult.failure("already_taken", "That invite code has already been used.", pair_id=code)

        existing = joiner.get("pairId")
        if existing and existing != code:
            return PairingResult.failure("already_paired", "You are already in a pair.", pair_id=existing)

        if pair.status != "active":
            tx.set(self._pairs, code, {"partnerUid": joiner_uid, "status": "active"}, merge=True)
        tx.set(self._users, joiner_uid, {"pairId": code}, merge=True)
        return PairingResult.success(code, "active", "You are now connected.")
