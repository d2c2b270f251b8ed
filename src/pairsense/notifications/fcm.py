"""
Firebase Cloud Messaging push provider (firebase-admin).

Wraps `messaging.send_each_for_multicast` and maps per-token SDK exceptions onto the
string error codes the dispatcher understands.
"""

from __future__ import annotations

import logging

from firebase_admin import exceptions, messaging

from pairsense.config.settings import Settings
from pairsense.domain.models import MulticastResult, NotificationPayload, TokenResult
from pairsense.notifications.dispatcher import PushTransportError
from pairsense.store.firestore import init_firebase_app

logger = logging.getLogger(__name__)


def error_code_for(exc: Exception | None) -> str | None:
    if exc is None:
        return None
    if isinstance(exc, messaging.UnregisteredError):
        return "registration-token-not-registered"
    if isinstance(exc, messaging.SenderIdMismatchError):
        return "mismatched-credential"
    if isinstance(exc, exceptions.InvalidArgumentError):
        # Payload-level rejections (oversized data, bad fields) share this class.
        text = f"{exc} {getattr(exc, 'cause', None) or ''}".lower()
        if "registration token" in text or "registration-token" in text:
            return "invalid-registration-token"
        return "invalid-argument"
    code = getattr(exc, "code", None)
    return str(code).lower() if code else "unknown"


class FcmPushProvider:
    def __init__(self, settings: Settings):
        self._app = init_firebase_app(settings)

    def send_multicast(self, tokens: list[str], payload: NotificationPayload) -> MulticastResult:
        message = messaging.MulticastMessage(
            tokens=list(tokens),
            notification=messaging.Notification(title=payload.title, body=payload.body),
            data=dict(payload.data),
        )
        try:
            response = messaging.send_each_for_multicast(message, app=self._app)
        except exceptions.FirebaseError as exc:
            raise PushTransportError(f"FCM multicast failed: {exc}") from exc

        results = [
            TokenResult(token=token, success=r.success, error_code=error_code_for(r.exception))
            for token, r in zip(tokens, response.responses)
        ]
        return MulticastResult(
            success_count=response.success_count,
            failure_count=response.failure_count,
            responses=results,
        )
