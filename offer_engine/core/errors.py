"""
Offer Engine Errors
===================
Every failure the engine surfaces has a stable `code` so callers
(API, UI, cron wrapper) can tell them apart without parsing messages.
"""

from typing import Optional


class OfferEngineError(Exception):
    code = "offer_engine_error"

    def __init__(self, message: str, offer_id: Optional[str] = None):
        super().__init__(message)
        self.offer_id = offer_id


class OfferNotFound(OfferEngineError):
    code = "offer_not_found"

    def __init__(self, offer_id: str):
        super().__init__(f"Offer {offer_id} not found", offer_id)


class AlreadyResolved(OfferEngineError):
    """Transition attempted on an offer that is already terminal."""
    code = "already_resolved"

    def __init__(self, offer_id: str, status: str):
        super().__init__(
            f"Offer {offer_id} is already {status}", offer_id
        )
        self.status = status


class VersionConflict(OfferEngineError):
    """Stored version no longer matches what the caller read."""
    code = "version_conflict"

    def __init__(self, offer_id: str, expected: Optional[int], actual: Optional[int]):
        super().__init__(
            f"Offer {offer_id} changed: expected version {expected}, found {actual}",
            offer_id,
        )
        self.expected = expected
        self.actual = actual


class IllegalTransition(OfferEngineError):
    code = "illegal_transition"

    def __init__(self, offer_id: str, from_status: str, to_status: str):
        super().__init__(
            f"Illegal transition for offer {offer_id}: {from_status} -> {to_status}",
            offer_id,
        )
        self.from_status = from_status
        self.to_status = to_status


class InvalidAction(OfferEngineError):
    """Unknown customer action or target status."""
    code = "invalid_action"

    def __init__(self, offer_id: str, value):
        super().__init__(f"Unknown action {value!r} for offer {offer_id}", offer_id)
        self.value = value


class StoreUnavailable(OfferEngineError):
    """Persistence layer failed. Aborts a sweep run."""
    code = "store_unavailable"


class NotificationFailed(OfferEngineError):
    """Non-fatal. Recorded in the sweep report, never rolls back state."""
    code = "notification_failed"

    def __init__(self, offer_id: str, recipient_id: Optional[str], tag: str, reason: str = ""):
        super().__init__(
            f"Notification {tag} to {recipient_id} for offer {offer_id} failed: {reason}",
            offer_id,
        )
        self.recipient_id = recipient_id
        self.tag = tag
        self.reason = reason
