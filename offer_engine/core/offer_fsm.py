"""
Offer State Machine
===================
Pure decision logic. No database, no notifier, no clock:
callers pass the offer and `now`, and get back what should happen.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from offer_engine.core.errors import AlreadyResolved, IllegalTransition
from offer_engine.core.offer_states import (
    OfferStatus,
    RecipientRole,
    Trigger,
    TERMINAL_STATES,
    THRESHOLDS,
    is_legal_transition,
)


def ensure_utc(value: Optional[datetime]) -> datetime:
    """Wall clock when None; naive values are taken as UTC."""
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


@dataclass(frozen=True)
class Offer:
    """
    Snapshot of one offer as loaded from the store.
    Never mutated in place: transitions return a new snapshot.
    """
    id: str
    created_at: datetime
    sent_at: Optional[datetime]
    status: OfferStatus = OfferStatus.PENDING
    last_transition_at: Optional[datetime] = None
    notifications_sent: frozenset = field(default_factory=frozenset)
    assigned_owner_id: Optional[str] = None
    customer_contact_id: Optional[str] = None
    amount: Optional[Decimal] = None
    currency: Optional[str] = None
    title: Optional[str] = None
    customer_name: Optional[str] = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    def recipient_id(self, role: RecipientRole) -> Optional[str]:
        if role == RecipientRole.OWNER:
            return self.assigned_owner_id
        return self.customer_contact_id

    def days_since_sent(self, now: datetime) -> Optional[int]:
        if self.sent_at is None:
            return None
        return int((now - self.sent_at).total_seconds() // 86400)


@dataclass(frozen=True)
class HistoryEntry:
    """One row of the append-only status log"""
    offer_id: str
    from_status: OfferStatus
    to_status: OfferStatus
    occurred_at: datetime
    trigger: Trigger
    actor_id: Optional[str] = None
    note: Optional[str] = None


class DecisionKind(str, Enum):
    NOOP = "noop"
    TRANSITION = "transition"
    NOTIFY_ONLY = "notifyOnly"


@dataclass(frozen=True)
class Recipient:
    role: RecipientRole
    recipient_id: Optional[str]    # None when the offer has no routing target


@dataclass(frozen=True)
class Decision:
    kind: DecisionKind
    to_status: Optional[OfferStatus] = None
    notification_tag: Optional[str] = None
    template: Optional[str] = None
    recipients: tuple = ()

    @property
    def is_noop(self) -> bool:
        return self.kind == DecisionKind.NOOP


NOOP = Decision(DecisionKind.NOOP)


# ── Scheduled decisions ───────────────────────────────────────────────────────

def decide(offer: Offer, now: datetime) -> Decision:
    """
    Decide the next time-triggered step for an offer.

    Thresholds are measured from sent_at and checked in ascending order,
    so at most one step is returned per call. An offer that is several
    thresholds behind catches up one step per call.
    """
    if offer.sent_at is None or offer.is_terminal:
        return NOOP

    elapsed = now - offer.sent_at

    for threshold in THRESHOLDS:
        if elapsed < timedelta(days=threshold.days):
            break
        if threshold.tag in offer.notifications_sent:
            continue

        recipients = tuple(
            Recipient(role, offer.recipient_id(role)) for role in threshold.recipients
        )

        if offer.status in threshold.from_statuses:
            return Decision(
                kind=DecisionKind.TRANSITION,
                to_status=threshold.to_status,
                notification_tag=threshold.tag,
                template=threshold.template,
                recipients=recipients,
            )

        # Already sitting in the target status (manual override) but never notified
        if offer.status == threshold.to_status:
            return Decision(
                kind=DecisionKind.NOTIFY_ONLY,
                notification_tag=threshold.tag,
                template=threshold.template,
                recipients=recipients,
            )

    return NOOP


def apply_decision(
    offer: Offer, decision: Decision, now: datetime
) -> tuple[Offer, Optional[HistoryEntry]]:
    """
    Turn a scheduled decision into the next offer snapshot and its history row.
    Notify-only decisions record the tag but write no history.
    """
    if decision.is_noop:
        return offer, None

    if offer.is_terminal:
        raise AlreadyResolved(offer.id, offer.status.value)

    tags = offer.notifications_sent | {decision.notification_tag}

    if decision.kind == DecisionKind.NOTIFY_ONLY:
        return replace(offer, notifications_sent=tags, version=offer.version + 1), None

    if not is_legal_transition(offer.status, decision.to_status):
        raise IllegalTransition(offer.id, offer.status.value, decision.to_status.value)

    entry = HistoryEntry(
        offer_id=offer.id,
        from_status=offer.status,
        to_status=decision.to_status,
        occurred_at=now,
        trigger=Trigger.SCHEDULED_SWEEP,
    )
    updated = replace(
        offer,
        status=decision.to_status,
        last_transition_at=now,
        notifications_sent=tags,
        version=offer.version + 1,
    )
    return updated, entry


# ── Externally requested transitions ─────────────────────────────────────────

def resolve(
    offer: Offer,
    to_status: OfferStatus,
    now: datetime,
    trigger: Trigger,
    actor_id: Optional[str] = None,
    note: Optional[str] = None,
) -> tuple[Offer, HistoryEntry]:
    """Apply a customer action or manual override. Tags are left untouched."""
    if offer.is_terminal:
        raise AlreadyResolved(offer.id, offer.status.value)

    if not is_legal_transition(offer.status, to_status):
        raise IllegalTransition(offer.id, offer.status.value, to_status.value)

    entry = HistoryEntry(
        offer_id=offer.id,
        from_status=offer.status,
        to_status=to_status,
        occurred_at=now,
        trigger=trigger,
        actor_id=actor_id,
        note=note,
    )
    updated = replace(
        offer,
        status=to_status,
        last_transition_at=now,
        version=offer.version + 1,
    )
    return updated, entry


def notification_context(
    offer: Offer, now: datetime, offer_link_base_url: str, note: Optional[str] = None
) -> dict:
    """Payload handed to the notifier. Rendering is the notifier's job."""
    context = {
        "offerId": offer.id,
        "offerTitle": offer.title,
        "customerName": offer.customer_name,
        "amount": str(offer.amount) if offer.amount is not None else None,
        "currency": offer.currency,
        "status": offer.status.value,
        "daysSinceSent": offer.days_since_sent(now),
        "offerLink": f"{offer_link_base_url.rstrip('/')}/{offer.id}",
    }
    if note:
        context["note"] = note
    return context
