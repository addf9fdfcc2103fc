"""
Offer Lifecycle States
======================
Every offer is in exactly ONE of these statuses at any time
"""

from dataclasses import dataclass
from enum import Enum


class OfferStatus(str, Enum):
    PENDING = "pending"            # Sent, waiting for the customer
    FOLLOWED_UP = "followedUp"     # Customer reminded
    ESCALATED = "escalated"        # Owner asked to chase it
    ACCEPTED = "accepted"          # Customer said yes (terminal)
    REJECTED = "rejected"          # Customer said no (terminal)
    EXPIRED = "expired"            # Validity ran out (terminal)


class Trigger(str, Enum):
    SCHEDULED_SWEEP = "scheduledSweep"
    CUSTOMER_ACTION = "customerAction"
    MANUAL_OVERRIDE = "manualOverride"


class CustomerAction(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"


class RecipientRole(str, Enum):
    CUSTOMER = "customer"          # customerContactId
    OWNER = "owner"                # assignedOwnerId


class NotificationChannel(str, Enum):
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


# Terminal statuses - once an offer reaches these, it stops moving
TERMINAL_STATES = frozenset({
    OfferStatus.ACCEPTED,
    OfferStatus.REJECTED,
    OfferStatus.EXPIRED,
})

OPEN_STATES = frozenset(set(OfferStatus) - TERMINAL_STATES)


# Legal moves: current status -> statuses it may move to.
# Nothing ever moves back into PENDING.
TRANSITIONS = {
    OfferStatus.PENDING: frozenset({
        OfferStatus.FOLLOWED_UP,
        OfferStatus.ESCALATED,
        OfferStatus.EXPIRED,
        OfferStatus.ACCEPTED,
        OfferStatus.REJECTED,
    }),
    OfferStatus.FOLLOWED_UP: frozenset({
        OfferStatus.ESCALATED,
        OfferStatus.EXPIRED,
        OfferStatus.ACCEPTED,
        OfferStatus.REJECTED,
    }),
    OfferStatus.ESCALATED: frozenset({
        OfferStatus.EXPIRED,
        OfferStatus.ACCEPTED,
        OfferStatus.REJECTED,
    }),
    OfferStatus.ACCEPTED: frozenset(),
    OfferStatus.REJECTED: frozenset(),
    OfferStatus.EXPIRED: frozenset(),
}

CUSTOMER_ACTION_TARGETS = {
    CustomerAction.ACCEPT: OfferStatus.ACCEPTED,
    CustomerAction.REJECT: OfferStatus.REJECTED,
}


def is_legal_transition(from_status: OfferStatus, to_status: OfferStatus) -> bool:
    return to_status in TRANSITIONS.get(from_status, frozenset())


# ── Time-triggered thresholds ─────────────────────────────────────────────────

FOLLOWUP_TAG = "followup7"
ESCALATE_TAG = "escalate14"
EXPIRE_TAG = "expire30"


@dataclass(frozen=True)
class Threshold:
    """A calendar point (days after sentAt) where the sweep acts once."""
    days: int
    tag: str
    to_status: OfferStatus
    from_statuses: frozenset
    recipients: tuple
    template: str


# Evaluated in ascending day order
THRESHOLDS = (
    Threshold(
        days=7,
        tag=FOLLOWUP_TAG,
        to_status=OfferStatus.FOLLOWED_UP,
        from_statuses=frozenset({OfferStatus.PENDING}),
        recipients=(RecipientRole.CUSTOMER,),
        template="offer-reminder",
    ),
    Threshold(
        days=14,
        tag=ESCALATE_TAG,
        to_status=OfferStatus.ESCALATED,
        from_statuses=frozenset({OfferStatus.PENDING, OfferStatus.FOLLOWED_UP}),
        recipients=(RecipientRole.OWNER,),
        template="offer-escalation",
    ),
    Threshold(
        days=30,
        tag=EXPIRE_TAG,
        to_status=OfferStatus.EXPIRED,
        from_statuses=frozenset({
            OfferStatus.PENDING,
            OfferStatus.FOLLOWED_UP,
            OfferStatus.ESCALATED,
        }),
        recipients=(RecipientRole.CUSTOMER, RecipientRole.OWNER),
        template="offer-expired",
    ),
)


# Templates for action-driven notifications
ACTION_TEMPLATES = {
    OfferStatus.ACCEPTED: "offer-accepted",
    OfferStatus.REJECTED: "offer-rejected",
}
STATUS_CHANGED_TEMPLATE = "offer-status-changed"
