"""Pytest configuration and fixtures for the offer engine test suite."""

from dataclasses import replace
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from offer_engine.config import EngineSettings
from offer_engine.core.errors import NotificationFailed
from offer_engine.core.offer_fsm import Offer
from offer_engine.core.offer_states import OfferStatus
from offer_engine.db.database import create_session_factory, init_db
from offer_engine.db.offer_store import SqlOfferStore

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class RecordingNotifier:
    """Captures every send; recipients in `failing` raise NotificationFailed."""

    def __init__(self):
        self.sent = []
        self.failing = set()

    async def send(self, channel, recipient_id, template_tag, context):
        if recipient_id in self.failing:
            raise NotificationFailed(
                context.get("offerId"), recipient_id, template_tag, "mailbox unavailable"
            )
        self.sent.append({
            "channel": channel,
            "recipient_id": recipient_id,
            "template": template_tag,
            "context": context,
        })
        return True

    def templates_for(self, recipient_id):
        return [s["template"] for s in self.sent if s["recipient_id"] == recipient_id]


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory):
    return SqlOfferStore(session_factory)


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def settings():
    return EngineSettings(
        notifications_enabled=True,
        offer_link_base_url="https://offers.test/o",
    )


@pytest.fixture
def make_offer():
    """Build an Offer sent `days_ago` days before NOW."""

    def _make_offer(
        offer_id="offer-1",
        days_ago=0,
        status=OfferStatus.PENDING,
        tags=(),
        version=1,
        owner="owner-1",
        customer="customer-1",
        now=NOW,
        **overrides,
    ):
        sent_at = now - timedelta(days=days_ago)
        offer = Offer(
            id=offer_id,
            created_at=sent_at - timedelta(hours=2),
            sent_at=sent_at,
            status=status,
            last_transition_at=sent_at,
            notifications_sent=frozenset(tags),
            assigned_owner_id=owner,
            customer_contact_id=customer,
            amount=Decimal("12500.00"),
            currency="DKK",
            title="Roof renovation",
            customer_name="Nordic Roofing ApS",
            version=version,
        )
        return replace(offer, **overrides) if overrides else offer

    return _make_offer


@pytest.fixture
def now():
    return NOW
