"""Tests for customer accept/reject and manual overrides."""

from datetime import datetime

import pytest

from offer_engine.actions.customer_actions import CustomerActionHandler
from offer_engine.core.errors import (
    AlreadyResolved,
    IllegalTransition,
    InvalidAction,
    OfferNotFound,
    VersionConflict,
)
from offer_engine.core.offer_states import FOLLOWUP_TAG, OfferStatus, Trigger
from offer_engine.db.offer_store import SqlOfferStore
from offer_engine.sweep.orchestrator import SweepOrchestrator


@pytest.fixture
def handler(store, notifier, settings):
    return CustomerActionHandler(store, notifier, settings)


@pytest.mark.asyncio
async def test_accept_short_circuits_escalation(handler, store, notifier, make_offer, now):
    await store.add_offer(make_offer(days_ago=20, status=OfferStatus.FOLLOWED_UP,
                                     tags={FOLLOWUP_TAG}))

    result = await handler.apply_customer_action("offer-1", "accept", expected_version=1, now=now)

    assert result.status == OfferStatus.ACCEPTED
    assert result.version == 2
    assert result.notification_delivered is True

    history = await store.get_history("offer-1")
    assert [(h.from_status, h.to_status) for h in history] == [
        (OfferStatus.FOLLOWED_UP, OfferStatus.ACCEPTED),
    ]
    assert history[0].trigger == Trigger.CUSTOMER_ACTION
    assert history[0].actor_id == "customer-1"
    assert notifier.templates_for("owner-1") == ["offer-accepted"]


@pytest.mark.asyncio
async def test_reject_carries_note_to_owner(handler, store, notifier, make_offer, now):
    await store.add_offer(make_offer(days_ago=2))

    await handler.apply_customer_action(
        "offer-1", "reject", actor_id="cust-portal-9", note="Went with another quote", now=now
    )

    history = await store.get_history("offer-1")
    assert history[0].note == "Went with another quote"
    assert history[0].actor_id == "cust-portal-9"
    assert notifier.sent[0]["template"] == "offer-rejected"
    assert notifier.sent[0]["context"]["note"] == "Went with another quote"


@pytest.mark.asyncio
async def test_resolved_offer_raises_already_resolved(handler, store, make_offer, now):
    await store.add_offer(make_offer(days_ago=2))
    await handler.apply_customer_action("offer-1", "accept", now=now)

    with pytest.raises(AlreadyResolved) as exc_info:
        await handler.apply_customer_action("offer-1", "reject", now=now)

    assert exc_info.value.code == "already_resolved"
    offer = await store.get_offer("offer-1")
    assert offer.status == OfferStatus.ACCEPTED
    assert offer.version == 2


@pytest.mark.asyncio
async def test_expired_offer_cannot_be_accepted(handler, store, make_offer, now):
    await store.add_offer(make_offer(days_ago=35, status=OfferStatus.EXPIRED))

    with pytest.raises(AlreadyResolved):
        await handler.apply_customer_action("offer-1", "accept", now=now)


@pytest.mark.asyncio
async def test_stale_expected_version_conflicts(handler, store, notifier, settings, make_offer, now):
    # Customer opened the offer at version 1, then the escalation fired
    await store.add_offer(make_offer(days_ago=8))
    await SweepOrchestrator(store, notifier, settings).run_sweep(now)

    with pytest.raises(VersionConflict) as exc_info:
        await handler.apply_customer_action("offer-1", "accept", expected_version=1, now=now)

    assert exc_info.value.code == "version_conflict"
    assert exc_info.value.actual == 2
    assert (await store.get_offer("offer-1")).status == OfferStatus.FOLLOWED_UP


@pytest.mark.asyncio
async def test_losing_write_race_returns_version_conflict(
    session_factory, notifier, settings, make_offer, now
):
    class RacingStore(SqlOfferStore):
        async def save_offer_transition(self, offer, history_entry, expected_version):
            # the sweep commits first
            await SweepOrchestrator(SqlOfferStore(self.session_factory), notifier, settings) \
                .run_sweep(now)
            return await super().save_offer_transition(offer, history_entry, expected_version)

    store = RacingStore(session_factory)
    await store.add_offer(make_offer(days_ago=8))

    with pytest.raises(VersionConflict):
        await CustomerActionHandler(store, notifier, settings).apply_customer_action(
            "offer-1", "accept", now=now
        )

    offer = await store.get_offer("offer-1")
    assert offer.status == OfferStatus.FOLLOWED_UP
    assert len(await store.get_history("offer-1")) == 1


@pytest.mark.asyncio
async def test_naive_now_notifies_owner(handler, store, notifier, make_offer):
    await store.add_offer(make_offer(days_ago=3))

    result = await handler.apply_customer_action(
        "offer-1", "accept", now=datetime(2026, 3, 2, 9, 0)
    )

    assert result.status == OfferStatus.ACCEPTED
    assert result.notification_delivered is True
    assert notifier.templates_for("owner-1") == ["offer-accepted"]
    assert notifier.sent[0]["context"]["daysSinceSent"] == 3
    assert len(await store.get_history("offer-1")) == 1


@pytest.mark.asyncio
async def test_unknown_action_is_engine_error(handler, store, make_offer, now):
    await store.add_offer(make_offer(days_ago=3))

    with pytest.raises(InvalidAction) as exc_info:
        await handler.apply_customer_action("offer-1", "maybe", now=now)

    assert exc_info.value.code == "invalid_action"
    offer = await store.get_offer("offer-1")
    assert offer.status == OfferStatus.PENDING
    assert offer.version == 1


@pytest.mark.asyncio
async def test_unknown_offer(handler):
    with pytest.raises(OfferNotFound):
        await handler.apply_customer_action("missing", "accept")


@pytest.mark.asyncio
async def test_owner_notification_failure_does_not_undo(handler, store, notifier, make_offer, now):
    notifier.failing.add("owner-1")
    await store.add_offer(make_offer(days_ago=1))

    result = await handler.apply_customer_action("offer-1", "accept", now=now)

    assert result.status == OfferStatus.ACCEPTED
    assert result.notification_delivered is False
    assert (await store.get_offer("offer-1")).status == OfferStatus.ACCEPTED


class TestManualOverride:

    @pytest.mark.asyncio
    async def test_staff_can_escalate_early(self, handler, store, make_offer, now):
        await store.add_offer(make_offer(days_ago=3))

        result = await handler.apply_manual_override(
            "offer-1", "escalated", actor_id="staff-7", note="VIP customer", now=now
        )

        assert result.status == OfferStatus.ESCALATED
        history = await store.get_history("offer-1")
        assert history[0].trigger == Trigger.MANUAL_OVERRIDE
        assert history[0].actor_id == "staff-7"

    @pytest.mark.asyncio
    async def test_override_cannot_reopen(self, handler, store, make_offer, now):
        await store.add_offer(make_offer(days_ago=3, status=OfferStatus.FOLLOWED_UP))

        with pytest.raises(IllegalTransition):
            await handler.apply_manual_override("offer-1", "pending", actor_id="staff-7", now=now)

    @pytest.mark.asyncio
    async def test_override_on_terminal_offer(self, handler, store, make_offer, now):
        await store.add_offer(make_offer(days_ago=3, status=OfferStatus.REJECTED))

        with pytest.raises(AlreadyResolved):
            await handler.apply_manual_override("offer-1", "accepted", actor_id="staff-7", now=now)

    @pytest.mark.asyncio
    async def test_sweep_notifies_after_manual_escalation(
        self, handler, store, notifier, settings, make_offer, now
    ):
        await store.add_offer(make_offer(days_ago=15, now=now))
        await handler.apply_manual_override("offer-1", "escalated", actor_id="staff-7",
                                            now=now)
        notifier.sent.clear()

        report = await SweepOrchestrator(store, notifier, settings).run_sweep(now)

        assert report.notify_only_count == 1
        assert notifier.templates_for("owner-1") == ["offer-escalation"]
        assert (await store.get_offer("offer-1")).status == OfferStatus.ESCALATED

    @pytest.mark.asyncio
    async def test_override_to_unknown_status(self, handler, store, make_offer, now):
        await store.add_offer(make_offer(days_ago=3))

        with pytest.raises(InvalidAction):
            await handler.apply_manual_override("offer-1", "archived", actor_id="staff-7", now=now)
