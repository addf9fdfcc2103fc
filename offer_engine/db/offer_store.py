"""
Offer Store
===========
Persistence for offers and their status history.

Every write is a compare-and-set on `version`: the row is only updated
if nobody else wrote it since the caller read it. The status change and
its history row are committed in the same transaction.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from offer_engine.core.errors import OfferNotFound, StoreUnavailable
from offer_engine.core.offer_fsm import HistoryEntry, Offer
from offer_engine.core.offer_states import OPEN_STATES, OfferStatus, Trigger
from offer_engine.db.models import OfferRecord, OfferStatusHistoryRecord, utcnow

logger = logging.getLogger(__name__)


class OfferStore(Protocol):
    async def get_non_terminal_offers(self) -> list[Offer]:
        ...

    async def get_offer(self, offer_id: str) -> Offer:
        ...

    async def save_offer_transition(
        self, offer: Offer, history_entry: Optional[HistoryEntry], expected_version: int
    ) -> bool:
        ...


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _to_offer(record: OfferRecord) -> Offer:
    return Offer(
        id=record.id,
        created_at=_as_utc(record.created_at),
        sent_at=_as_utc(record.sent_at),
        status=OfferStatus(record.status),
        last_transition_at=_as_utc(record.last_transition_at),
        notifications_sent=frozenset(record.notifications_sent or ()),
        assigned_owner_id=record.assigned_owner_id,
        customer_contact_id=record.customer_contact_id,
        amount=record.amount,
        currency=record.currency,
        title=record.title,
        customer_name=record.customer_name,
        version=record.version,
    )


def _to_history_entry(record: OfferStatusHistoryRecord) -> HistoryEntry:
    return HistoryEntry(
        offer_id=record.offer_id,
        from_status=OfferStatus(record.from_status),
        to_status=OfferStatus(record.to_status),
        occurred_at=_as_utc(record.occurred_at),
        trigger=Trigger(record.trigger),
        actor_id=record.actor_id,
        note=record.note,
    )


class SqlOfferStore:
    """OfferStore backed by SQLAlchemy async sessions"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def get_non_terminal_offers(self) -> list[Offer]:
        """Open offers that have actually been sent, oldest first"""
        query = (
            select(OfferRecord)
            .where(OfferRecord.status.in_([s.value for s in OPEN_STATES]))
            .where(OfferRecord.sent_at.is_not(None))
            .order_by(OfferRecord.sent_at, OfferRecord.id)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [_to_offer(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to load open offers: {e}") from e

    async def get_offer(self, offer_id: str) -> Offer:
        try:
            async with self.session_factory() as session:
                record = await session.get(OfferRecord, offer_id)
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to load offer {offer_id}: {e}", offer_id) from e

        if record is None:
            raise OfferNotFound(offer_id)
        return _to_offer(record)

    async def save_offer_transition(
        self, offer: Offer, history_entry: Optional[HistoryEntry], expected_version: int
    ) -> bool:
        """
        Write the offer's new status, tags and version, plus its history row.

        Returns False (and writes nothing) if the stored version is no
        longer `expected_version`.
        """
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    result = await session.execute(
                        update(OfferRecord)
                        .where(OfferRecord.id == offer.id)
                        .where(OfferRecord.version == expected_version)
                        .values(
                            status=offer.status.value,
                            last_transition_at=offer.last_transition_at,
                            notifications_sent=sorted(offer.notifications_sent),
                            version=expected_version + 1,
                            updated_at=utcnow(),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    if result.rowcount != 1:
                        logger.debug(
                            "Version check failed for offer %s (expected %d)",
                            offer.id, expected_version,
                        )
                        return False

                    if history_entry is not None:
                        session.add(OfferStatusHistoryRecord(
                            offer_id=history_entry.offer_id,
                            from_status=history_entry.from_status.value,
                            to_status=history_entry.to_status.value,
                            trigger=history_entry.trigger.value,
                            actor_id=history_entry.actor_id,
                            note=history_entry.note,
                            occurred_at=history_entry.occurred_at,
                        ))
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to save offer {offer.id}: {e}", offer.id) from e

        return True

    # ── Reads and seeding beyond the engine's core contract ───────────────────

    async def add_offer(self, offer: Offer) -> Offer:
        """Register an already-sent offer with the engine"""
        record = OfferRecord(
            id=offer.id,
            title=offer.title,
            customer_name=offer.customer_name,
            amount=offer.amount,
            currency=offer.currency,
            assigned_owner_id=offer.assigned_owner_id,
            customer_contact_id=offer.customer_contact_id,
            status=offer.status.value,
            sent_at=offer.sent_at,
            last_transition_at=offer.last_transition_at or offer.sent_at,
            notifications_sent=sorted(offer.notifications_sent),
            version=offer.version,
            created_at=offer.created_at,
        )
        try:
            async with self.session_factory() as session:
                session.add(record)
                await session.commit()
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to add offer {offer.id}: {e}", offer.id) from e
        return _to_offer(record)

    async def list_offers(
        self, status: Optional[OfferStatus] = None, limit: int = 50
    ) -> list[Offer]:
        query = select(OfferRecord).order_by(OfferRecord.created_at).limit(limit)
        if status:
            query = query.where(OfferRecord.status == status.value)
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [_to_offer(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to list offers: {e}") from e

    async def get_history(self, offer_id: str) -> list[HistoryEntry]:
        """Full audit trail for one offer, in the order it was written"""
        query = (
            select(OfferStatusHistoryRecord)
            .where(OfferStatusHistoryRecord.offer_id == offer_id)
            .order_by(OfferStatusHistoryRecord.id)
        )
        try:
            async with self.session_factory() as session:
                result = await session.execute(query)
                return [_to_history_entry(r) for r in result.scalars().all()]
        except SQLAlchemyError as e:
            raise StoreUnavailable(f"Failed to load history for {offer_id}: {e}", offer_id) from e
