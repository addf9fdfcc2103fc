"""
Database Models
===============
OfferRecord = current state + data
OfferStatusHistoryRecord = immutable history (audit log)
NotificationOutboxRecord = queued notifications for the delivery worker
"""

import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Column, String, DateTime, JSON, ForeignKey, Integer, Numeric, Text,
)
from sqlalchemy.orm import DeclarativeBase, relationship


def utcnow():
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class OfferRecord(Base):
    """
    The offers table stores the CURRENT state of each offer.
    Written only through the offer store, guarded by `version`.
    """
    __tablename__ = "offers"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))

    # Informational
    title = Column(String(255), nullable=True)
    customer_name = Column(String(255), nullable=True)
    amount = Column(Numeric(12, 2), nullable=True)
    currency = Column(String(3), nullable=True)

    # Routing targets
    assigned_owner_id = Column(String(64), nullable=True)
    customer_contact_id = Column(String(64), nullable=True)

    # Lifecycle
    status = Column(String(32), nullable=False, default="pending", index=True)
    sent_at = Column(DateTime(timezone=True), nullable=True)
    last_transition_at = Column(DateTime(timezone=True), nullable=True)
    notifications_sent = Column(JSON, nullable=False, default=list)
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    history = relationship(
        "OfferStatusHistoryRecord",
        back_populates="offer",
        order_by="OfferStatusHistoryRecord.id",
    )


class OfferStatusHistoryRecord(Base):
    """
    Append-only: one row per status change, never updated or deleted.
    The integer id gives the order of rows written at the same instant.
    """
    __tablename__ = "offer_status_history"

    id = Column(Integer, primary_key=True, autoincrement=True)
    offer_id = Column(String(64), ForeignKey("offers.id"), nullable=False, index=True)

    from_status = Column(String(32), nullable=False)
    to_status = Column(String(32), nullable=False)
    trigger = Column(String(32), nullable=False)
    actor_id = Column(String(64), nullable=True)
    note = Column(Text, nullable=True)

    occurred_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)

    offer = relationship("OfferRecord", back_populates="history")


class NotificationOutboxRecord(Base):
    """Notifications waiting for the external delivery worker"""
    __tablename__ = "notification_outbox"

    id = Column(Integer, primary_key=True, autoincrement=True)
    offer_id = Column(String(64), nullable=True, index=True)
    channel = Column(String(16), nullable=False)
    recipient_id = Column(String(64), nullable=False)
    template = Column(String(64), nullable=False)
    context = Column(JSON, nullable=True)
    status = Column(String(16), nullable=False, default="queued")
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
