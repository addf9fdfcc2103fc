"""
Notifier
========
The engine only says WHO gets WHICH template with WHAT context.
Rendering and delivery belong to whatever sits behind `send`.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from offer_engine.config import EngineSettings
from offer_engine.core.errors import NotificationFailed
from offer_engine.core.offer_fsm import Recipient
from offer_engine.core.offer_states import NotificationChannel
from offer_engine.db.models import NotificationOutboxRecord

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    async def send(
        self,
        channel: NotificationChannel,
        recipient_id: str,
        template_tag: str,
        context: dict,
    ) -> bool:
        """True if the notification was accepted for delivery.

        Raises NotificationFailed when delivery could not even be queued.
        """
        ...


class OutboxNotifier:
    """
    Queues notifications in the notification_outbox table.
    A separate delivery worker picks them up (email/SMS/push).
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def send(
        self,
        channel: NotificationChannel,
        recipient_id: str,
        template_tag: str,
        context: dict,
    ) -> bool:
        try:
            async with self.session_factory() as session:
                session.add(NotificationOutboxRecord(
                    offer_id=context.get("offerId"),
                    channel=channel.value,
                    recipient_id=recipient_id,
                    template=template_tag,
                    context=context,
                ))
                await session.commit()
        except SQLAlchemyError as e:
            logger.error(
                "Failed to queue %s for %s: %s", template_tag, recipient_id, e
            )
            raise NotificationFailed(
                context.get("offerId"), recipient_id, template_tag, f"outbox write failed: {e}"
            ) from e

        logger.debug("Queued %s via %s for %s", template_tag, channel.value, recipient_id)
        return True


class LoggingNotifier:
    """Used when notifications are disabled: logs and reports success"""

    async def send(
        self,
        channel: NotificationChannel,
        recipient_id: str,
        template_tag: str,
        context: dict,
    ) -> bool:
        logger.info(
            "Notifications disabled, skipping %s via %s to %s (offer %s)",
            template_tag, channel.value, recipient_id, context.get("offerId"),
        )
        return True


def build_notifier(
    settings: EngineSettings,
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> Notifier:
    if not settings.notifications_enabled or session_factory is None:
        return LoggingNotifier()
    return OutboxNotifier(session_factory)


# ── Fan-out to a decision's recipients ────────────────────────────────────────

@dataclass(frozen=True)
class NotificationFailure:
    offer_id: str
    recipient_id: Optional[str]
    tag: str
    reason: str = ""

    def to_dict(self) -> dict:
        return {
            "offerId": self.offer_id,
            "recipientId": self.recipient_id,
            "tag": self.tag,
            "reason": self.reason,
        }


async def notify_recipients(
    notifier: Notifier,
    channel: NotificationChannel,
    offer_id: str,
    recipients: Iterable[Recipient],
    template: str,
    tag: str,
    context: dict,
) -> tuple[int, list[NotificationFailure]]:
    """
    Send one template to each recipient. Failures are collected, not raised:
    by the time we notify, the transition is already committed.
    """
    sent = 0
    failures = []

    for recipient in recipients:
        if recipient.recipient_id is None:
            reason = f"offer has no {recipient.role.value} to notify"
            logger.warning("Offer %s: %s (%s)", offer_id, reason, tag)
            failures.append(NotificationFailure(offer_id, None, tag, reason))
            continue

        try:
            delivered = await notifier.send(channel, recipient.recipient_id, template, context)
            reason = "" if delivered else "notifier reported failure"
        except NotificationFailed as e:
            delivered = False
            reason = e.reason or str(e)
        except Exception as e:
            # third-party notifiers may raise anything
            delivered = False
            reason = str(e) or type(e).__name__

        if delivered:
            sent += 1
        else:
            logger.warning(
                "Notification %s to %s for offer %s failed: %s",
                tag, recipient.recipient_id, offer_id, reason,
            )
            failures.append(NotificationFailure(offer_id, recipient.recipient_id, tag, reason))

    return sent, failures
