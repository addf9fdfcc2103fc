"""
Customer Action Handler
=======================
Accept/reject requests coming from the customer (public offer link),
plus manual overrides by staff. Both run synchronously against a
single offer and never wait on the sweep.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from offer_engine.config import EngineSettings, get_settings
from offer_engine.core.errors import AlreadyResolved, InvalidAction, VersionConflict
from offer_engine.core.offer_fsm import Recipient, ensure_utc, notification_context, resolve
from offer_engine.core.offer_states import (
    ACTION_TEMPLATES,
    CUSTOMER_ACTION_TARGETS,
    STATUS_CHANGED_TEMPLATE,
    CustomerAction,
    OfferStatus,
    RecipientRole,
    Trigger,
)
from offer_engine.db.offer_store import OfferStore
from offer_engine.notify.notifier import Notifier, notify_recipients

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ActionResult:
    offer_id: str
    status: OfferStatus
    version: int
    notification_delivered: bool

    def to_dict(self) -> dict:
        return {
            "offerId": self.offer_id,
            "status": self.status.value,
            "version": self.version,
            "notificationDelivered": self.notification_delivered,
        }


class CustomerActionHandler:

    def __init__(
        self,
        store: OfferStore,
        notifier: Notifier,
        settings: Optional[EngineSettings] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.settings = settings or get_settings()

    async def apply_customer_action(
        self,
        offer_id: str,
        action: Union[CustomerAction, str],
        expected_version: Optional[int] = None,
        actor_id: Optional[str] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        """
        Accept or reject an offer on the customer's behalf.

        Raises:
            OfferNotFound: no such offer
            InvalidAction: action is not accept or reject
            AlreadyResolved: the offer was already accepted/rejected/expired
            VersionConflict: expected_version is stale, or the offer changed
                while this request was being applied
        """
        try:
            to_status = CUSTOMER_ACTION_TARGETS[CustomerAction(action)]
        except ValueError:
            raise InvalidAction(offer_id, action) from None
        return await self._apply(
            offer_id,
            to_status,
            Trigger.CUSTOMER_ACTION,
            expected_version=expected_version,
            actor_id=actor_id,
            note=note,
            now=now,
        )

    async def apply_manual_override(
        self,
        offer_id: str,
        to_status: Union[OfferStatus, str],
        actor_id: str,
        expected_version: Optional[int] = None,
        note: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ActionResult:
        """Staff-initiated move along the normal transition graph"""
        try:
            to_status = OfferStatus(to_status)
        except ValueError:
            raise InvalidAction(offer_id, to_status) from None
        return await self._apply(
            offer_id,
            to_status,
            Trigger.MANUAL_OVERRIDE,
            expected_version=expected_version,
            actor_id=actor_id,
            note=note,
            now=now,
        )

    async def _apply(
        self,
        offer_id: str,
        to_status: OfferStatus,
        trigger: Trigger,
        expected_version: Optional[int],
        actor_id: Optional[str],
        note: Optional[str],
        now: Optional[datetime],
    ) -> ActionResult:
        now = ensure_utc(now)

        # 1. Load
        offer = await self.store.get_offer(offer_id)

        # 2. Terminal offers are never touched again
        if offer.is_terminal:
            logger.info(
                "Rejected %s on offer %s: already %s",
                trigger.value, offer_id, offer.status.value,
            )
            raise AlreadyResolved(offer_id, offer.status.value)

        # 3. Caller acted on stale data
        if expected_version is not None and expected_version != offer.version:
            raise VersionConflict(offer_id, expected_version, offer.version)

        if trigger == Trigger.CUSTOMER_ACTION and actor_id is None:
            actor_id = offer.customer_contact_id

        # 4. Transition and persist together with the history row
        updated, entry = resolve(offer, to_status, now, trigger, actor_id, note)
        saved = await self.store.save_offer_transition(
            updated, entry, expected_version=offer.version
        )
        if not saved:
            logger.info("Offer %s changed while applying %s", offer_id, trigger.value)
            raise VersionConflict(offer_id, offer.version, None)

        logger.info(
            "Offer %s: %s -> %s (%s by %s)",
            offer_id, offer.status.value, to_status.value, trigger.value, actor_id,
        )

        # 5. Tell the owner
        template = ACTION_TEMPLATES.get(to_status, STATUS_CHANGED_TEMPLATE)
        sent, failures = await notify_recipients(
            self.notifier,
            self.settings.notification_channel,
            offer_id,
            [Recipient(RecipientRole.OWNER, updated.assigned_owner_id)],
            template,
            template,
            notification_context(updated, now, self.settings.offer_link_base_url, note=note),
        )

        return ActionResult(
            offer_id=offer_id,
            status=updated.status,
            version=updated.version,
            notification_delivered=sent > 0 and not failures,
        )
