"""
Sweep Orchestrator
==================
One pass over every open offer: decide, persist, notify, report.

Offers are processed one at a time. Each write is version-checked so a
customer acting on the same offer mid-sweep never gets overwritten; the
sweep reloads and retries that offer once, then gives up on it until
the next run.
"""

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from offer_engine.config import EngineSettings, get_settings
from offer_engine.core.errors import OfferNotFound, StoreUnavailable
from offer_engine.core.offer_fsm import (
    Offer,
    apply_decision,
    decide,
    ensure_utc,
    notification_context,
)
from offer_engine.db.offer_store import OfferStore
from offer_engine.notify.notifier import Notifier, NotificationFailure, notify_recipients

logger = logging.getLogger(__name__)


@dataclass
class SweepReport:
    """Outcome of one sweep run"""
    started_at: datetime
    finished_at: Optional[datetime] = None
    offers_examined: int = 0
    transitioned_counts: Counter = field(default_factory=Counter)
    notify_only_count: int = 0
    notifications_sent: int = 0
    notification_failures: list[NotificationFailure] = field(default_factory=list)
    skipped_conflicts: list[str] = field(default_factory=list)
    failed: bool = False
    error: Optional[str] = None

    @property
    def total_transitions(self) -> int:
        return sum(self.transitioned_counts.values())

    def to_dict(self) -> dict:
        return {
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat() if self.finished_at else None,
            "offersExamined": self.offers_examined,
            "transitionedCounts": dict(self.transitioned_counts),
            "notifyOnlyCount": self.notify_only_count,
            "notificationsSent": self.notifications_sent,
            "notificationFailures": [f.to_dict() for f in self.notification_failures],
            "skippedConflicts": list(self.skipped_conflicts),
            "failed": self.failed,
            "error": self.error,
        }


class SweepOrchestrator:
    """Applies the scheduled part of the offer state machine to all open offers"""

    # First attempt plus one retry after a version conflict
    MAX_ATTEMPTS = 2

    def __init__(
        self,
        store: OfferStore,
        notifier: Notifier,
        settings: Optional[EngineSettings] = None,
    ):
        self.store = store
        self.notifier = notifier
        self.settings = settings or get_settings()

    async def run_sweep(self, now: Optional[datetime] = None) -> SweepReport:
        now = ensure_utc(now)
        report = SweepReport(started_at=now)

        logger.info("Sweep started at %s", now.isoformat())

        try:
            offers = await self.store.get_non_terminal_offers()
            for offer in offers:
                report.offers_examined += 1
                await self._process_offer(offer, now, report)
        except StoreUnavailable as e:
            # Whatever was committed before this point stays committed
            report.failed = True
            report.error = str(e)
            logger.error(
                "Sweep aborted after %d offers: %s", report.offers_examined, e
            )

        report.finished_at = datetime.now(timezone.utc)
        logger.info(
            "Sweep %s: %d offers, transitions=%s, notify-only=%d, "
            "notifications sent=%d failed=%d, skipped conflicts=%d",
            "failed" if report.failed else "finished",
            report.offers_examined,
            dict(report.transitioned_counts),
            report.notify_only_count,
            report.notifications_sent,
            len(report.notification_failures),
            len(report.skipped_conflicts),
        )
        return report

    async def _process_offer(self, offer: Offer, now: datetime, report: SweepReport) -> None:
        """
        Step one offer through every threshold it has crossed.
        Each step is persisted and notified before the next is decided.
        """
        attempts = 1

        while True:
            decision = decide(offer, now)
            if decision.is_noop:
                return

            updated, entry = apply_decision(offer, decision, now)
            saved = await self.store.save_offer_transition(
                updated, entry, expected_version=offer.version
            )

            if not saved:
                if attempts >= self.MAX_ATTEMPTS:
                    logger.warning(
                        "Offer %s changed concurrently twice, skipping until next sweep",
                        offer.id,
                    )
                    report.skipped_conflicts.append(offer.id)
                    return

                attempts += 1
                logger.info("Offer %s changed concurrently, reloading", offer.id)
                try:
                    offer = await self.store.get_offer(offer.id)
                except OfferNotFound:
                    logger.warning("Offer %s disappeared during sweep", offer.id)
                    return
                continue

            if entry is not None:
                report.transitioned_counts[updated.status.value] += 1
                logger.info(
                    "Offer %s: %s -> %s (%s)",
                    offer.id, entry.from_status.value, entry.to_status.value,
                    decision.notification_tag,
                )
            else:
                report.notify_only_count += 1
                logger.info(
                    "Offer %s: %s recorded without status change",
                    offer.id, decision.notification_tag,
                )

            sent, failures = await notify_recipients(
                self.notifier,
                self.settings.notification_channel,
                updated.id,
                decision.recipients,
                decision.template,
                decision.notification_tag,
                notification_context(updated, now, self.settings.offer_link_base_url),
            )
            report.notifications_sent += sent
            report.notification_failures.extend(failures)

            offer = updated
