"""
Audit Emitter: relays committed transition events to the ledger and to the
parties involved.

DELIVERY STRATEGY: Transactional outbox with leases
===================================================

The engine never calls the ledger or the notifier from inside a transition.
It appends a row to `targeting_events` in the same transaction instead, and
this relay drains those rows afterwards:

  1. Requeue rows whose lease ran out (a relay crashed mid-batch)
  2. Claim a batch of due 'pending' rows (FOR UPDATE SKIP LOCKED on
     PostgreSQL), stamp them with a lease, commit
  3. For each row: record it in the ledger, notify each recipient once,
     then mark it 'sent' under the same lease
  4. A ledger failure puts the row back to 'pending' with exponential
     backoff; after OUTBOX_MAX_ATTEMPTS it goes 'dead'

Delivery is at-least-once: a crash between the ledger call and mark_sent
records the event twice. Notifications are best effort and are never the
reason a row is retried.

Nothing here can fail a transition; the transition committed before the relay
ever saw the row.
"""

import asyncio
import random
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Optional

from swap_engine.core.clock import Clock, ensure_utc, utcnow
from swap_engine.core.logging import get_logger, task_context
from swap_engine.core.metrics import outbox_deliveries, outbox_pending
from swap_engine.db.uow import TransactionRunner, UnitOfWork
from swap_engine.models.transition_event import TransitionEvent
from swap_engine.services.interfaces import LedgerRecorder, NotificationService

logger = get_logger(__name__)


def compute_backoff_seconds(attempt: int, base: int = 10, cap: int = 900) -> int:
    # exponential backoff with jitter
    exp = min(cap, base * (2 ** max(0, attempt - 1)))
    jitter = random.randint(0, min(30, exp // 3))
    return exp + jitter


@dataclass
class RelayReport:
    claimed: int = 0
    sent: int = 0
    retried: int = 0
    dead: int = 0
    unmarked: int = 0


class AuditEmitter:
    def __init__(
        self,
        runner: TransactionRunner,
        ledger: LedgerRecorder,
        notifier: NotificationService,
        clock: Clock = utcnow,
        batch_size: int = 100,
        max_attempts: int = 8,
        lease_seconds: int = 600,
        interval_seconds: float = 5,
    ):
        self.runner = runner
        self.ledger = ledger
        self.notifier = notifier
        self.clock = clock
        self.batch_size = batch_size
        self.max_attempts = max_attempts
        self.lease_seconds = lease_seconds
        self.interval_seconds = interval_seconds
        self._wakeup: Optional[asyncio.Event] = None

    def wake(self) -> None:
        """Called after each committed transition so delivery does not wait for the next interval."""
        if self._wakeup is not None:
            self._wakeup.set()

    async def relay_pending(self) -> RelayReport:
        now = self.clock()

        async def claim(uow: UnitOfWork) -> tuple[str, list[TransitionEvent]]:
            requeued = await uow.outbox.requeue_expired_leases(now)
            if requeued:
                logger.warning("outbox_leases_requeued", count=requeued)
            return await uow.outbox.claim_due(now, self.batch_size, self.lease_seconds)

        lease_id, events = await self.runner.run(claim, name="outbox_claim")
        outbox_pending.set(len(events))
        report = RelayReport(claimed=len(events))

        for event in events:
            try:
                result = await self._deliver(event, lease_id)
            except Exception as e:
                # The row stays leased and is requeued when the lease runs out
                logger.error("outbox_event_unmarked", event_id=event.id, event_type=event.event_type, error=str(e))
                result = "unmarked"
            setattr(report, result, getattr(report, result) + 1)

        if events:
            logger.info(
                "outbox_relay_completed",
                claimed=report.claimed,
                sent=report.sent,
                retried=report.retried,
                dead=report.dead,
                unmarked=report.unmarked,
            )
        return report

    async def _deliver(self, event: TransitionEvent, lease_id: str) -> str:
        payload = _ledger_payload(event)
        try:
            ledger_ref = await self.ledger.record(event.event_type, payload)
        except Exception as e:
            return await self._fail(event, lease_id, f"{type(e).__name__}: {e}")

        notified = event.notified_at is not None
        if not notified:
            await self._notify(event, payload)

        async def mark(uow: UnitOfWork) -> None:
            now = self.clock()
            await uow.outbox.mark_sent(event.id, lease_id, ledger_ref, now)
            if not notified:
                await uow.outbox.mark_notified(event.id, now)

        await self.runner.run(mark, name="outbox_mark_sent")
        outbox_deliveries.labels(result="sent").inc()
        logger.debug("outbox_event_sent", event_id=event.id, event_type=event.event_type, ledger_ref=ledger_ref)
        return "sent"

    async def _fail(self, event: TransitionEvent, lease_id: str, error: str) -> str:
        dead = event.attempts >= self.max_attempts
        next_attempt_at = None if dead else self.clock() + timedelta(seconds=compute_backoff_seconds(event.attempts))

        async def mark(uow: UnitOfWork) -> None:
            await uow.outbox.mark_failed(event.id, lease_id, error, next_attempt_at, dead=dead)

        await self.runner.run(mark, name="outbox_mark_failed")
        result = "dead" if dead else "retried"
        outbox_deliveries.labels(result="dead" if dead else "retry").inc()
        logger.warning(
            "outbox_delivery_failed",
            event_id=event.id,
            event_type=event.event_type,
            attempts=event.attempts,
            dead=dead,
            error=error,
        )
        return result

    async def _notify(self, event: TransitionEvent, payload: dict[str, Any]) -> None:
        for user_id in event.recipients or []:
            try:
                await self.notifier.notify(user_id, event.event_type, payload)
            except Exception as e:
                logger.warning(
                    "notification_failed",
                    event_id=event.id,
                    user_id=user_id,
                    event_type=event.event_type,
                    error=str(e),
                )

    async def run_forever(self) -> None:
        self._wakeup = asyncio.Event()
        logger.info("outbox_relay_started", interval_seconds=self.interval_seconds)
        while True:
            with task_context("outbox_relay"):
                try:
                    await self.relay_pending()
                except Exception as e:
                    logger.error("outbox_relay_failed", error=str(e))
            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                pass
            self._wakeup.clear()


def _ledger_payload(event: TransitionEvent) -> dict[str, Any]:
    return {
        **(event.payload or {}),
        "event_id": event.id,
        "event_type": event.event_type,
        "edge_id": event.edge_id,
        "listing_id": event.listing_id,
        "related_listing_id": event.related_listing_id,
        "actor_id": event.actor_id,
        "previous_status": event.previous_status,
        "new_status": event.new_status,
        "reason": event.reason,
        "occurred_at": ensure_utc(event.created_at).isoformat() if event.created_at else None,
    }
