"""
Tests for the transition outbox relay: delivery to the ledger, notification
of the parties, retry with backoff and dead-lettering.
"""

import pytest
from sqlalchemy import select

from swap_engine.core.errors import ConcurrencyConflictError
from swap_engine.models import DeliveryStatus, EventType, TransitionEvent
from swap_engine.services.audit_emitter import AuditEmitter, compute_backoff_seconds
from swap_engine.services.interfaces import LedgerRecorder, NotificationService


class FailingLedger(LedgerRecorder):
    def __init__(self):
        self.calls = 0

    async def record(self, event_type, payload):
        self.calls += 1
        raise ConnectionError("ledger unreachable")


class FailingNotifier(NotificationService):
    async def notify(self, user_id, event_type, payload):
        raise ConnectionError("notification service unreachable")


class MarkConflictRunner:
    """Delegates to the real runner but fails the first mark-sent transaction."""

    def __init__(self, runner):
        self.runner = runner
        self.conflicts = 0

    async def run(self, operation, name="transaction"):
        if name == "outbox_mark_sent" and self.conflicts == 0:
            self.conflicts += 1
            raise ConcurrencyConflictError("conflicted", operation=name)
        return await self.runner.run(operation, name=name)


async def outbox_rows(engine):
    async def operation(uow):
        result = await uow.session.execute(select(TransitionEvent).order_by(TransitionEvent.id))
        return list(result.scalars().all())

    return await engine.runner.run(operation)


async def seed_proposal(engine, make_listing):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=2)
    return await engine.lifecycle.target(a.id, b.id, 1)


@pytest.mark.asyncio
async def test_events_written_in_the_same_transaction(engine, make_listing):
    edge = await seed_proposal(engine, make_listing)

    rows = await outbox_rows(engine)
    assert [row.event_type for row in rows] == [
        EventType.LISTING_CREATED,
        EventType.LISTING_CREATED,
        EventType.PROPOSAL_CREATED,
    ]
    proposal_event = rows[-1]
    assert proposal_event.edge_id == edge.id
    assert proposal_event.actor_id == 1
    # The actor is not notified of their own action
    assert proposal_event.recipients == [2]
    assert all(row.delivery_status == DeliveryStatus.PENDING for row in rows)


@pytest.mark.asyncio
async def test_relay_delivers_and_notifies(engine, make_listing, ledger, notifier):
    edge = await seed_proposal(engine, make_listing)

    report = await engine.emitter.relay_pending()
    assert report.claimed == 3
    assert report.sent == 3

    assert [record[1] for record in ledger.records] == [
        EventType.LISTING_CREATED,
        EventType.LISTING_CREATED,
        EventType.PROPOSAL_CREATED,
    ]
    payload = ledger.records[-1][2]
    assert payload["edge_id"] == edge.id
    assert payload["event_type"] == EventType.PROPOSAL_CREATED
    assert payload["occurred_at"].startswith("2030-01-01T12:00:00")

    assert [(user_id, event_type) for user_id, event_type, _ in notifier.sent] == [
        (2, EventType.PROPOSAL_CREATED)
    ]

    rows = await outbox_rows(engine)
    assert all(row.delivery_status == DeliveryStatus.SENT for row in rows)
    assert all(row.ledger_ref for row in rows)
    assert all(row.notified_at is not None for row in rows)

    # Nothing is delivered twice
    assert (await engine.emitter.relay_pending()).claimed == 0
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_accept_notifies_every_party(engine, make_listing, notifier):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=2)
    d = await make_listing(owner_id=4)
    e1 = await engine.lifecycle.target(a.id, b.id, 1)
    await engine.lifecycle.target(d.id, b.id, 4)
    await engine.lifecycle.accept(e1.id, 2)

    await engine.emitter.relay_pending()
    received = {(user_id, event_type) for user_id, event_type, _ in notifier.sent}
    assert (1, EventType.PROPOSAL_ACCEPTED) in received
    assert (1, EventType.LISTING_COMMITTED) in received
    assert (4, EventType.PROPOSAL_CANCELLED) in received
    # The accepting owner is the actor throughout
    assert all(user_id != 2 for user_id, event_type in received if event_type != EventType.PROPOSAL_CREATED)


@pytest.mark.asyncio
async def test_ledger_failure_retries_then_dead_letters(engine, make_listing, notifier, clock):
    await seed_proposal(engine, make_listing)
    failing = FailingLedger()
    emitter = AuditEmitter(engine.runner, failing, notifier, clock=clock, max_attempts=2)

    report = await emitter.relay_pending()
    assert report.claimed == 3
    assert report.retried == 3

    rows = await outbox_rows(engine)
    assert all(row.delivery_status == DeliveryStatus.PENDING for row in rows)
    assert all(row.attempts == 1 for row in rows)
    assert all("ledger unreachable" in row.last_error for row in rows)
    assert all(row.next_attempt_at is not None for row in rows)

    # Not due yet
    assert (await emitter.relay_pending()).claimed == 0

    clock.advance(hours=1)
    report = await emitter.relay_pending()
    assert report.dead == 3

    rows = await outbox_rows(engine)
    assert all(row.delivery_status == DeliveryStatus.DEAD for row in rows)
    assert failing.calls == 6
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_notification_failure_does_not_block_delivery(engine, make_listing, ledger, clock):
    await seed_proposal(engine, make_listing)
    emitter = AuditEmitter(engine.runner, ledger, FailingNotifier(), clock=clock)

    report = await emitter.relay_pending()
    assert report.sent == 3
    assert len(ledger.records) == 3


@pytest.mark.asyncio
async def test_expired_lease_is_reclaimed(engine, make_listing, ledger, clock):
    await seed_proposal(engine, make_listing)

    async def claim(uow):
        return await uow.outbox.claim_due(clock(), 100, 60)

    # A relay that claimed the batch and died
    _, claimed = await engine.runner.run(claim)
    assert len(claimed) == 3
    assert (await engine.emitter.relay_pending()).claimed == 0

    clock.advance(seconds=61)
    report = await engine.emitter.relay_pending()
    assert report.sent == 3
    assert len(ledger.records) == 3


@pytest.mark.asyncio
async def test_mark_failure_does_not_strand_the_batch(engine, make_listing, ledger, notifier, clock):
    await seed_proposal(engine, make_listing)
    emitter = AuditEmitter(MarkConflictRunner(engine.runner), ledger, notifier, clock=clock)

    report = await emitter.relay_pending()
    assert report.claimed == 3
    assert report.unmarked == 1
    assert report.sent == 2

    statuses = [row.delivery_status for row in await outbox_rows(engine)]
    assert statuses == [DeliveryStatus.PROCESSING, DeliveryStatus.SENT, DeliveryStatus.SENT]

    # The unmarked row comes back once its lease runs out
    clock.advance(seconds=601)
    report = await emitter.relay_pending()
    assert report.sent == 1
    assert all(row.delivery_status == DeliveryStatus.SENT for row in await outbox_rows(engine))
    # At-least-once: the first event reached the ledger twice
    assert len(ledger.records) == 4


def test_backoff_grows_and_is_capped():
    assert 10 <= compute_backoff_seconds(1) <= 13
    assert 40 <= compute_backoff_seconds(3) <= 53
    assert 900 <= compute_backoff_seconds(20) <= 930


def test_wake_before_start_is_harmless(ledger, notifier):
    AuditEmitter(runner=None, ledger=ledger, notifier=notifier).wake()
