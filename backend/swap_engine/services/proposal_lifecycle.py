"""
Proposal Lifecycle Manager: the state machine of a targeting edge.

    active -> accepted    target owner accepts (commit transaction)
    active -> rejected    target owner declines
    active -> cancelled   source owner withdraws, retargets, or a competing accept supersedes it
    active -> expired     sweeper only (auction deadline or proposal TTL)

Terminal statuses never change again. An accepted edge is the only one that
leads anywhere further, and that is the listings (committed -> completed),
not the edge.

COMMIT TRANSACTION
==================
accept() runs as one unit of work:
  1. Row-lock both listings (ascending id) and then the edge
  2. Requester must own the target listing; edge must still be active and
     both listings open, otherwise ALREADY_RESOLVED
  3. Edge -> accepted, both listings -> committed (version-guarded)
  4. Every other active edge touching either listing -> cancelled ('superseded')
  5. Outbox rows for all of the above

Two concurrent accepts that share a listing serialize on the listing row
lock (or on BEGIN IMMEDIATE under SQLite). Whoever runs second re-reads the
rows, finds its edge cancelled, and gets ALREADY_RESOLVED. On PostgreSQL the
loser may instead hit a serialization failure first; the transaction runner
re-runs it and it then fails the same way.

Nothing is logged or counted until the unit of work commits: a retried
attempt leaves no trace except the `transaction_retry` log line.
"""

import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Iterable, Optional, Sequence

from swap_engine.core.clock import Clock, utcnow
from swap_engine.core.errors import (
    AlreadyResolvedError,
    ConcurrencyConflictError,
    DependencyUnavailableError,
    InvalidTransitionError,
    NotFoundError,
    NotOwnerError,
    SwapError,
)
from swap_engine.core.logging import get_logger
from swap_engine.core.metrics import commit_latency, record_operation, record_transition
from swap_engine.db.uow import TransactionRunner, UnitOfWork
from swap_engine.models.listing import ListingStatus, SwapListing
from swap_engine.models.targeting import EdgeStatus, TargetingEdge
from swap_engine.models.transition_event import EventType
from swap_engine.services.interfaces import BookingService
from swap_engine.services.targeting_validator import (
    TargetingValidator,
    ValidationResult,
    fetch_booking_availability,
)

logger = get_logger(__name__)

_TRANSITIONS: dict[str, frozenset[str]] = {
    EdgeStatus.ACTIVE: frozenset(
        {EdgeStatus.ACCEPTED, EdgeStatus.REJECTED, EdgeStatus.CANCELLED, EdgeStatus.EXPIRED}
    ),
}

_EDGE_EVENTS = {
    EdgeStatus.ACCEPTED: EventType.PROPOSAL_ACCEPTED,
    EdgeStatus.REJECTED: EventType.PROPOSAL_REJECTED,
    EdgeStatus.CANCELLED: EventType.PROPOSAL_CANCELLED,
    EdgeStatus.EXPIRED: EventType.PROPOSAL_EXPIRED,
}


def can_transition(current: str, new_status: str) -> bool:
    return new_status in _TRANSITIONS.get(current, frozenset())


def ensure_transition(edge: TargetingEdge, new_status: str) -> None:
    if can_transition(edge.status, new_status):
        return
    if edge.status in EdgeStatus.TERMINAL:
        raise AlreadyResolvedError(
            f"Proposal {edge.id} is already {edge.status}",
            edge_id=edge.id,
            status=edge.status,
        )
    raise InvalidTransitionError(
        f"Proposal {edge.id} cannot move from {edge.status} to {new_status}",
        edge_id=edge.id,
        status=edge.status,
        requested=new_status,
    )


@dataclass
class CommitResult:
    edge: TargetingEdge
    source: SwapListing
    target: SwapListing
    cancelled_edge_ids: list[int] = field(default_factory=list)


@dataclass
class CanTargetResult:
    eligible: bool
    reasons: list[dict[str, Any]] = field(default_factory=list)
    cycle: Optional[list[int]] = None

    @classmethod
    def from_validation(cls, result: ValidationResult) -> "CanTargetResult":
        return cls(
            eligible=result.ok,
            reasons=[error.to_dict() for error in result.errors],
            cycle=result.cycle,
        )


class ProposalLifecycleManager:
    def __init__(
        self,
        runner: TransactionRunner,
        bookings: BookingService,
        clock: Clock = utcnow,
        on_commit: Sequence[Callable[[], Any]] = (),
    ):
        self.runner = runner
        self.bookings = bookings
        self.clock = clock
        self.on_commit = list(on_commit)

    def validator(self, uow: UnitOfWork) -> TargetingValidator:
        return TargetingValidator(uow.listings, uow.edges, self.bookings, self.clock)

    async def booking_availability(self, name: str, listing_ids: Sequence[int]) -> dict[str, bool]:
        """Availability of the bookings behind the open listings, read before any row lock."""

        async def operation(uow: UnitOfWork) -> list[str]:
            listings = await uow.listings.get_many(listing_ids)
            return [listing.booking_id for listing in listings.values() if listing.status == ListingStatus.OPEN]

        booking_ids = await self.runner.run(operation, name=f"{name}_booking_lookup")
        try:
            return await fetch_booking_availability(self.bookings, booking_ids)
        except DependencyUnavailableError as e:
            record_operation(name, "unavailable")
            logger.warning(f"{name}_dependency_unavailable", **e.details)
            raise

    async def _run(self, name: str, operation: Callable[[UnitOfWork], Awaitable[Any]]) -> Any:
        try:
            result = await self.runner.run(operation, name=name)
        except ConcurrencyConflictError:
            record_operation(name, "conflict")
            raise
        except SwapError as e:
            record_operation(name, "rejected")
            logger.info(f"{name}_rejected", code=e.code, reason=e.message)
            raise
        except Exception:
            record_operation(name, "error")
            raise
        record_operation(name, "success")
        return result

    def schedule_after_commit(self, uow: UnitOfWork, transitions: Counter) -> None:
        """Count the edge transitions and fire the on-commit hooks once the unit of work commits."""
        def count() -> None:
            for status, n in transitions.items():
                record_transition(status, n)

        uow.after_commit(count)
        for hook in self.on_commit:
            uow.after_commit(hook)

    # Shared building blocks (also used by the auction coordinator and listing service)

    async def resolve_within(
        self,
        uow: UnitOfWork,
        edges: Sequence[TargetingEdge],
        new_status: str,
        *,
        now: datetime,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None,
        transitions: Optional[Counter] = None,
    ) -> list[int]:
        """Move active edges to `new_status` and append one outbox event per edge."""
        if not edges:
            return []
        for edge in edges:
            ensure_transition(edge, new_status)

        owners = await self._owners(uow, _listing_ids(edges))
        previous = {edge.id: edge.status for edge in edges}
        await uow.edges.resolve(edges, new_status, now, reason=reason, actor_id=actor_id)

        for edge in edges:
            uow.outbox.append(
                _EDGE_EVENTS[new_status],
                edge=edge,
                actor_id=actor_id,
                previous_status=previous[edge.id],
                new_status=new_status,
                reason=reason,
                recipients=(owners.get(edge.source_listing_id), owners.get(edge.target_listing_id)),
                now=now,
            )
        if transitions is not None:
            transitions[new_status] += len(edges)
        return [edge.id for edge in edges]

    async def _owners(self, uow: UnitOfWork, listing_ids: Iterable[int]) -> dict[int, int]:
        listings = await uow.listings.get_many(listing_ids)
        return {listing_id: listing.owner_id for listing_id, listing in listings.items()}

    async def _load_for_update(
        self, uow: UnitOfWork, edge_id: int
    ) -> tuple[TargetingEdge, SwapListing, SwapListing]:
        """Lock order: listings (ascending id), then the edge."""
        edge = await uow.edges.get(edge_id)
        if edge is None:
            raise NotFoundError(f"Proposal {edge_id} not found", edge_id=edge_id)
        listings = await uow.listings.lock([edge.source_listing_id, edge.target_listing_id])
        edge = await uow.edges.lock(edge_id)
        return edge, listings[edge.source_listing_id], listings[edge.target_listing_id]

    async def _insert_edge(
        self,
        uow: UnitOfWork,
        result: ValidationResult,
        requester_id: int,
        message: Optional[str],
        conditions: Optional[Sequence[str]],
        now: datetime,
        transitions: Counter,
    ) -> TargetingEdge:
        source, target = result.source, result.target
        edge = await uow.edges.add(
            TargetingEdge(
                source_listing_id=source.id,
                target_listing_id=target.id,
                status=EdgeStatus.ACTIVE,
                message=message,
                conditions=list(conditions or []),
                created_at=now,
                updated_at=now,
            )
        )
        uow.outbox.append(
            EventType.PROPOSAL_CREATED,
            edge=edge,
            actor_id=requester_id,
            new_status=EdgeStatus.ACTIVE,
            payload={"message": message, "conditions": list(edge.conditions or [])},
            recipients=(source.owner_id, target.owner_id),
            now=now,
        )
        transitions[EdgeStatus.ACTIVE] += 1
        return edge

    # Operations

    async def target(
        self,
        source_listing_id: int,
        target_listing_id: int,
        requester_id: int,
        message: Optional[str] = None,
        conditions: Optional[Sequence[str]] = None,
    ) -> TargetingEdge:
        availability = await self.booking_availability("target", [source_listing_id, target_listing_id])

        async def operation(uow: UnitOfWork) -> TargetingEdge:
            now = self.clock()
            transitions: Counter = Counter()
            await uow.listings.lock([source_listing_id, target_listing_id])
            result = await self.validator(uow).validate(
                source_listing_id, target_listing_id, requester_id, availability=availability
            )
            result.raise_for_error()
            edge = await self._insert_edge(uow, result, requester_id, message, conditions, now, transitions)
            self.schedule_after_commit(uow, transitions)
            return edge

        edge = await self._run("target", operation)
        logger.info(
            "proposal_created",
            edge_id=edge.id,
            source_listing_id=source_listing_id,
            target_listing_id=target_listing_id,
            requester_id=requester_id,
        )
        return edge

    async def retarget(
        self,
        source_listing_id: int,
        new_target_listing_id: int,
        requester_id: int,
        message: Optional[str] = None,
        conditions: Optional[Sequence[str]] = None,
    ) -> TargetingEdge:
        """
        Replace the source's active outgoing edge(s) with one edge to the new
        target, in one transaction. With nothing to replace this is target().
        Retargeting onto the current target keeps the existing edge.
        """
        availability = await self.booking_availability("retarget", [source_listing_id, new_target_listing_id])
        replaced: list[int] = []

        async def operation(uow: UnitOfWork) -> TargetingEdge:
            now = self.clock()
            transitions: Counter = Counter()
            replaced.clear()
            await uow.listings.lock([source_listing_id, new_target_listing_id])
            result = await self.validator(uow).validate(
                source_listing_id, new_target_listing_id, requester_id, replacing=True, availability=availability
            )
            result.raise_for_error()

            current = await uow.edges.active_outgoing(source_listing_id, for_update=True)
            if len(current) == 1 and current[0].target_listing_id == new_target_listing_id:
                return current[0]

            replaced.extend(
                await self.resolve_within(
                    uow,
                    current,
                    EdgeStatus.CANCELLED,
                    now=now,
                    reason="retargeted",
                    actor_id=requester_id,
                    transitions=transitions,
                )
            )
            edge = await self._insert_edge(uow, result, requester_id, message, conditions, now, transitions)
            self.schedule_after_commit(uow, transitions)
            return edge

        edge = await self._run("retarget", operation)
        logger.info(
            "proposal_retargeted",
            edge_id=edge.id,
            source_listing_id=source_listing_id,
            target_listing_id=new_target_listing_id,
            replaced_edge_ids=replaced,
        )
        return edge

    async def remove_target(self, source_listing_id: int, requester_id: int) -> list[TargetingEdge]:
        async def operation(uow: UnitOfWork) -> list[TargetingEdge]:
            now = self.clock()
            transitions: Counter = Counter()
            source = (await uow.listings.lock([source_listing_id])).get(source_listing_id)
            if source is None:
                raise NotFoundError(f"Listing {source_listing_id} not found", listing_id=source_listing_id)
            if source.owner_id != requester_id:
                raise NotOwnerError("You do not own the source listing", listing_id=source_listing_id)

            edges = await uow.edges.active_outgoing(source_listing_id, for_update=True)
            if not edges:
                raise NotFoundError(
                    "The listing has no active proposal to remove",
                    listing_id=source_listing_id,
                )
            await self.resolve_within(
                uow,
                edges,
                EdgeStatus.CANCELLED,
                now=now,
                reason="withdrawn",
                actor_id=requester_id,
                transitions=transitions,
            )
            self.schedule_after_commit(uow, transitions)
            return edges

        edges = await self._run("remove_target", operation)
        logger.info(
            "proposal_target_removed",
            source_listing_id=source_listing_id,
            edge_ids=[edge.id for edge in edges],
        )
        return edges

    async def withdraw(self, edge_id: int, requester_id: int) -> TargetingEdge:
        """Source owner cancels one specific active proposal."""
        async def operation(uow: UnitOfWork) -> TargetingEdge:
            now = self.clock()
            transitions: Counter = Counter()
            edge, source, _ = await self._load_for_update(uow, edge_id)
            if source.owner_id != requester_id:
                raise NotOwnerError("Only the proposing listing's owner can withdraw it", edge_id=edge_id)
            await self.resolve_within(
                uow,
                [edge],
                EdgeStatus.CANCELLED,
                now=now,
                reason="withdrawn",
                actor_id=requester_id,
                transitions=transitions,
            )
            self.schedule_after_commit(uow, transitions)
            return edge

        edge = await self._run("withdraw", operation)
        logger.info("proposal_withdrawn", edge_id=edge.id, requester_id=requester_id)
        return edge

    async def reject(self, edge_id: int, requester_id: int) -> TargetingEdge:
        async def operation(uow: UnitOfWork) -> TargetingEdge:
            now = self.clock()
            transitions: Counter = Counter()
            edge, _, target = await self._load_for_update(uow, edge_id)
            if target.owner_id != requester_id:
                raise NotOwnerError("Only the target listing's owner can reject a proposal", edge_id=edge_id)
            await self.resolve_within(
                uow,
                [edge],
                EdgeStatus.REJECTED,
                now=now,
                reason="rejected",
                actor_id=requester_id,
                transitions=transitions,
            )
            self.schedule_after_commit(uow, transitions)
            return edge

        edge = await self._run("reject", operation)
        logger.info("proposal_rejected", edge_id=edge.id, requester_id=requester_id)
        return edge

    async def accept(
        self,
        edge_id: int,
        requester_id: int,
        expected_target_id: Optional[int] = None,
    ) -> CommitResult:
        started = time.perf_counter()

        async def operation(uow: UnitOfWork) -> CommitResult:
            now = self.clock()
            transitions: Counter = Counter()
            edge, source, target = await self._load_for_update(uow, edge_id)

            if expected_target_id is not None and edge.target_listing_id != expected_target_id:
                raise NotFoundError(
                    f"Proposal {edge_id} does not target listing {expected_target_id}",
                    edge_id=edge_id,
                    listing_id=expected_target_id,
                )
            if target.owner_id != requester_id:
                raise NotOwnerError("Only the target listing's owner can accept a proposal", edge_id=edge_id)
            if edge.status != EdgeStatus.ACTIVE or source.status != ListingStatus.OPEN or target.status != ListingStatus.OPEN:
                raise AlreadyResolvedError(
                    "The proposal or one of its listings has already been resolved",
                    edge_id=edge_id,
                    edge_status=edge.status,
                    source_status=source.status,
                    target_status=target.status,
                )

            await self.resolve_within(
                uow,
                [edge],
                EdgeStatus.ACCEPTED,
                now=now,
                reason="accepted",
                actor_id=requester_id,
                transitions=transitions,
            )
            for listing in (source, target):
                await uow.listings.transition(listing, ListingStatus.COMMITTED)
                uow.outbox.append(
                    EventType.LISTING_COMMITTED,
                    listing_id=listing.id,
                    related_listing_id=target.id if listing is source else source.id,
                    edge=edge,
                    actor_id=requester_id,
                    previous_status=ListingStatus.OPEN,
                    new_status=ListingStatus.COMMITTED,
                    recipients=(listing.owner_id,),
                    now=now,
                )

            competing = await uow.edges.active_touching([source.id, target.id], exclude_edge_id=edge.id)
            cancelled = await self.resolve_within(
                uow,
                competing,
                EdgeStatus.CANCELLED,
                now=now,
                reason="superseded",
                actor_id=requester_id,
                transitions=transitions,
            )
            self.schedule_after_commit(uow, transitions)
            return CommitResult(edge=edge, source=source, target=target, cancelled_edge_ids=cancelled)

        result = await self._run("accept", operation)
        elapsed = time.perf_counter() - started
        commit_latency.observe(elapsed)
        logger.info(
            "commit_completed",
            edge_id=edge_id,
            source_listing_id=result.source.id,
            target_listing_id=result.target.id,
            cancelled_edge_ids=result.cancelled_edge_ids,
            duration_ms=round(elapsed * 1000, 2),
        )
        return result

    async def expire(self, edge_id: int, reason: str = "ttl") -> Optional[TargetingEdge]:
        """Sweeper entry point. Returns None when the edge is no longer active."""
        async def operation(uow: UnitOfWork) -> Optional[TargetingEdge]:
            now = self.clock()
            transitions: Counter = Counter()
            edge = await uow.edges.get(edge_id)
            if edge is None or edge.status != EdgeStatus.ACTIVE:
                return None
            edge, _, _ = await self._load_for_update(uow, edge_id)
            if edge.status != EdgeStatus.ACTIVE:
                return None
            await self.resolve_within(
                uow,
                [edge],
                EdgeStatus.EXPIRED,
                now=now,
                reason=reason,
                transitions=transitions,
            )
            self.schedule_after_commit(uow, transitions)
            return edge

        edge = await self._run("expire", operation)
        if edge is not None:
            logger.info("proposal_expired", edge_id=edge.id, reason=reason)
        return edge

    async def complete(self, edge_id: int, requester_id: int) -> CommitResult:
        """Either party marks a committed pair as completed once settlement has happened."""
        async def operation(uow: UnitOfWork) -> CommitResult:
            now = self.clock()
            edge, source, target = await self._load_for_update(uow, edge_id)
            if requester_id not in (source.owner_id, target.owner_id):
                raise NotOwnerError("Only a party to the swap can complete it", edge_id=edge_id)
            if edge.status != EdgeStatus.ACCEPTED:
                raise InvalidTransitionError(
                    f"Proposal {edge_id} is {edge.status}; only accepted proposals can be completed",
                    edge_id=edge_id,
                    status=edge.status,
                )
            if source.status == ListingStatus.COMPLETED and target.status == ListingStatus.COMPLETED:
                raise AlreadyResolvedError("The swap is already completed", edge_id=edge_id)
            if source.status != ListingStatus.COMMITTED or target.status != ListingStatus.COMMITTED:
                raise InvalidTransitionError(
                    "Both listings must be committed before the swap can be completed",
                    edge_id=edge_id,
                    source_status=source.status,
                    target_status=target.status,
                )

            for listing in (source, target):
                await uow.listings.transition(listing, ListingStatus.COMPLETED, expected=(ListingStatus.COMMITTED,))
                uow.outbox.append(
                    EventType.LISTING_COMPLETED,
                    listing_id=listing.id,
                    related_listing_id=target.id if listing is source else source.id,
                    edge=edge,
                    actor_id=requester_id,
                    previous_status=ListingStatus.COMMITTED,
                    new_status=ListingStatus.COMPLETED,
                    recipients=(source.owner_id, target.owner_id),
                    now=now,
                )
            self.schedule_after_commit(uow, Counter())
            return CommitResult(edge=edge, source=source, target=target)

        result = await self._run("complete", operation)
        logger.info("swap_completed", edge_id=edge_id, requester_id=requester_id)
        return result

    async def can_target(
        self,
        source_listing_id: int,
        target_listing_id: int,
        requester_id: Optional[int] = None,
    ) -> CanTargetResult:
        availability = await self.booking_availability("can_target", [source_listing_id, target_listing_id])

        async def operation(uow: UnitOfWork) -> CanTargetResult:
            result = await self.validator(uow).check(
                source_listing_id, target_listing_id, requester_id, availability=availability
            )
            return CanTargetResult.from_validation(result)

        return await self.runner.run(operation, name="can_target")


def _listing_ids(edges: Iterable[TargetingEdge]) -> set[int]:
    ids: set[int] = set()
    for edge in edges:
        ids.add(edge.source_listing_id)
        ids.add(edge.target_listing_id)
    return ids
