"""
Listing operations: create, cancel and the read side (browse, proposals,
history). Writes go through the same unit of work and on-commit hooks as the
lifecycle manager.
"""

from collections import Counter
from datetime import datetime
from typing import Optional

from swap_engine.core.clock import Clock, ensure_utc
from swap_engine.core.errors import (
    AlreadyResolvedError,
    InvalidListingError,
    InvalidTransitionError,
    NotFoundError,
    NotOwnerError,
    dependency_call,
)
from swap_engine.core.logging import get_logger
from swap_engine.db.uow import TransactionRunner, UnitOfWork
from swap_engine.models.listing import ListingMode, ListingStatus, SwapListing
from swap_engine.models.targeting import EdgeStatus, TargetingEdge
from swap_engine.models.transition_event import EventType, TransitionEvent
from swap_engine.services.interfaces import BookingService
from swap_engine.services.proposal_lifecycle import ProposalLifecycleManager

logger = get_logger(__name__)


class ListingService:
    def __init__(
        self,
        lifecycle: ProposalLifecycleManager,
        bookings: BookingService,
        clock: Optional[Clock] = None,
    ):
        self.lifecycle = lifecycle
        self.bookings = bookings
        self.clock = clock or lifecycle.clock

    @property
    def runner(self) -> TransactionRunner:
        return self.lifecycle.runner

    async def create_listing(
        self,
        owner_id: int,
        booking_id: str,
        mode: str = ListingMode.EXCLUSIVE,
        title: Optional[str] = None,
        auction_deadline: Optional[datetime] = None,
    ) -> SwapListing:
        if mode not in ListingMode.ALL:
            raise InvalidListingError(f"Unknown listing mode: {mode}", mode=mode)
        deadline = ensure_utc(auction_deadline)
        if mode == ListingMode.AUCTION:
            if deadline is None:
                raise InvalidListingError("Auction listings need an auction_deadline")
            if deadline <= self.clock():
                raise InvalidListingError(
                    "auction_deadline must be in the future",
                    auction_deadline=deadline.isoformat(),
                )
        elif deadline is not None:
            raise InvalidListingError("Only auction listings take an auction_deadline")

        with dependency_call("booking", booking_id=booking_id):
            owner = await self.bookings.get_booking_owner(booking_id)
            available = owner is not None and await self.bookings.is_booking_available(booking_id)
        if owner is None:
            raise InvalidListingError(f"Booking {booking_id} does not exist", booking_id=booking_id)
        if owner != owner_id:
            raise NotOwnerError("You do not own this booking", booking_id=booking_id)
        if not available:
            raise InvalidListingError(f"Booking {booking_id} is not available", booking_id=booking_id)

        async def operation(uow: UnitOfWork) -> SwapListing:
            now = self.clock()
            existing = await uow.listings.live_for_booking(booking_id)
            if existing is not None:
                raise InvalidListingError(
                    "This booking is already listed for swap",
                    booking_id=booking_id,
                    listing_id=existing.id,
                )
            listing = await uow.listings.add(
                SwapListing(
                    owner_id=owner_id,
                    booking_id=booking_id,
                    title=title,
                    mode=mode,
                    status=ListingStatus.OPEN,
                    auction_deadline=deadline,
                    version=1,
                    created_at=now,
                    updated_at=now,
                )
            )
            uow.outbox.append(
                EventType.LISTING_CREATED,
                listing_id=listing.id,
                actor_id=owner_id,
                new_status=ListingStatus.OPEN,
                payload={
                    "booking_id": booking_id,
                    "mode": mode,
                    "auction_deadline": deadline.isoformat() if deadline else None,
                },
                now=now,
            )
            self.lifecycle.schedule_after_commit(uow, Counter())
            return listing

        listing = await self.runner.run(operation, name="create_listing")
        logger.info("listing_created", listing_id=listing.id, owner_id=owner_id, mode=mode)
        return listing

    async def cancel_listing(self, listing_id: int, requester_id: int) -> tuple[SwapListing, list[int]]:
        """Owner withdraws an open listing; every active proposal touching it is cancelled with it."""
        async def operation(uow: UnitOfWork) -> tuple[SwapListing, list[int]]:
            now = self.clock()
            transitions: Counter = Counter()
            listing = (await uow.listings.lock([listing_id])).get(listing_id)
            if listing is None:
                raise NotFoundError(f"Listing {listing_id} not found", listing_id=listing_id)
            if listing.owner_id != requester_id:
                raise NotOwnerError("You do not own this listing", listing_id=listing_id)
            if listing.status == ListingStatus.CANCELLED:
                raise AlreadyResolvedError("The listing is already cancelled", listing_id=listing_id)
            if listing.status != ListingStatus.OPEN:
                raise InvalidTransitionError(
                    f"A {listing.status} listing cannot be cancelled",
                    listing_id=listing_id,
                    status=listing.status,
                )

            edges = await uow.edges.active_touching([listing_id])
            cancelled = await self.lifecycle.resolve_within(
                uow,
                edges,
                EdgeStatus.CANCELLED,
                now=now,
                reason="listing_cancelled",
                actor_id=requester_id,
                transitions=transitions,
            )
            await uow.listings.transition(listing, ListingStatus.CANCELLED)
            uow.outbox.append(
                EventType.LISTING_CANCELLED,
                listing_id=listing.id,
                actor_id=requester_id,
                previous_status=ListingStatus.OPEN,
                new_status=ListingStatus.CANCELLED,
                reason="owner_cancelled",
                payload={"cancelled_edge_ids": cancelled},
                now=now,
            )
            self.lifecycle.schedule_after_commit(uow, transitions)
            return listing, cancelled

        listing, cancelled = await self.runner.run(operation, name="cancel_listing")
        logger.info("listing_cancelled", listing_id=listing_id, cancelled_edge_ids=cancelled)
        return listing, cancelled

    # Read side

    async def get_listing(self, listing_id: int) -> SwapListing:
        async def operation(uow: UnitOfWork) -> Optional[SwapListing]:
            return await uow.listings.get(listing_id)

        listing = await self.runner.run(operation, name="get_listing")
        if listing is None:
            raise NotFoundError(f"Listing {listing_id} not found", listing_id=listing_id)
        return listing

    async def browse(
        self,
        page: int = 1,
        page_size: int = 20,
        mode: Optional[str] = None,
        exclude_owner_id: Optional[int] = None,
    ) -> tuple[list[SwapListing], int]:
        async def operation(uow: UnitOfWork) -> tuple[list[SwapListing], int]:
            return await uow.listings.browse_open(page, page_size, mode, exclude_owner_id)

        return await self.runner.run(operation, name="browse_listings")

    async def proposals(
        self,
        listing_id: int,
        direction: str = "both",
        status: Optional[str] = None,
    ) -> list[TargetingEdge]:
        async def operation(uow: UnitOfWork) -> list[TargetingEdge]:
            if await uow.listings.get(listing_id) is None:
                raise NotFoundError(f"Listing {listing_id} not found", listing_id=listing_id)
            return await uow.edges.for_listing(listing_id, direction=direction, status=status)

        return await self.runner.run(operation, name="list_proposals")

    async def current_targets(self, listing_id: int) -> list[TargetingEdge]:
        return await self.proposals(listing_id, direction="outgoing", status=EdgeStatus.ACTIVE)

    async def get_proposal(self, edge_id: int) -> TargetingEdge:
        async def operation(uow: UnitOfWork) -> Optional[TargetingEdge]:
            return await uow.edges.get(edge_id)

        edge = await self.runner.run(operation, name="get_proposal")
        if edge is None:
            raise NotFoundError(f"Proposal {edge_id} not found", edge_id=edge_id)
        return edge

    async def history(self, listing_id: int, limit: int = 100) -> list[TransitionEvent]:
        async def operation(uow: UnitOfWork) -> list[TransitionEvent]:
            if await uow.listings.get(listing_id) is None:
                raise NotFoundError(f"Listing {listing_id} not found", listing_id=listing_id)
            return await uow.outbox.history(listing_id, limit=limit)

        return await self.runner.run(operation, name="listing_history")
