"""
Auction Coordinator.

An auction-mode listing collects any number of simultaneous incoming
proposals until its deadline. Accepting one of them is the ordinary commit
transaction, which cancels every other proposal on both listings. If the
deadline passes with nothing accepted, close_expired() expires the incoming
proposals and then applies the configured expiry policy:

  keep_open  the listing stays open; new proposals fail AUCTION_CLOSED
  cancel     the listing is cancelled along with its own outgoing proposals

Which bid is "best" is the target owner's call; the coordinator only keeps
the structure consistent.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from swap_engine.core.clock import Clock, ensure_utc
from swap_engine.core.errors import InvalidListingError, NotFoundError
from swap_engine.core.logging import get_logger
from swap_engine.db.uow import TransactionRunner, UnitOfWork
from swap_engine.models.listing import ListingMode, ListingStatus
from swap_engine.models.targeting import EdgeStatus
from swap_engine.models.transition_event import EventType
from swap_engine.services.proposal_lifecycle import CommitResult, ProposalLifecycleManager

logger = get_logger(__name__)

KEEP_OPEN = "keep_open"
CANCEL = "cancel"


@dataclass
class AuctionStatus:
    listing_id: int
    listing_status: str
    auction_deadline: datetime
    is_open: bool
    seconds_remaining: float
    active_proposals: int
    proposal_ids: list[int] = field(default_factory=list)


@dataclass
class AuctionClosure:
    listing_id: int
    policy: str
    listing_status: str
    expired_edge_ids: list[int] = field(default_factory=list)
    cancelled_edge_ids: list[int] = field(default_factory=list)


class AuctionCoordinator:
    def __init__(
        self,
        lifecycle: ProposalLifecycleManager,
        expiry_policy: str = KEEP_OPEN,
        clock: Optional[Clock] = None,
    ):
        if expiry_policy not in (KEEP_OPEN, CANCEL):
            raise ValueError(f"unknown auction expiry policy: {expiry_policy}")
        self.lifecycle = lifecycle
        self.expiry_policy = expiry_policy
        self.clock = clock or lifecycle.clock

    @property
    def runner(self) -> TransactionRunner:
        return self.lifecycle.runner

    async def accept_bid(self, listing_id: int, edge_id: int, requester_id: int) -> CommitResult:
        """Accept one incoming proposal on an auction listing."""
        return await self.lifecycle.accept(edge_id, requester_id, expected_target_id=listing_id)

    async def auction_status(self, listing_id: int) -> AuctionStatus:
        async def operation(uow: UnitOfWork) -> AuctionStatus:
            listing = await uow.listings.get(listing_id)
            if listing is None:
                raise NotFoundError(f"Listing {listing_id} not found", listing_id=listing_id)
            if listing.mode != ListingMode.AUCTION:
                raise InvalidListingError("Listing is not in auction mode", listing_id=listing_id)

            now = self.clock()
            deadline = ensure_utc(listing.auction_deadline)
            incoming = await uow.edges.active_incoming(listing_id)
            remaining = max((deadline - now).total_seconds(), 0.0)
            return AuctionStatus(
                listing_id=listing.id,
                listing_status=listing.status,
                auction_deadline=deadline,
                is_open=listing.status == ListingStatus.OPEN and deadline > now,
                seconds_remaining=remaining,
                active_proposals=len(incoming),
                proposal_ids=[edge.id for edge in incoming],
            )

        return await self.runner.run(operation, name="auction_status")

    async def close_expired(self, listing_id: int) -> Optional[AuctionClosure]:
        """
        Sweeper entry point. Returns None when there was nothing to close:
        the listing is gone, already resolved, or its deadline is still ahead.
        """
        async def operation(uow: UnitOfWork) -> Optional[AuctionClosure]:
            now = self.clock()
            transitions: Counter = Counter()
            listing = (await uow.listings.lock([listing_id])).get(listing_id)
            if listing is None or listing.mode != ListingMode.AUCTION or listing.status != ListingStatus.OPEN:
                return None
            if ensure_utc(listing.auction_deadline) > now:
                return None

            incoming = await uow.edges.active_incoming(listing_id, for_update=True)
            expired = await self.lifecycle.resolve_within(
                uow,
                incoming,
                EdgeStatus.EXPIRED,
                now=now,
                reason="auction_deadline",
                transitions=transitions,
            )

            cancelled: list[int] = []
            if self.expiry_policy == CANCEL:
                outgoing = await uow.edges.active_outgoing(listing_id, for_update=True)
                cancelled = await self.lifecycle.resolve_within(
                    uow,
                    outgoing,
                    EdgeStatus.CANCELLED,
                    now=now,
                    reason="listing_cancelled",
                    transitions=transitions,
                )
                await uow.listings.transition(listing, ListingStatus.CANCELLED)
                uow.outbox.append(
                    EventType.LISTING_CANCELLED,
                    listing_id=listing.id,
                    previous_status=ListingStatus.OPEN,
                    new_status=ListingStatus.CANCELLED,
                    reason="auction_expired",
                    recipients=(listing.owner_id,),
                    now=now,
                )
            elif not expired:
                return None

            uow.outbox.append(
                EventType.AUCTION_CLOSED,
                listing_id=listing.id,
                reason="deadline_passed",
                payload={
                    "policy": self.expiry_policy,
                    "auction_deadline": ensure_utc(listing.auction_deadline).isoformat(),
                    "expired_edge_ids": expired,
                    "cancelled_edge_ids": cancelled,
                },
                recipients=(listing.owner_id,),
                now=now,
            )
            self.lifecycle.schedule_after_commit(uow, transitions)
            return AuctionClosure(
                listing_id=listing.id,
                policy=self.expiry_policy,
                listing_status=listing.status,
                expired_edge_ids=expired,
                cancelled_edge_ids=cancelled,
            )

        closure = await self.runner.run(operation, name="close_auction")
        if closure is not None:
            logger.info(
                "auction_closed",
                listing_id=listing_id,
                policy=closure.policy,
                listing_status=closure.listing_status,
                expired=len(closure.expired_edge_ids),
                cancelled=len(closure.cancelled_edge_ids),
            )
        return closure
