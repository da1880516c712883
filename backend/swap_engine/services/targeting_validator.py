"""
Targeting Validator: decides whether source -> target may become an active edge.

Checks run in a fixed order and `validate()` stops at the first failure:
  1. ownership        requester owns the source listing          NOT_OWNER
                      and does not also own the target           OWN_LISTING
  2. availability     both listings exist, are open, and their
                      bookings are still available               LISTING_UNAVAILABLE
  3. self-target      source != target                           SELF_TARGETING
  4. duplicate        exclusive source already targeting, or the
                      same pair is already active                ALREADY_TARGETING
  5. auction window   auction target's deadline not passed       AUCTION_CLOSED
  6. cycle            source -> target would close a cycle of
                      active edges                               CIRCULAR_TARGETING

The validator never writes. It reads through the stores of the unit of work
it is handed, so when the lifecycle manager validates and then inserts, both
happen against the same transaction snapshot.

Booking availability is the one remote read. Callers fetch it with
`fetch_booking_availability()` before any rows are locked and pass the map
in; a booking missing from the map is looked up on the spot.
"""

from dataclasses import dataclass, field
from typing import Iterable, Mapping, Optional

from swap_engine.core.clock import Clock, ensure_utc, utcnow
from swap_engine.core.errors import (
    AlreadyTargetingError,
    AuctionClosedError,
    CircularTargetingError,
    ListingUnavailableError,
    NotOwnerError,
    OwnListingError,
    SelfTargetingError,
    TargetingValidationError,
    dependency_call,
)
from swap_engine.models.listing import ListingMode, ListingStatus, SwapListing
from swap_engine.repositories import ListingStore, TargetingGraphStore
from swap_engine.services.interfaces import BookingService
from swap_engine.services.targeting_graph import ActiveGraph


async def fetch_booking_availability(
    bookings: BookingService, booking_ids: Iterable[str]
) -> dict[str, bool]:
    availability: dict[str, bool] = {}
    for booking_id in dict.fromkeys(booking_ids):
        with dependency_call("booking", booking_id=booking_id):
            availability[booking_id] = await bookings.is_booking_available(booking_id)
    return availability


@dataclass
class ValidationResult:
    errors: list[TargetingValidationError | NotOwnerError] = field(default_factory=list)
    source: Optional[SwapListing] = None
    target: Optional[SwapListing] = None

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def error(self) -> Optional[TargetingValidationError | NotOwnerError]:
        return self.errors[0] if self.errors else None

    def raise_for_error(self) -> None:
        if self.errors:
            raise self.errors[0]

    @property
    def cycle(self) -> Optional[list[int]]:
        for error in self.errors:
            if isinstance(error, CircularTargetingError):
                return error.cycle
        return None


class TargetingValidator:
    def __init__(
        self,
        listings: ListingStore,
        edges: TargetingGraphStore,
        bookings: BookingService,
        clock: Clock = utcnow,
    ):
        self.listings = listings
        self.edges = edges
        self.bookings = bookings
        self.clock = clock

    async def validate(
        self,
        source_listing_id: int,
        target_listing_id: int,
        requester_id: Optional[int],
        replacing: bool = False,
        availability: Optional[Mapping[str, bool]] = None,
    ) -> ValidationResult:
        """Short-circuits on the first failed check. `replacing` skips check 4 (retarget)."""
        return await self._run(
            source_listing_id, target_listing_id, requester_id, replacing, availability, exhaustive=False
        )

    async def check(
        self,
        source_listing_id: int,
        target_listing_id: int,
        requester_id: Optional[int] = None,
        availability: Optional[Mapping[str, bool]] = None,
    ) -> ValidationResult:
        """Every check that can run, for UI hinting; ownership only when a requester is given."""
        return await self._run(
            source_listing_id, target_listing_id, requester_id, False, availability, exhaustive=True
        )

    async def _run(
        self,
        source_id: int,
        target_id: int,
        requester_id: Optional[int],
        replacing: bool,
        availability: Optional[Mapping[str, bool]],
        exhaustive: bool,
    ) -> ValidationResult:
        listings = await self.listings.get_many([source_id, target_id])
        result = ValidationResult(source=listings.get(source_id), target=listings.get(target_id))
        source, target = result.source, result.target

        def failed(error) -> bool:
            result.errors.append(error)
            return not exhaustive

        # 1. Ownership
        if source is None:
            if failed(ListingUnavailableError(f"Listing {source_id} does not exist", listing_id=source_id, reason="not_found")):
                return result
        elif requester_id is not None and source.owner_id != requester_id:
            if failed(NotOwnerError("You do not own the source listing", listing_id=source_id)):
                return result
        if source is not None and target is not None and source_id != target_id and source.owner_id == target.owner_id:
            if failed(OwnListingError(
                "Cannot target your own listing",
                listing_id=target_id,
                owner_id=target.owner_id,
            )):
                return result

        # 2. Existence / availability
        for role, listing_id, listing in (("source", source_id, source), ("target", target_id, target)):
            if listing is None:
                if role == "source":
                    continue  # already reported above
                if failed(ListingUnavailableError(f"Listing {listing_id} does not exist", listing_id=listing_id, reason="not_found")):
                    return result
            elif listing.status != ListingStatus.OPEN:
                if failed(ListingUnavailableError(
                    f"The {role} listing is not open (status: {listing.status})",
                    listing_id=listing_id,
                    reason=listing.status,
                )):
                    return result
            elif not await self._booking_available(listing.booking_id, availability):
                if failed(ListingUnavailableError(
                    f"The booking behind the {role} listing is no longer available",
                    listing_id=listing_id,
                    reason="booking_unavailable",
                )):
                    return result

        # 3. Self-target
        if source_id == target_id:
            if failed(SelfTargetingError("A listing cannot target itself", listing_id=source_id)):
                return result

        # 4. Duplicate active edge
        if source is not None and not replacing:
            outgoing = await self.edges.active_outgoing(source_id)
            same_pair = [edge for edge in outgoing if edge.target_listing_id == target_id]
            if same_pair or (outgoing and source.mode == ListingMode.EXCLUSIVE):
                current = same_pair[0] if same_pair else outgoing[0]
                if failed(AlreadyTargetingError(
                    "The source listing already has an active proposal; retarget instead",
                    listing_id=source_id,
                    active_edge_id=current.id,
                    current_target_id=current.target_listing_id,
                )):
                    return result

        # 5. Auction window
        if target is not None and target.mode == ListingMode.AUCTION:
            deadline = ensure_utc(target.auction_deadline)
            if deadline is not None and deadline <= self.clock():
                if failed(AuctionClosedError(
                    "The auction on the target listing has closed",
                    listing_id=target_id,
                    auction_deadline=deadline.isoformat(),
                )):
                    return result

        # 6. Cycle detection against one snapshot of the active edges
        if source_id != target_id:
            cycle = await self.find_cycle(source_id, target_id)
            if cycle:
                failed(CircularTargetingError(cycle))

        return result

    async def _booking_available(self, booking_id: str, availability: Optional[Mapping[str, bool]]) -> bool:
        if availability is not None and booking_id in availability:
            return availability[booking_id]
        return (await fetch_booking_availability(self.bookings, [booking_id]))[booking_id]

    async def find_cycle(self, source_id: int, target_id: int) -> Optional[list[int]]:
        graph = ActiveGraph(await self.edges.reachable_pairs(target_id))
        if graph.node_count == 0:
            return None
        bound = max(await self.listings.count(), graph.node_count)
        return graph.cycle_if_added(source_id, target_id, limit=bound)
