"""
Listing Store: persists swap listings and their lifecycle status.

LOCKING
=======
`lock()` issues SELECT ... FOR UPDATE over exactly the listings an operation
touches, always in ascending id order so two writers touching overlapping
listings queue up instead of deadlocking. SQLite ignores FOR UPDATE; there the
BEGIN IMMEDIATE transaction already holds the write lock.

Status changes go through `transition()`, which keeps the optimistic version
guard: UPDATE ... WHERE id = :id AND version = :version AND status IN (...).
Zero rows affected means someone else got there first and the unit of work
is retried.
"""

from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from swap_engine.core.errors import VersionConflict
from swap_engine.core.metrics import record_db_operation
from swap_engine.models.listing import ListingMode, ListingStatus, SwapListing
from swap_engine.models.targeting import EdgeStatus, TargetingEdge


class ListingStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, listing_id: int) -> Optional[SwapListing]:
        record_db_operation("read")
        result = await self.session.execute(select(SwapListing).where(SwapListing.id == listing_id))
        return result.scalar_one_or_none()

    async def get_many(self, listing_ids: Iterable[int]) -> dict[int, SwapListing]:
        ids = sorted(set(listing_ids))
        if not ids:
            return {}
        record_db_operation("read")
        result = await self.session.execute(select(SwapListing).where(SwapListing.id.in_(ids)))
        return {listing.id: listing for listing in result.scalars().all()}

    async def lock(self, listing_ids: Iterable[int]) -> dict[int, SwapListing]:
        """Row-lock the given listings in id order and return fresh copies."""
        ids = sorted(set(listing_ids))
        if not ids:
            return {}
        record_db_operation("read")
        result = await self.session.execute(
            select(SwapListing)
            .where(SwapListing.id.in_(ids))
            .order_by(SwapListing.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return {listing.id: listing for listing in result.scalars().all()}

    async def live_for_booking(self, booking_id: str) -> Optional[SwapListing]:
        """An open or committed listing already offering this booking."""
        result = await self.session.execute(
            select(SwapListing).where(
                SwapListing.booking_id == booking_id,
                SwapListing.status.in_([ListingStatus.OPEN, ListingStatus.COMMITTED]),
            ).limit(1)
        )
        return result.scalar_one_or_none()

    async def count(self) -> int:
        result = await self.session.execute(select(func.count()).select_from(SwapListing))
        return int(result.scalar_one())

    async def add(self, listing: SwapListing) -> SwapListing:
        record_db_operation("write")
        self.session.add(listing)
        await self.session.flush()
        await self.session.refresh(listing)
        return listing

    async def transition(
        self,
        listing: SwapListing,
        new_status: str,
        expected: Sequence[str] = (ListingStatus.OPEN,),
    ) -> None:
        record_db_operation("write")
        result = await self.session.execute(
            update(SwapListing)
            .where(
                SwapListing.id == listing.id,
                SwapListing.version == listing.version,
                SwapListing.status.in_(list(expected)),
            )
            .values(status=new_status, version=SwapListing.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise VersionConflict(f"listing {listing.id} changed concurrently")
        set_committed_value(listing, "status", new_status)
        set_committed_value(listing, "version", listing.version + 1)

    async def browse_open(
        self,
        page: int = 1,
        page_size: int = 20,
        mode: Optional[str] = None,
        exclude_owner_id: Optional[int] = None,
    ) -> tuple[list[SwapListing], int]:
        query = select(SwapListing).where(SwapListing.status == ListingStatus.OPEN)
        if mode:
            query = query.where(SwapListing.mode == mode)
        if exclude_owner_id is not None:
            query = query.where(SwapListing.owner_id != exclude_owner_id)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.session.execute(count_query)).scalar()

        result = await self.session.execute(
            query
            .order_by(SwapListing.created_at.desc(), SwapListing.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def auctions_due(self, now: datetime, limit: int, include_idle: bool = False) -> list[int]:
        """
        Open auction listings whose deadline has passed.

        Idle auctions (no active incoming proposal) only need a visit when the
        expiry policy cancels the listing; otherwise there is nothing to do.
        """
        query = select(SwapListing.id).where(
            SwapListing.mode == ListingMode.AUCTION,
            SwapListing.status == ListingStatus.OPEN,
            SwapListing.auction_deadline <= now,
        )
        if not include_idle:
            query = query.where(
                exists().where(
                    TargetingEdge.target_listing_id == SwapListing.id,
                    TargetingEdge.status == EdgeStatus.ACTIVE,
                )
            )
        result = await self.session.execute(query.order_by(SwapListing.auction_deadline).limit(limit))
        return list(result.scalars().all())
