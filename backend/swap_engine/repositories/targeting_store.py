"""
Targeting Graph Store: persists targeting edges (proposals) and their status.

Only rows in status 'active' are ever updated; every status write carries
`status = 'active'` in its WHERE clause, so a terminal edge can never be
rewritten even by a caller holding a stale copy.
"""

from datetime import datetime
from typing import Iterable, Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from swap_engine.core.errors import VersionConflict
from swap_engine.core.metrics import record_db_operation
from swap_engine.models.listing import ListingMode, SwapListing
from swap_engine.models.targeting import EdgeStatus, TargetingEdge


class TargetingGraphStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, edge_id: int) -> Optional[TargetingEdge]:
        record_db_operation("read")
        result = await self.session.execute(select(TargetingEdge).where(TargetingEdge.id == edge_id))
        return result.scalar_one_or_none()

    async def lock(self, edge_id: int) -> Optional[TargetingEdge]:
        record_db_operation("read")
        result = await self.session.execute(
            select(TargetingEdge)
            .where(TargetingEdge.id == edge_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def active_outgoing(self, source_listing_id: int, for_update: bool = False) -> list[TargetingEdge]:
        query = select(TargetingEdge).where(
            TargetingEdge.source_listing_id == source_listing_id,
            TargetingEdge.status == EdgeStatus.ACTIVE,
        ).order_by(TargetingEdge.id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def active_incoming(self, target_listing_id: int, for_update: bool = False) -> list[TargetingEdge]:
        query = select(TargetingEdge).where(
            TargetingEdge.target_listing_id == target_listing_id,
            TargetingEdge.status == EdgeStatus.ACTIVE,
        ).order_by(TargetingEdge.id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def active_touching(
        self,
        listing_ids: Iterable[int],
        exclude_edge_id: Optional[int] = None,
    ) -> list[TargetingEdge]:
        """Lock every active edge with any of the listings as source or target."""
        ids = sorted(set(listing_ids))
        query = select(TargetingEdge).where(
            TargetingEdge.status == EdgeStatus.ACTIVE,
            or_(
                TargetingEdge.source_listing_id.in_(ids),
                TargetingEdge.target_listing_id.in_(ids),
            ),
        )
        if exclude_edge_id is not None:
            query = query.where(TargetingEdge.id != exclude_edge_id)
        result = await self.session.execute(
            query.order_by(TargetingEdge.id).with_for_update().execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def active_pairs(self) -> list[tuple[int, int]]:
        """Snapshot of the active-edge subgraph as (source, target) pairs."""
        record_db_operation("read")
        result = await self.session.execute(
            select(TargetingEdge.source_listing_id, TargetingEdge.target_listing_id).where(
                TargetingEdge.status == EdgeStatus.ACTIVE
            )
        )
        return [(row[0], row[1]) for row in result.all()]

    async def reachable_pairs(self, start_listing_id: int) -> list[tuple[int, int]]:
        """
        Active edges reachable from one listing, as (source, target) pairs.

        A recursive CTE walks the active subgraph outward from the start, so a
        cycle check reads only the edges it can follow and never the whole
        table. UNION (not UNION ALL) stops the walk on an existing cycle.
        """
        record_db_operation("read")
        active = TargetingEdge.status == EdgeStatus.ACTIVE
        reachable = (
            select(TargetingEdge.target_listing_id.label("listing_id"))
            .where(active, TargetingEdge.source_listing_id == start_listing_id)
            .cte("reachable", recursive=True)
        )
        reachable = reachable.union(
            select(TargetingEdge.target_listing_id)
            .join(reachable, TargetingEdge.source_listing_id == reachable.c.listing_id)
            .where(active)
        )
        result = await self.session.execute(
            select(TargetingEdge.source_listing_id, TargetingEdge.target_listing_id).where(
                active,
                or_(
                    TargetingEdge.source_listing_id == start_listing_id,
                    TargetingEdge.source_listing_id.in_(select(reachable.c.listing_id)),
                ),
            )
        )
        return [(row[0], row[1]) for row in result.all()]

    async def add(self, edge: TargetingEdge) -> TargetingEdge:
        record_db_operation("write")
        self.session.add(edge)
        await self.session.flush()
        await self.session.refresh(edge)
        return edge

    async def resolve(
        self,
        edges: Sequence[TargetingEdge],
        new_status: str,
        now: datetime,
        reason: Optional[str] = None,
        actor_id: Optional[int] = None,
    ) -> None:
        """Move active edges to a terminal status; all or nothing."""
        if not edges:
            return
        record_db_operation("write")
        ids = [edge.id for edge in edges]
        result = await self.session.execute(
            update(TargetingEdge)
            .where(TargetingEdge.id.in_(ids), TargetingEdge.status == EdgeStatus.ACTIVE)
            .values(status=new_status, resolved_at=now, resolved_by=actor_id, resolution_reason=reason)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(ids):
            raise VersionConflict(f"edges {ids} changed concurrently")
        for edge in edges:
            set_committed_value(edge, "status", new_status)
            set_committed_value(edge, "resolved_at", now)
            set_committed_value(edge, "resolved_by", actor_id)
            set_committed_value(edge, "resolution_reason", reason)

    async def for_listing(self, listing_id: int, direction: str = "both", status: Optional[str] = None) -> list[TargetingEdge]:
        if direction == "incoming":
            condition = TargetingEdge.target_listing_id == listing_id
        elif direction == "outgoing":
            condition = TargetingEdge.source_listing_id == listing_id
        else:
            condition = or_(
                TargetingEdge.source_listing_id == listing_id,
                TargetingEdge.target_listing_id == listing_id,
            )
        query = select(TargetingEdge).where(condition)
        if status:
            query = query.where(TargetingEdge.status == status)
        result = await self.session.execute(query.order_by(TargetingEdge.created_at.desc(), TargetingEdge.id.desc()))
        return list(result.scalars().all())

    async def ttl_expired(self, cutoff: datetime, limit: int) -> list[int]:
        """Active edges into exclusive-mode targets created at or before the cutoff."""
        result = await self.session.execute(
            select(TargetingEdge.id)
            .join(SwapListing, SwapListing.id == TargetingEdge.target_listing_id)
            .where(
                TargetingEdge.status == EdgeStatus.ACTIVE,
                SwapListing.mode == ListingMode.EXCLUSIVE,
                TargetingEdge.created_at <= cutoff,
            )
            .order_by(TargetingEdge.created_at)
            .limit(limit)
        )
        return list(result.scalars().all())
