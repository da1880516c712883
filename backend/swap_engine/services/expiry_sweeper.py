"""
Expiry Sweeper: background task that expires overdue proposals.

Each tick:
  1. Open auctions past their deadline are closed through the auction
     coordinator, one transaction per listing.
  2. With PROPOSAL_TTL_HOURS set, active proposals into exclusive listings
     older than the TTL are expired through the lifecycle manager, one
     transaction per proposal.

Every item is re-checked under lock inside its own transaction, so an accept
that commits first simply wins and the sweeper skips that proposal. Running
several sweepers at once (one per worker process) is safe for the same reason.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Optional

from swap_engine.core.clock import Clock
from swap_engine.core.errors import ConcurrencyConflictError
from swap_engine.core.logging import get_logger, task_context
from swap_engine.core.metrics import sweeper_expired
from swap_engine.db.uow import UnitOfWork
from swap_engine.models.listing import ListingStatus
from swap_engine.services.auction_coordinator import CANCEL, AuctionCoordinator
from swap_engine.services.proposal_lifecycle import ProposalLifecycleManager

logger = get_logger(__name__)


@dataclass
class SweepReport:
    auctions_closed: list[int] = field(default_factory=list)
    edges_expired: list[int] = field(default_factory=list)
    listings_cancelled: list[int] = field(default_factory=list)
    conflicts: int = 0

    @property
    def is_empty(self) -> bool:
        return not (self.auctions_closed or self.edges_expired)


class ExpirySweeper:
    def __init__(
        self,
        lifecycle: ProposalLifecycleManager,
        coordinator: AuctionCoordinator,
        proposal_ttl_hours: Optional[float] = None,
        batch_size: int = 200,
        interval_seconds: float = 60,
        clock: Optional[Clock] = None,
    ):
        self.lifecycle = lifecycle
        self.coordinator = coordinator
        self.proposal_ttl_hours = proposal_ttl_hours
        self.batch_size = batch_size
        self.interval_seconds = interval_seconds
        self.clock = clock or lifecycle.clock

    async def run_once(self) -> SweepReport:
        report = SweepReport()
        now = self.clock()
        include_idle = self.coordinator.expiry_policy == CANCEL

        async def due_auctions(uow: UnitOfWork) -> list[int]:
            return await uow.listings.auctions_due(now, self.batch_size, include_idle=include_idle)

        for listing_id in await self.lifecycle.runner.run(due_auctions, name="sweep_scan_auctions"):
            try:
                closure = await self.coordinator.close_expired(listing_id)
            except ConcurrencyConflictError:
                report.conflicts += 1
                logger.warning("sweep_item_conflict", listing_id=listing_id)
                continue
            if closure is None:
                continue
            report.auctions_closed.append(listing_id)
            report.edges_expired.extend(closure.expired_edge_ids)
            if closure.listing_status == ListingStatus.CANCELLED:
                report.listings_cancelled.append(listing_id)
            if closure.expired_edge_ids:
                sweeper_expired.labels(kind="auction").inc(len(closure.expired_edge_ids))

        if self.proposal_ttl_hours:
            cutoff = now - timedelta(hours=self.proposal_ttl_hours)

            async def stale_edges(uow: UnitOfWork) -> list[int]:
                return await uow.edges.ttl_expired(cutoff, self.batch_size)

            for edge_id in await self.lifecycle.runner.run(stale_edges, name="sweep_scan_ttl"):
                try:
                    edge = await self.lifecycle.expire(edge_id, reason="ttl")
                except ConcurrencyConflictError:
                    report.conflicts += 1
                    logger.warning("sweep_item_conflict", edge_id=edge_id)
                    continue
                if edge is not None:
                    report.edges_expired.append(edge.id)
                    sweeper_expired.labels(kind="ttl").inc()

        if not report.is_empty:
            logger.info(
                "sweep_completed",
                auctions_closed=len(report.auctions_closed),
                edges_expired=len(report.edges_expired),
                listings_cancelled=len(report.listings_cancelled),
                conflicts=report.conflicts,
            )
        return report

    async def run_forever(self) -> None:
        logger.info("sweeper_started", interval_seconds=self.interval_seconds)
        while True:
            with task_context("expiry_sweeper"):
                try:
                    await self.run_once()
                except Exception as e:
                    logger.error("sweep_failed", error=str(e))
            await asyncio.sleep(self.interval_seconds)
