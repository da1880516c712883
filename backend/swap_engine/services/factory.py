"""
Engine factory.
Wires the stores, services and background workers together and picks the
collaborator implementations from configuration.

Collaborator selection:
- URL configured: HTTP client against that service
- URL unset (development, tests): in-process implementation

Nothing here is a module-level singleton; the application builds one engine
in its lifespan and hands it to the routes through a dependency.
"""

from dataclasses import dataclass, field
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncEngine

from swap_engine.core.clock import Clock, utcnow
from swap_engine.core.config import Settings
from swap_engine.db.session import build_engine, build_session_factory
from swap_engine.db.uow import TransactionRunner
from swap_engine.infrastructure import (
    HttpBookingService,
    HttpLedgerRecorder,
    HttpNotificationService,
    InMemoryBookingService,
    LoggingLedgerRecorder,
    LoggingNotificationService,
)
from swap_engine.services.audit_emitter import AuditEmitter
from swap_engine.services.auction_coordinator import AuctionCoordinator
from swap_engine.services.cache_service import ListingCache
from swap_engine.services.expiry_sweeper import ExpirySweeper
from swap_engine.services.interfaces import BookingService, LedgerRecorder, NotificationService
from swap_engine.services.listing_service import ListingService
from swap_engine.services.proposal_lifecycle import ProposalLifecycleManager


@dataclass
class SwapEngine:
    db: AsyncEngine
    runner: TransactionRunner
    bookings: BookingService
    ledger: LedgerRecorder
    notifier: NotificationService
    cache: ListingCache
    lifecycle: ProposalLifecycleManager
    auctions: AuctionCoordinator
    listings: ListingService
    sweeper: ExpirySweeper
    emitter: AuditEmitter
    clock: Clock = utcnow
    _closeables: list[Any] = field(default_factory=list)

    async def aclose(self) -> None:
        for resource in self._closeables:
            await resource.aclose()
        await self.cache.close()
        await self.db.dispose()


def get_booking_service(settings: Settings) -> BookingService:
    if settings.BOOKING_SERVICE_URL:
        return HttpBookingService(settings.BOOKING_SERVICE_URL, settings.EXTERNAL_TIMEOUT_SECONDS)
    return InMemoryBookingService(autoregister=settings.DEV_AUTOREGISTER_BOOKINGS)


def get_ledger_recorder(settings: Settings) -> LedgerRecorder:
    if settings.LEDGER_URL:
        return HttpLedgerRecorder(settings.LEDGER_URL, settings.EXTERNAL_TIMEOUT_SECONDS)
    return LoggingLedgerRecorder()


def get_notification_service(settings: Settings) -> NotificationService:
    if settings.NOTIFICATION_URL:
        return HttpNotificationService(settings.NOTIFICATION_URL, settings.EXTERNAL_TIMEOUT_SECONDS)
    return LoggingNotificationService()


def build_swap_engine(
    settings: Settings,
    *,
    db: Optional[AsyncEngine] = None,
    bookings: Optional[BookingService] = None,
    ledger: Optional[LedgerRecorder] = None,
    notifier: Optional[NotificationService] = None,
    clock: Clock = utcnow,
) -> SwapEngine:
    """Explicit collaborators win over the configured ones (tests pass in-process fakes)."""
    db = db or build_engine(settings.DATABASE_URL, settings)
    runner = TransactionRunner(
        build_session_factory(db),
        max_attempts=settings.TXN_MAX_ATTEMPTS,
        base_delay_ms=settings.TXN_RETRY_BASE_DELAY_MS,
    )
    bookings = bookings or get_booking_service(settings)
    ledger = ledger or get_ledger_recorder(settings)
    notifier = notifier or get_notification_service(settings)
    cache = ListingCache(settings.REDIS_URL, settings.REDIS_CACHE_TTL, enabled=settings.REDIS_ENABLED)

    emitter = AuditEmitter(
        runner,
        ledger,
        notifier,
        clock=clock,
        batch_size=settings.OUTBOX_BATCH_SIZE,
        max_attempts=settings.OUTBOX_MAX_ATTEMPTS,
        lease_seconds=settings.OUTBOX_LEASE_SECONDS,
        interval_seconds=settings.OUTBOX_RELAY_INTERVAL_SECONDS,
    )
    lifecycle = ProposalLifecycleManager(
        runner,
        bookings,
        clock=clock,
        on_commit=(emitter.wake, cache.invalidate),
    )
    auctions = AuctionCoordinator(lifecycle, expiry_policy=settings.AUCTION_EXPIRY_POLICY, clock=clock)
    sweeper = ExpirySweeper(
        lifecycle,
        auctions,
        proposal_ttl_hours=settings.PROPOSAL_TTL_HOURS,
        batch_size=settings.SWEEPER_BATCH_SIZE,
        interval_seconds=settings.SWEEPER_INTERVAL_SECONDS,
        clock=clock,
    )

    closeables = [
        collaborator
        for collaborator in (bookings, ledger, notifier)
        if isinstance(collaborator, (HttpBookingService, HttpLedgerRecorder, HttpNotificationService))
    ]
    return SwapEngine(
        db=db,
        runner=runner,
        bookings=bookings,
        ledger=ledger,
        notifier=notifier,
        cache=cache,
        lifecycle=lifecycle,
        auctions=auctions,
        listings=ListingService(lifecycle, bookings, clock=clock),
        sweeper=sweeper,
        emitter=emitter,
        clock=clock,
        _closeables=closeables,
    )
