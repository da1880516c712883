"""
Pytest fixtures: a throwaway SQLite database per test, an engine wired with
in-process collaborators, a controllable clock and an HTTP client.

SQLite runs every transaction under BEGIN IMMEDIATE, so concurrent writers
serialize the same way they queue on row locks in PostgreSQL.
"""

import itertools
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from swap_engine.api.deps import get_engine
from swap_engine.core.config import Settings
from swap_engine.db.base import Base
from swap_engine.infrastructure import InMemoryBookingService, LoggingLedgerRecorder, LoggingNotificationService
from swap_engine.main import app
from swap_engine.models import ListingMode
from swap_engine.services.factory import SwapEngine, build_swap_engine

T0 = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def bookings() -> InMemoryBookingService:
    return InMemoryBookingService()


@pytest.fixture
def ledger() -> LoggingLedgerRecorder:
    return LoggingLedgerRecorder()


@pytest.fixture
def notifier() -> LoggingNotificationService:
    return LoggingNotificationService()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        ENVIRONMENT="test",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'swap_test.db'}",
        REDIS_ENABLED=False,
        SWEEPER_ENABLED=False,
        OUTBOX_RELAY_ENABLED=False,
        TXN_MAX_ATTEMPTS=5,
        TXN_RETRY_BASE_DELAY_MS=5,
    )


@pytest_asyncio.fixture
async def engine(settings, bookings, ledger, notifier, clock) -> AsyncGenerator[SwapEngine, None]:
    """Create tables, yield a fully wired engine, then dispose of it."""
    swap_engine = build_swap_engine(
        settings,
        bookings=bookings,
        ledger=ledger,
        notifier=notifier,
        clock=clock,
    )
    async with swap_engine.db.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield swap_engine

    await swap_engine.aclose()


@pytest_asyncio.fixture
async def client(engine: SwapEngine) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the engine dependency overridden."""
    app.dependency_overrides[get_engine] = lambda: engine

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_listing(engine: SwapEngine, bookings: InMemoryBookingService, clock: FrozenClock):
    """Factory: register a booking for the owner and list it."""
    counter = itertools.count(1)

    async def _make(owner_id: int, mode: str = ListingMode.EXCLUSIVE, deadline_in: timedelta = None, title: str = None):
        booking_id = f"bk-{owner_id}-{next(counter)}"
        bookings.register(booking_id, owner_id)
        deadline = None
        if mode == ListingMode.AUCTION:
            deadline = clock() + (deadline_in or timedelta(hours=1))
        return await engine.listings.create_listing(
            owner_id=owner_id,
            booking_id=booking_id,
            mode=mode,
            title=title,
            auction_deadline=deadline,
        )

    return _make
