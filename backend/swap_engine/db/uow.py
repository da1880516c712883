"""
Unit of Work and transaction retry.

CONCURRENCY STRATEGY: Row locks + serializable transactions + bounded retry
==========================================================================

Every state change runs inside exactly one UnitOfWork: one AsyncSession, one
database transaction, all three stores bound to it. Nothing is visible to
other readers until the transaction commits, so an observer never sees one
listing committed while its counterpart is still open.

Conflicts surface in three ways:
  - PostgreSQL serialization failure / deadlock (SQLSTATE 40001 / 40P01)
  - SQLite busy ("database is locked") when the busy timeout runs out
  - VersionConflict from an optimistic status update that matched zero rows

All three mean "another writer got there first". The whole unit of work is
re-run from the top (fresh session, fresh reads) up to `max_attempts` times
with jittered exponential backoff; after that the caller gets
ConcurrencyConflictError, which is marked retryable.

Domain errors (SwapError) are never retried: they roll the transaction back
and propagate unchanged.

After-commit callbacks run only once the transaction has committed, which is
where the audit relay is woken and caches are invalidated. A failing callback
is logged and never undoes the committed work.
"""

import asyncio
import inspect
import random
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from swap_engine.core.errors import ConcurrencyConflictError, VersionConflict
from swap_engine.core.logging import get_logger
from swap_engine.core.metrics import db_retries, record_db_operation
from swap_engine.repositories import ListingStore, TargetingGraphStore, TransitionOutbox

logger = get_logger(__name__)

T = TypeVar("T")

SERIALIZATION_SQLSTATES = {"40001", "40P01"}


class UnitOfWork:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.listings = ListingStore(session)
        self.edges = TargetingGraphStore(session)
        self.outbox = TransitionOutbox(session)
        self._after_commit: list[Callable[[], Any]] = []

    def after_commit(self, callback: Callable[[], Any]) -> None:
        self._after_commit.append(callback)


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, VersionConflict):
        return True
    if isinstance(exc, IntegrityError):
        # Unique active-pair index raced; the retry re-validates and reports properly
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
        if sqlstate in SERIALIZATION_SQLSTATES:
            return True
        if isinstance(exc, OperationalError) and "database is locked" in str(orig).lower():
            return True
    return False


class TransactionRunner:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        max_attempts: int = 3,
        base_delay_ms: int = 20,
    ):
        self.session_factory = session_factory
        self.max_attempts = max(1, max_attempts)
        self.base_delay_ms = base_delay_ms

    async def run(self, operation: Callable[[UnitOfWork], Awaitable[T]], name: str = "transaction") -> T:
        for attempt in range(1, self.max_attempts + 1):
            uow = None
            try:
                async with self.session_factory() as session:
                    uow = UnitOfWork(session)
                    async with session.begin():
                        result = await operation(uow)
            except (DBAPIError, VersionConflict) as exc:
                if not is_retryable(exc):
                    raise
                db_retries.inc()
                record_db_operation("retry")
                logger.info(
                    "transaction_retry",
                    operation=name,
                    attempt=attempt,
                    reason=type(exc).__name__,
                )
                if attempt == self.max_attempts:
                    raise ConcurrencyConflictError(
                        "The operation conflicted with a concurrent update. Please try again.",
                        operation=name,
                        attempts=attempt,
                    ) from exc
                await asyncio.sleep(self._backoff_seconds(attempt))
                continue

            await self._run_after_commit(uow, name)
            return result

        raise ConcurrencyConflictError("Transaction retries exhausted", operation=name)

    def _backoff_seconds(self, attempt: int) -> float:
        exp = self.base_delay_ms * (2 ** (attempt - 1))
        jitter = random.randint(0, max(1, exp // 2))
        return (exp + jitter) / 1000

    async def _run_after_commit(self, uow: UnitOfWork, name: str) -> None:
        for callback in uow._after_commit:
            try:
                outcome = callback()
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as e:
                logger.error("after_commit_callback_failed", operation=name, error=str(e))
