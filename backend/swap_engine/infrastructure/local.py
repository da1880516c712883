"""
In-process collaborator implementations.

Used when no remote URL is configured (local development) and by the test
suite. The ledger and notifier write to the structured log and keep what they
received so callers can inspect it.
"""

import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

from swap_engine.core.logging import get_logger
from swap_engine.services.interfaces import BookingService, LedgerRecorder, NotificationService

logger = get_logger(__name__)


@dataclass
class BookingRecord:
    owner_id: int
    available: bool = True


class InMemoryBookingService(BookingService):
    """
    Booking registry held in memory.

    With `autoregister` on (development and load tests only), an unknown booking
    id of the form "<owner_id>:<reference>" is registered to that owner on first
    lookup, so listings can be created without a booking service running.
    """

    def __init__(self, autoregister: bool = False):
        self._bookings: dict[str, BookingRecord] = {}
        self.autoregister = autoregister

    def register(self, booking_id: str, owner_id: int, available: bool = True) -> None:
        self._bookings[booking_id] = BookingRecord(owner_id=owner_id, available=available)

    def set_available(self, booking_id: str, available: bool) -> None:
        self._bookings[booking_id].available = available

    def _lookup(self, booking_id: str) -> Optional[BookingRecord]:
        record = self._bookings.get(booking_id)
        if record is None and self.autoregister:
            owner, sep, _ = booking_id.partition(":")
            if sep and owner.isdigit():
                record = self._bookings[booking_id] = BookingRecord(owner_id=int(owner))
        return record

    async def get_booking_owner(self, booking_id: str) -> Optional[int]:
        record = self._lookup(booking_id)
        return record.owner_id if record else None

    async def is_booking_available(self, booking_id: str) -> bool:
        record = self._lookup(booking_id)
        return bool(record and record.available)


@dataclass
class LoggingLedgerRecorder(LedgerRecorder):
    records: list[tuple[str, str, dict[str, Any]]] = field(default_factory=list)

    async def record(self, event_type: str, payload: dict[str, Any]) -> str:
        ref = f"ledger_{uuid.uuid4().hex}"
        self.records.append((ref, event_type, payload))
        logger.info("ledger_recorded", event_type=event_type, transaction_ref=ref)
        return ref


@dataclass
class LoggingNotificationService(NotificationService):
    sent: list[tuple[int, str, dict[str, Any]]] = field(default_factory=list)

    async def notify(self, user_id: int, event_type: str, payload: dict[str, Any]) -> None:
        self.sent.append((user_id, event_type, payload))
        logger.info("notification_dispatched", user_id=user_id, event_type=event_type)
