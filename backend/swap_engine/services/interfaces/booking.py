"""
Booking Service interface.
The engine only needs ownership and availability of the booking behind a listing.
"""

from abc import ABC, abstractmethod
from typing import Optional


class BookingService(ABC):
    """
    Implementations:
    - HttpBookingService: remote booking service over HTTP
    - InMemoryBookingService: in-process registry (development, tests)
    """

    @abstractmethod
    async def get_booking_owner(self, booking_id: str) -> Optional[int]:
        """
        Owner of the booking.

        Returns:
            The owner's user id, or None if the booking is unknown.
        """

    @abstractmethod
    async def is_booking_available(self, booking_id: str) -> bool:
        """False once the booking is cancelled, used, or otherwise not exchangeable."""
