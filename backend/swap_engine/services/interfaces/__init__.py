"""
Collaborator interfaces for dependency inversion.
The engine depends on these contracts; concrete clients live in infrastructure.
"""

from .booking import BookingService
from .ledger import LedgerRecorder
from .notification import NotificationService

__all__ = ['BookingService', 'LedgerRecorder', 'NotificationService']
