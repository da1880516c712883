"""
Infrastructure layer - external system integrations.
Keeps business logic clean from implementation details.
"""

from .http_clients import HttpBookingService, HttpLedgerRecorder, HttpNotificationService
from .local import InMemoryBookingService, LoggingLedgerRecorder, LoggingNotificationService

__all__ = [
    'HttpBookingService', 'HttpLedgerRecorder', 'HttpNotificationService',
    'InMemoryBookingService', 'LoggingLedgerRecorder', 'LoggingNotificationService',
]
