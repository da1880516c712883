"""
Notification service interface (push/email dispatch). Fire-and-forget.
"""

from abc import ABC, abstractmethod
from typing import Any


class NotificationService(ABC):
    @abstractmethod
    async def notify(self, user_id: int, event_type: str, payload: dict[str, Any]) -> None:
        pass
