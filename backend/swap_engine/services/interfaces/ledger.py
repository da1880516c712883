"""
Ledger / audit recorder interface: append-only record of every transition.
"""

from abc import ABC, abstractmethod
from typing import Any


class LedgerRecorder(ABC):
    @abstractmethod
    async def record(self, event_type: str, payload: dict[str, Any]) -> str:
        """
        Record one transition.

        Args:
            event_type: e.g. "proposal.accepted"
            payload: JSON-serializable event body

        Returns:
            The ledger's transaction reference.

        Raises:
            Any exception on failure; the relay schedules a retry.
        """
