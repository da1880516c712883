"""
HTTP clients for the external collaborators.

One shared httpx.AsyncClient per collaborator (connection pooling). No retries
here: the outbox relay owns retry/backoff for the ledger, notifications are
fire-and-forget, and booking lookups fail the request that needs them.
"""

from typing import Any, Optional

import httpx

from swap_engine.core.logging import get_logger
from swap_engine.services.interfaces import BookingService, LedgerRecorder, NotificationService

logger = get_logger(__name__)


class _HttpCollaborator:
    def __init__(self, base_url: str, timeout_seconds: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self._client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=httpx.Timeout(timeout_seconds),
        )

    async def aclose(self) -> None:
        await self._client.aclose()


class HttpBookingService(_HttpCollaborator, BookingService):
    async def _fetch(self, booking_id: str) -> Optional[dict[str, Any]]:
        response = await self._client.get(f"/bookings/{booking_id}")
        if response.status_code == 404:
            return None
        response.raise_for_status()
        return response.json()

    async def get_booking_owner(self, booking_id: str) -> Optional[int]:
        data = await self._fetch(booking_id)
        if data is None:
            return None
        owner = data.get("owner_id", data.get("user_id"))
        return int(owner) if owner is not None else None

    async def is_booking_available(self, booking_id: str) -> bool:
        data = await self._fetch(booking_id)
        if data is None:
            return False
        if "available" in data:
            return bool(data["available"])
        return str(data.get("status", "")).lower() in ("available", "confirmed", "active")


class HttpLedgerRecorder(_HttpCollaborator, LedgerRecorder):
    async def record(self, event_type: str, payload: dict[str, Any]) -> str:
        response = await self._client.post(
            "/records",
            json={"event_type": event_type, "payload": payload},
        )
        response.raise_for_status()
        body = response.json()
        ref = body.get("transaction_ref") or body.get("id")
        if not ref:
            raise ValueError(f"Ledger response for {event_type} carries no transaction reference")
        return str(ref)


class HttpNotificationService(_HttpCollaborator, NotificationService):
    async def notify(self, user_id: int, event_type: str, payload: dict[str, Any]) -> None:
        response = await self._client.post(
            "/notifications",
            json={"user_id": user_id, "event_type": event_type, "payload": payload},
        )
        response.raise_for_status()
        logger.debug("notification_sent", user_id=user_id, event_type=event_type)
