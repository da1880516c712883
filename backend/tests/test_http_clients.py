"""
Tests for the HTTP collaborator clients against an in-process httpx transport.
"""

import httpx
import pytest

from swap_engine.core.errors import DependencyUnavailableError
from swap_engine.infrastructure.http_clients import HttpBookingService, HttpLedgerRecorder
from swap_engine.services.targeting_validator import fetch_booking_availability


def mock_client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(base_url="http://collaborator", transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_ledger_returns_transaction_ref():
    recorder = HttpLedgerRecorder(
        "http://collaborator",
        client=mock_client(lambda request: httpx.Response(201, json={"id": 42})),
    )

    assert await recorder.record("proposal.created", {"edge_id": 1}) == "42"
    await recorder.aclose()


@pytest.mark.asyncio
async def test_ledger_reply_without_reference_raises():
    recorder = HttpLedgerRecorder(
        "http://collaborator",
        client=mock_client(lambda request: httpx.Response(200, json={"status": "ok"})),
    )

    with pytest.raises(ValueError, match="no transaction reference"):
        await recorder.record("proposal.created", {"edge_id": 1})
    await recorder.aclose()


@pytest.mark.asyncio
async def test_booking_lookup():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/bookings/bk-1":
            return httpx.Response(200, json={"owner_id": "7", "status": "confirmed"})
        if request.url.path == "/bookings/bk-2":
            return httpx.Response(200, json={"user_id": 8, "available": False})
        return httpx.Response(404)

    service = HttpBookingService("http://collaborator", client=mock_client(handler))

    assert await service.get_booking_owner("bk-1") == 7
    assert await service.is_booking_available("bk-1") is True
    assert await service.get_booking_owner("bk-2") == 8
    assert await service.is_booking_available("bk-2") is False
    assert await service.get_booking_owner("bk-missing") is None
    assert await service.is_booking_available("bk-missing") is False
    await service.aclose()


@pytest.mark.asyncio
async def test_booking_service_error_becomes_dependency_unavailable():
    service = HttpBookingService(
        "http://collaborator",
        client=mock_client(lambda request: httpx.Response(502)),
    )

    with pytest.raises(DependencyUnavailableError) as exc_info:
        await fetch_booking_availability(service, ["bk-1"])
    assert exc_info.value.details["booking_id"] == "bk-1"
    assert "HTTPStatusError" in exc_info.value.details["error"]
    await service.aclose()
