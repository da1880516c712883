"""
Tests for the targeting validator: check order, error codes and details,
and the exhaustive dry run behind can-target.
"""

from datetime import timedelta

import pytest

from swap_engine.core.errors import (
    AlreadyTargetingError,
    AuctionClosedError,
    CircularTargetingError,
    ListingUnavailableError,
    NotOwnerError,
    OwnListingError,
    SelfTargetingError,
)
from swap_engine.models import ListingMode, ListingStatus
from swap_engine.services.targeting_validator import TargetingValidator


async def validate(engine, source_id, target_id, requester_id, replacing=False):
    async def operation(uow):
        validator = TargetingValidator(uow.listings, uow.edges, engine.bookings, engine.clock)
        return await validator.validate(source_id, target_id, requester_id, replacing=replacing)

    return await engine.runner.run(operation)


@pytest.mark.asyncio
async def test_valid_target(engine, make_listing):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=2)

    result = await validate(engine, a.id, b.id, 1)
    assert result.ok
    assert result.source.id == a.id
    assert result.target.id == b.id


@pytest.mark.asyncio
async def test_not_owner_checked_first(engine, make_listing):
    a = await make_listing(owner_id=1)

    # Self-target by a stranger: ownership wins
    result = await validate(engine, a.id, a.id, 99)
    assert isinstance(result.error, NotOwnerError)
    assert len(result.errors) == 1


@pytest.mark.asyncio
async def test_missing_listings(engine, make_listing):
    a = await make_listing(owner_id=1)

    result = await validate(engine, a.id, 999, 1)
    assert isinstance(result.error, ListingUnavailableError)
    assert result.error.details["reason"] == "not_found"
    assert result.error.details["listing_id"] == 999

    result = await validate(engine, 999, a.id, 1)
    assert isinstance(result.error, ListingUnavailableError)
    assert result.error.details["listing_id"] == 999


@pytest.mark.asyncio
async def test_unavailable_booking(engine, make_listing, bookings):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=2)
    bookings.set_available(b.booking_id, False)

    result = await validate(engine, a.id, b.id, 1)
    assert isinstance(result.error, ListingUnavailableError)
    assert result.error.details["reason"] == "booking_unavailable"


@pytest.mark.asyncio
async def test_cancelled_target_is_unavailable(engine, make_listing):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=2)
    await engine.listings.cancel_listing(b.id, 2)

    result = await validate(engine, a.id, b.id, 1)
    assert isinstance(result.error, ListingUnavailableError)
    assert result.error.details["reason"] == "cancelled"


@pytest.mark.asyncio
async def test_self_targeting(engine, make_listing):
    a = await make_listing(owner_id=1)

    result = await validate(engine, a.id, a.id, 1)
    assert isinstance(result.error, SelfTargetingError)


@pytest.mark.asyncio
async def test_exclusive_source_already_targeting(engine, make_listing):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=2)
    c = await make_listing(owner_id=3)
    edge = await engine.lifecycle.target(a.id, b.id, 1)

    result = await validate(engine, a.id, c.id, 1)
    assert isinstance(result.error, AlreadyTargetingError)
    assert result.error.details["active_edge_id"] == edge.id
    assert result.error.details["current_target_id"] == b.id

    # Retarget skips the duplicate check
    assert (await validate(engine, a.id, c.id, 1, replacing=True)).ok


@pytest.mark.asyncio
async def test_auction_source_may_bid_on_several(engine, make_listing):
    a = await make_listing(owner_id=1, mode=ListingMode.AUCTION)
    b = await make_listing(owner_id=2)
    c = await make_listing(owner_id=3)
    await engine.lifecycle.target(a.id, b.id, 1)

    assert (await validate(engine, a.id, c.id, 1)).ok
    # ...but never twice on the same target
    assert isinstance((await validate(engine, a.id, b.id, 1)).error, AlreadyTargetingError)


@pytest.mark.asyncio
async def test_auction_deadline_passed(engine, make_listing, clock):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=2, mode=ListingMode.AUCTION, deadline_in=timedelta(minutes=30))

    assert (await validate(engine, a.id, b.id, 1)).ok

    clock.advance(minutes=30)
    result = await validate(engine, a.id, b.id, 1)
    assert isinstance(result.error, AuctionClosedError)
    assert "auction_deadline" in result.error.details


@pytest.mark.asyncio
async def test_cycle_is_reported(engine, make_listing):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=2)
    c = await make_listing(owner_id=3)
    await engine.lifecycle.target(a.id, b.id, 1)
    await engine.lifecycle.target(b.id, c.id, 2)

    result = await validate(engine, c.id, a.id, 3)
    assert isinstance(result.error, CircularTargetingError)
    assert result.cycle == [a.id, b.id, c.id]
    assert result.error.details["cycle"] == [a.id, b.id, c.id]


@pytest.mark.asyncio
async def test_check_collects_every_failure(engine, make_listing, bookings):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=2)
    await engine.lifecycle.target(a.id, b.id, 1)
    bookings.set_available(b.booking_id, False)

    result = await engine.lifecycle.can_target(a.id, b.id, requester_id=99)
    codes = [reason["code"] for reason in result.reasons]
    assert result.eligible is False
    assert codes == ["NOT_OWNER", "LISTING_UNAVAILABLE", "ALREADY_TARGETING"]


@pytest.mark.asyncio
async def test_can_target_without_requester_skips_ownership(engine, make_listing):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=2)
    await engine.lifecycle.target(a.id, b.id, 1)

    result = await engine.lifecycle.can_target(b.id, a.id)
    assert result.eligible is False
    assert [reason["code"] for reason in result.reasons] == ["CIRCULAR_TARGETING"]
    assert result.cycle == [a.id, b.id]


@pytest.mark.asyncio
async def test_cannot_target_own_listing(engine, make_listing):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=1)

    result = await validate(engine, a.id, b.id, 1)
    assert isinstance(result.error, OwnListingError)
    assert result.error.code == "OWN_LISTING"
    assert result.error.details == {"listing_id": b.id, "owner_id": 1}

    with pytest.raises(OwnListingError):
        await engine.lifecycle.target(a.id, b.id, 1)
    with pytest.raises(OwnListingError):
        await engine.lifecycle.retarget(a.id, b.id, 1)

    # Nothing was proposed, so nothing can be committed
    assert (await engine.listings.get_listing(a.id)).status == ListingStatus.OPEN
    assert (await engine.listings.get_listing(b.id)).status == ListingStatus.OPEN


@pytest.mark.asyncio
async def test_can_target_reports_own_listing_without_requester(engine, make_listing):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=1)

    result = await engine.lifecycle.can_target(a.id, b.id)
    assert result.eligible is False
    assert [reason["code"] for reason in result.reasons] == ["OWN_LISTING"]
