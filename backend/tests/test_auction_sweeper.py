"""
Tests for auction-mode listings and the expiry sweeper.
"""

from datetime import timedelta

import pytest

from swap_engine.core.errors import AuctionClosedError, InvalidListingError, NotFoundError
from swap_engine.models import EdgeStatus, EventType, ListingMode, ListingStatus
from swap_engine.services.auction_coordinator import CANCEL, KEEP_OPEN, AuctionCoordinator
from swap_engine.services.expiry_sweeper import ExpirySweeper


def sweeper_for(engine, policy=KEEP_OPEN, ttl_hours=None):
    coordinator = AuctionCoordinator(engine.lifecycle, expiry_policy=policy)
    return coordinator, ExpirySweeper(engine.lifecycle, coordinator, proposal_ttl_hours=ttl_hours)


@pytest.mark.asyncio
async def test_auction_accept_one_bid_cancels_the_rest(engine, make_listing):
    b = await make_listing(owner_id=2, mode=ListingMode.AUCTION)
    bidders = [await make_listing(owner_id=10 + i) for i in range(3)]
    bids = [await engine.lifecycle.target(x.id, b.id, x.owner_id) for x in bidders]

    status = await engine.auctions.auction_status(b.id)
    assert status.is_open is True
    assert status.active_proposals == 3
    assert status.proposal_ids == [bid.id for bid in bids]

    result = await engine.auctions.accept_bid(b.id, bids[1].id, 2)
    assert result.edge.id == bids[1].id
    assert sorted(result.cancelled_edge_ids) == sorted([bids[0].id, bids[2].id])

    status = await engine.auctions.auction_status(b.id)
    assert status.listing_status == ListingStatus.COMMITTED
    assert status.is_open is False
    assert status.active_proposals == 0


@pytest.mark.asyncio
async def test_accept_bid_must_belong_to_the_auction(engine, make_listing):
    b = await make_listing(owner_id=2, mode=ListingMode.AUCTION)
    c = await make_listing(owner_id=3)
    a = await make_listing(owner_id=1)
    edge = await engine.lifecycle.target(a.id, c.id, 1)

    with pytest.raises(NotFoundError):
        await engine.auctions.accept_bid(b.id, edge.id, 2)


@pytest.mark.asyncio
async def test_auction_status_errors(engine, make_listing):
    a = await make_listing(owner_id=1)

    with pytest.raises(InvalidListingError):
        await engine.auctions.auction_status(a.id)
    with pytest.raises(NotFoundError):
        await engine.auctions.auction_status(9999)


@pytest.mark.asyncio
async def test_deadline_expiry_keep_open(engine, make_listing, clock):
    """Deadline passes with no accept: bids expire, listing stays open, new bids fail."""
    b = await make_listing(owner_id=2, mode=ListingMode.AUCTION, deadline_in=timedelta(hours=2))
    bidders = [await make_listing(owner_id=10 + i) for i in range(3)]
    bids = [await engine.lifecycle.target(x.id, b.id, x.owner_id) for x in bidders]
    _, sweeper = sweeper_for(engine, KEEP_OPEN)

    report = await sweeper.run_once()
    assert report.is_empty

    clock.advance(hours=2, seconds=1)
    report = await sweeper.run_once()
    assert report.auctions_closed == [b.id]
    assert sorted(report.edges_expired) == sorted(bid.id for bid in bids)
    assert report.listings_cancelled == []

    for bid in bids:
        edge = await engine.listings.get_proposal(bid.id)
        assert edge.status == EdgeStatus.EXPIRED
        assert edge.resolution_reason == "auction_deadline"
    assert (await engine.listings.get_listing(b.id)).status == ListingStatus.OPEN

    late = await make_listing(owner_id=50)
    with pytest.raises(AuctionClosedError):
        await engine.lifecycle.target(late.id, b.id, 50)

    # Nothing left to do on the next tick
    assert (await sweeper.run_once()).is_empty


@pytest.mark.asyncio
async def test_deadline_expiry_cancel_policy(engine, make_listing, clock):
    b = await make_listing(owner_id=2, mode=ListingMode.AUCTION)
    a = await make_listing(owner_id=1)
    c = await make_listing(owner_id=3)
    bid = await engine.lifecycle.target(a.id, b.id, 1)
    own_offer = await engine.lifecycle.target(b.id, c.id, 2)
    _, sweeper = sweeper_for(engine, CANCEL)

    clock.advance(hours=1)
    report = await sweeper.run_once()

    assert report.auctions_closed == [b.id]
    assert report.listings_cancelled == [b.id]
    assert report.edges_expired == [bid.id]
    assert (await engine.listings.get_listing(b.id)).status == ListingStatus.CANCELLED
    assert (await engine.listings.get_proposal(own_offer.id)).status == EdgeStatus.CANCELLED

    events = [event.event_type for event in await engine.listings.history(b.id)]
    assert EventType.AUCTION_CLOSED in events
    assert EventType.LISTING_CANCELLED in events


@pytest.mark.asyncio
async def test_cancel_policy_closes_idle_auctions(engine, make_listing, clock):
    b = await make_listing(owner_id=2, mode=ListingMode.AUCTION)
    _, sweeper = sweeper_for(engine, CANCEL)

    clock.advance(hours=1)
    report = await sweeper.run_once()
    assert report.listings_cancelled == [b.id]
    assert report.edges_expired == []


@pytest.mark.asyncio
async def test_accept_before_sweep_wins(engine, make_listing, clock):
    """An accept that commits before the sweeper reaches the auction is kept."""
    b = await make_listing(owner_id=2, mode=ListingMode.AUCTION)
    a = await make_listing(owner_id=1)
    bid = await engine.lifecycle.target(a.id, b.id, 1)
    coordinator, sweeper = sweeper_for(engine, KEEP_OPEN)

    clock.advance(hours=1)
    await engine.lifecycle.accept(bid.id, 2)

    assert await coordinator.close_expired(b.id) is None
    assert (await sweeper.run_once()).is_empty
    assert (await engine.listings.get_proposal(bid.id)).status == EdgeStatus.ACCEPTED


@pytest.mark.asyncio
async def test_close_expired_before_deadline_is_noop(engine, make_listing):
    b = await make_listing(owner_id=2, mode=ListingMode.AUCTION)
    a = await make_listing(owner_id=1)
    await engine.lifecycle.target(a.id, b.id, 1)

    assert await engine.auctions.close_expired(b.id) is None


@pytest.mark.asyncio
async def test_proposal_ttl_expiry(engine, make_listing, clock):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=2)
    c = await make_listing(owner_id=3)
    old = await engine.lifecycle.target(a.id, b.id, 1)
    clock.advance(hours=20)
    fresh = await engine.lifecycle.target(c.id, b.id, 3)
    _, sweeper = sweeper_for(engine, ttl_hours=24)

    clock.advance(hours=5)
    report = await sweeper.run_once()

    assert report.edges_expired == [old.id]
    expired = await engine.listings.get_proposal(old.id)
    assert expired.status == EdgeStatus.EXPIRED
    assert expired.resolution_reason == "ttl"
    assert (await engine.listings.get_proposal(fresh.id)).status == EdgeStatus.ACTIVE


@pytest.mark.asyncio
async def test_ttl_disabled_by_default(engine, make_listing, clock):
    a = await make_listing(owner_id=1)
    b = await make_listing(owner_id=2)
    edge = await engine.lifecycle.target(a.id, b.id, 1)
    _, sweeper = sweeper_for(engine)

    clock.advance(days=365)
    assert (await sweeper.run_once()).is_empty
    assert (await engine.listings.get_proposal(edge.id)).status == EdgeStatus.ACTIVE


def test_unknown_policy_rejected():
    with pytest.raises(ValueError):
        AuctionCoordinator(lifecycle=None, expiry_policy="sometimes")
