"""
Listing endpoints with Redis caching on the open-listing browse.
"""

from typing import Literal, Optional

from fastapi import APIRouter, Depends, Query, status

from swap_engine.api.deps import get_engine
from swap_engine.api.routes.proposals import commit_response
from swap_engine.core.logging import get_logger
from swap_engine.core.security import get_current_user_id
from swap_engine.schemas.listing import (
    AuctionStatusResponse,
    ListingCancelResponse,
    ListingCreate,
    ListingListResponse,
    ListingResponse,
    TransitionEventResponse,
)
from swap_engine.schemas.proposal import CommitResponse, ProposalResponse
from swap_engine.services.factory import SwapEngine

logger = get_logger(__name__)
router = APIRouter(prefix="/listings", tags=["Listings"])


@router.post("/", response_model=ListingResponse, status_code=status.HTTP_201_CREATED)
async def create_listing_endpoint(
    listing_data: ListingCreate,
    user_id: int = Depends(get_current_user_id),
    engine: SwapEngine = Depends(get_engine),
):
    """Offer one of your bookings for swap."""
    return await engine.listings.create_listing(
        owner_id=user_id,
        booking_id=listing_data.booking_id,
        mode=listing_data.mode,
        title=listing_data.title,
        auction_deadline=listing_data.auction_deadline,
    )


@router.get("/", response_model=ListingListResponse)
async def browse_listings_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    mode: Optional[Literal["exclusive", "auction"]] = Query(None),
    exclude_owner_id: Optional[int] = Query(None, ge=1),
    engine: SwapEngine = Depends(get_engine),
):
    """
    Browse open listings, newest first.
    Pages are cached in Redis and invalidated on every committed status change.
    """
    cached = await engine.cache.get_browse(page, page_size, mode, exclude_owner_id)
    if cached:
        logger.info("listings_browse_cache_hit", page=page)
        cached["cached"] = True
        return ListingListResponse(**cached)

    listings, total = await engine.listings.browse(page, page_size, mode, exclude_owner_id)

    response_data = {
        "listings": [ListingResponse.model_validate(listing).model_dump(mode="json") for listing in listings],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }

    await engine.cache.set_browse(page, page_size, mode, exclude_owner_id, response_data)

    return ListingListResponse(**response_data)


@router.get("/{listing_id}", response_model=ListingResponse)
async def get_listing_endpoint(
    listing_id: int,
    engine: SwapEngine = Depends(get_engine),
):
    """Get a single listing. Not cached (status must be current)."""
    return await engine.listings.get_listing(listing_id)


@router.delete("/{listing_id}", response_model=ListingCancelResponse)
async def cancel_listing_endpoint(
    listing_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: SwapEngine = Depends(get_engine),
):
    """Withdraw an open listing; its active proposals are cancelled with it."""
    listing, cancelled = await engine.listings.cancel_listing(listing_id, user_id)
    return ListingCancelResponse(
        message="Listing cancelled successfully",
        listing_id=listing.id,
        status=listing.status,
        cancelled_proposal_ids=cancelled,
    )


@router.get("/{listing_id}/proposals", response_model=list[ProposalResponse])
async def list_proposals_endpoint(
    listing_id: int,
    direction: Literal["incoming", "outgoing", "both"] = Query("both"),
    status_filter: Optional[Literal["active", "accepted", "rejected", "cancelled", "expired"]] = Query(
        None, alias="status"
    ),
    engine: SwapEngine = Depends(get_engine),
):
    """Proposals made by or to this listing, newest first."""
    return await engine.listings.proposals(listing_id, direction=direction, status=status_filter)


@router.get("/{listing_id}/history", response_model=list[TransitionEventResponse])
async def listing_history_endpoint(
    listing_id: int,
    limit: int = Query(100, ge=1, le=500),
    engine: SwapEngine = Depends(get_engine),
):
    """Targeting history: every recorded transition involving this listing, newest first."""
    return await engine.listings.history(listing_id, limit=limit)


@router.get("/{listing_id}/auction", response_model=AuctionStatusResponse)
async def auction_status_endpoint(
    listing_id: int,
    engine: SwapEngine = Depends(get_engine),
):
    return await engine.auctions.auction_status(listing_id)


@router.post("/{listing_id}/auction/bids/{edge_id}/accept", response_model=CommitResponse)
async def accept_bid_endpoint(
    listing_id: int,
    edge_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: SwapEngine = Depends(get_engine),
):
    """Accept one bid on your auction; every other bid is cancelled in the same transaction."""
    result = await engine.auctions.accept_bid(listing_id, edge_id, user_id)
    return commit_response(result)
