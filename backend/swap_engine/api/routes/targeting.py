"""
Targeting endpoints: a listing's outgoing proposal(s).

Validation failures come back as 4xx with a stable code and the violated
rule in `details` (for CIRCULAR_TARGETING, the cycle itself).
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from swap_engine.api.deps import get_engine
from swap_engine.core.security import get_current_user_id, get_optional_user_id
from swap_engine.schemas.proposal import CanTargetResponse, ProposalResponse, RemoveTargetResponse, TargetRequest
from swap_engine.services.factory import SwapEngine

router = APIRouter(prefix="/listings", tags=["Targeting"])


@router.post("/{listing_id}/target", response_model=ProposalResponse, status_code=status.HTTP_201_CREATED)
async def target_listing_endpoint(
    listing_id: int,
    request: TargetRequest,
    user_id: int = Depends(get_current_user_id),
    engine: SwapEngine = Depends(get_engine),
):
    """Propose to swap your listing for another one."""
    return await engine.lifecycle.target(
        listing_id,
        request.target_listing_id,
        user_id,
        message=request.message,
        conditions=request.conditions,
    )


@router.put("/{listing_id}/target", response_model=ProposalResponse)
async def retarget_listing_endpoint(
    listing_id: int,
    request: TargetRequest,
    user_id: int = Depends(get_current_user_id),
    engine: SwapEngine = Depends(get_engine),
):
    """Replace your listing's current proposal with one to a different listing."""
    return await engine.lifecycle.retarget(
        listing_id,
        request.target_listing_id,
        user_id,
        message=request.message,
        conditions=request.conditions,
    )


@router.delete("/{listing_id}/target", response_model=RemoveTargetResponse)
async def remove_target_endpoint(
    listing_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: SwapEngine = Depends(get_engine),
):
    edges = await engine.lifecycle.remove_target(listing_id, user_id)
    return RemoveTargetResponse(
        message="Proposal withdrawn",
        listing_id=listing_id,
        cancelled_proposal_ids=[edge.id for edge in edges],
    )


@router.get("/{listing_id}/target", response_model=list[ProposalResponse])
async def current_target_endpoint(
    listing_id: int,
    engine: SwapEngine = Depends(get_engine),
):
    """The listing's active outgoing proposal(s)."""
    return await engine.listings.current_targets(listing_id)


@router.get("/{listing_id}/can-target/{target_listing_id}", response_model=CanTargetResponse)
async def can_target_endpoint(
    listing_id: int,
    target_listing_id: int,
    user_id: Optional[int] = Depends(get_optional_user_id),
    engine: SwapEngine = Depends(get_engine),
):
    """Dry run of every targeting check, for UI hints. Changes nothing."""
    return await engine.lifecycle.can_target(listing_id, target_listing_id, user_id)
