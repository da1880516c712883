"""
Proposal endpoints: resolve a single targeting edge.

accept is the commit transaction. Two owners accepting competing proposals at
the same time get exactly one 200; the other gets 409 ALREADY_RESOLVED.
"""

from fastapi import APIRouter, Depends

from swap_engine.api.deps import get_engine
from swap_engine.core.security import get_current_user_id
from swap_engine.schemas.proposal import CommitResponse, ProposalResponse
from swap_engine.services.factory import SwapEngine
from swap_engine.services.proposal_lifecycle import CommitResult

router = APIRouter(prefix="/proposals", tags=["Proposals"])


def commit_response(result: CommitResult) -> CommitResponse:
    return CommitResponse(
        proposal=ProposalResponse.model_validate(result.edge),
        source_listing_id=result.source.id,
        source_status=result.source.status,
        target_listing_id=result.target.id,
        target_status=result.target.status,
        cancelled_proposal_ids=result.cancelled_edge_ids,
    )


@router.get("/{edge_id}", response_model=ProposalResponse)
async def get_proposal_endpoint(
    edge_id: int,
    engine: SwapEngine = Depends(get_engine),
):
    return await engine.listings.get_proposal(edge_id)


@router.post("/{edge_id}/accept", response_model=CommitResponse)
async def accept_proposal_endpoint(
    edge_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: SwapEngine = Depends(get_engine),
):
    """
    Accept a proposal made to your listing.

    Both listings become committed and every other active proposal touching
    either of them is cancelled, all in one transaction.
    """
    result = await engine.lifecycle.accept(edge_id, user_id)
    return commit_response(result)


@router.post("/{edge_id}/reject", response_model=ProposalResponse)
async def reject_proposal_endpoint(
    edge_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: SwapEngine = Depends(get_engine),
):
    """Decline a proposal made to your listing. Both listings stay open."""
    return await engine.lifecycle.reject(edge_id, user_id)


@router.post("/{edge_id}/withdraw", response_model=ProposalResponse)
async def withdraw_proposal_endpoint(
    edge_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: SwapEngine = Depends(get_engine),
):
    """Withdraw one of your own proposals."""
    return await engine.lifecycle.withdraw(edge_id, user_id)


@router.post("/{edge_id}/complete", response_model=CommitResponse)
async def complete_swap_endpoint(
    edge_id: int,
    user_id: int = Depends(get_current_user_id),
    engine: SwapEngine = Depends(get_engine),
):
    """Mark an accepted swap as completed once settlement has happened."""
    result = await engine.lifecycle.complete(edge_id, user_id)
    return commit_response(result)
