from swap_engine.schemas.listing import (
    AuctionStatusResponse,
    ListingCancelResponse,
    ListingCreate,
    ListingListResponse,
    ListingResponse,
    TransitionEventResponse,
)
from swap_engine.schemas.proposal import (
    CanTargetResponse,
    CommitResponse,
    ErrorResponse,
    ProposalResponse,
    RemoveTargetResponse,
    TargetRequest,
)

__all__ = [
    "ListingCreate", "ListingResponse", "ListingListResponse", "ListingCancelResponse",
    "AuctionStatusResponse", "TransitionEventResponse",
    "TargetRequest", "ProposalResponse", "RemoveTargetResponse", "CanTargetResponse",
    "CommitResponse", "ErrorResponse",
]
