"""
Pydantic schemas for listing-related request/response validation.
"""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field, model_validator


class ListingCreate(BaseModel):
    booking_id: str = Field(..., min_length=1, max_length=64)
    title: Optional[str] = Field(None, max_length=255)
    mode: Literal["exclusive", "auction"] = "exclusive"
    auction_deadline: Optional[datetime] = None

    @model_validator(mode="after")
    def deadline_matches_mode(self) -> "ListingCreate":
        if self.mode == "auction" and self.auction_deadline is None:
            raise ValueError("auction listings need an auction_deadline")
        if self.mode == "exclusive" and self.auction_deadline is not None:
            raise ValueError("only auction listings take an auction_deadline")
        return self


class ListingResponse(BaseModel):
    id: int
    owner_id: int
    booking_id: str
    title: Optional[str]
    mode: str
    status: str
    auction_deadline: Optional[datetime]
    version: int
    created_at: datetime

    model_config = {"from_attributes": True}


class ListingListResponse(BaseModel):
    listings: list[ListingResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class ListingCancelResponse(BaseModel):
    message: str
    listing_id: int
    status: str
    cancelled_proposal_ids: list[int]


class AuctionStatusResponse(BaseModel):
    listing_id: int
    listing_status: str
    auction_deadline: datetime
    is_open: bool
    seconds_remaining: float
    active_proposals: int
    proposal_ids: list[int]

    model_config = {"from_attributes": True}


class TransitionEventResponse(BaseModel):
    id: int
    event_type: str
    edge_id: Optional[int]
    listing_id: Optional[int]
    related_listing_id: Optional[int]
    actor_id: Optional[int]
    previous_status: Optional[str]
    new_status: Optional[str]
    reason: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}
