"""
Pydantic schemas for targeting and proposal endpoints.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field


class TargetRequest(BaseModel):
    target_listing_id: int = Field(..., gt=0)
    message: Optional[str] = Field(None, max_length=2000)
    conditions: list[str] = Field(default_factory=list, max_length=20)


class ProposalResponse(BaseModel):
    id: int
    source_listing_id: int
    target_listing_id: int
    status: str
    message: Optional[str]
    conditions: list[str]
    created_at: datetime
    resolved_at: Optional[datetime]
    resolved_by: Optional[int]
    resolution_reason: Optional[str]

    model_config = {"from_attributes": True}


class RemoveTargetResponse(BaseModel):
    message: str
    listing_id: int
    cancelled_proposal_ids: list[int]


class CanTargetResponse(BaseModel):
    eligible: bool
    reasons: list[dict[str, Any]]
    cycle: Optional[list[int]] = None

    model_config = {"from_attributes": True}


class CommitResponse(BaseModel):
    proposal: ProposalResponse
    source_listing_id: int
    source_status: str
    target_listing_id: int
    target_status: str
    cancelled_proposal_ids: list[int]


class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)
    retryable: bool = False
