"""
Transition event: one row per state change, appended in the same transaction
as the change itself.

The table is both the targeting history for a listing and the outbox the
audit relay drains toward the ledger and notification services.
"""

from sqlalchemy import Column, DateTime, Index, Integer, String, Text

from swap_engine.core.clock import utcnow
from swap_engine.db.base import Base, JSONType


class EventType:
    LISTING_CREATED = "listing.created"
    LISTING_COMMITTED = "listing.committed"
    LISTING_CANCELLED = "listing.cancelled"
    LISTING_COMPLETED = "listing.completed"
    PROPOSAL_CREATED = "proposal.created"
    PROPOSAL_ACCEPTED = "proposal.accepted"
    PROPOSAL_REJECTED = "proposal.rejected"
    PROPOSAL_CANCELLED = "proposal.cancelled"
    PROPOSAL_EXPIRED = "proposal.expired"
    AUCTION_CLOSED = "auction.closed"


class DeliveryStatus:
    PENDING = "pending"
    PROCESSING = "processing"
    SENT = "sent"
    DEAD = "dead"


class TransitionEvent(Base):
    __tablename__ = "targeting_events"

    id = Column(Integer, primary_key=True)
    event_type = Column(String(50), nullable=False)

    edge_id = Column(Integer, nullable=True, index=True)
    listing_id = Column(Integer, nullable=True, index=True)
    related_listing_id = Column(Integer, nullable=True, index=True)
    actor_id = Column(Integer, nullable=True)

    previous_status = Column(String(20), nullable=True)
    new_status = Column(String(20), nullable=True)
    reason = Column(String(50), nullable=True)

    payload = Column(JSONType, nullable=False, default=dict)
    recipients = Column(JSONType, nullable=False, default=list)

    # Delivery (outbox) state
    delivery_status = Column(String(20), nullable=False, default=DeliveryStatus.PENDING)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True)
    lease_id = Column(String(32), nullable=True)
    lease_expires_at = Column(DateTime(timezone=True), nullable=True)
    ledger_ref = Column(String(128), nullable=True)
    notified_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    __table_args__ = (
        Index("ix_targeting_events_delivery", "delivery_status", "next_attempt_at"),
    )

    def __repr__(self) -> str:
        return f"<TransitionEvent(id={self.id}, type={self.event_type}, edge={self.edge_id})>"
