"""
Targeting edge (a proposal): the source listing's owner proposes to acquire
the target listing.

Key design decisions:
- CHECK constraint makes self-targeting impossible at the DB level
- Partial unique index: at most one active edge per (source, target) pair
- Terminal statuses are never rewritten; only 'active' rows are updated
"""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String, Text, text

from swap_engine.db.base import Base, JSONType, TimestampMixin


class EdgeStatus:
    ACTIVE = "active"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    EXPIRED = "expired"

    ALL = (ACTIVE, ACCEPTED, REJECTED, CANCELLED, EXPIRED)
    TERMINAL = (ACCEPTED, REJECTED, CANCELLED, EXPIRED)


class TargetingEdge(Base, TimestampMixin):
    __tablename__ = "targeting_edges"

    id = Column(Integer, primary_key=True, index=True)
    source_listing_id = Column(Integer, ForeignKey("swap_listings.id"), nullable=False, index=True)
    target_listing_id = Column(Integer, ForeignKey("swap_listings.id"), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=EdgeStatus.ACTIVE)
    message = Column(Text, nullable=True)
    conditions = Column(JSONType, nullable=False, default=list)

    resolved_at = Column(DateTime(timezone=True), nullable=True)
    resolved_by = Column(Integer, nullable=True)
    resolution_reason = Column(String(50), nullable=True)

    __table_args__ = (
        CheckConstraint("source_listing_id <> target_listing_id", name="check_no_self_targeting"),
        CheckConstraint(
            "status IN ('active', 'accepted', 'rejected', 'cancelled', 'expired')",
            name="check_edge_status",
        ),
        Index(
            "uq_active_edge_pair",
            "source_listing_id",
            "target_listing_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        # Graph snapshot and "edges touching listing" queries filter on status first
        Index("ix_targeting_edges_status_source", "status", "source_listing_id"),
        Index("ix_targeting_edges_status_target", "status", "target_listing_id"),
    )

    @property
    def is_active(self) -> bool:
        return self.status == EdgeStatus.ACTIVE

    def touches(self, listing_id: int) -> bool:
        return listing_id in (self.source_listing_id, self.target_listing_id)

    def __repr__(self) -> str:
        return (
            f"<TargetingEdge(id={self.id}, {self.source_listing_id}->{self.target_listing_id}, "
            f"status={self.status})>"
        )
