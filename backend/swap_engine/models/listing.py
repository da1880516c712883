"""
Swap listing: one booking offered for exchange.

Key design decisions:
- `status` is the listing's own lifecycle, distinct from the status of the
  proposals (targeting edges) that touch it
- `auction_deadline` is present iff mode = 'auction' (CHECK constraint)
- `version` column backs optimistic status updates; every status change bumps it
"""

from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String

from swap_engine.db.base import Base, TimestampMixin


class ListingMode:
    EXCLUSIVE = "exclusive"
    AUCTION = "auction"

    ALL = (EXCLUSIVE, AUCTION)


class ListingStatus:
    OPEN = "open"
    COMMITTED = "committed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"

    ALL = (OPEN, COMMITTED, CANCELLED, COMPLETED)
    TERMINAL = (CANCELLED, COMPLETED)


class SwapListing(Base, TimestampMixin):
    __tablename__ = "swap_listings"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, nullable=False, index=True)
    booking_id = Column(String(64), nullable=False)
    title = Column(String(255), nullable=True)
    mode = Column(String(20), nullable=False, default=ListingMode.EXCLUSIVE)
    status = Column(String(20), nullable=False, default=ListingStatus.OPEN)
    auction_deadline = Column(DateTime(timezone=True), nullable=True)

    version = Column(Integer, nullable=False, default=1)

    __table_args__ = (
        CheckConstraint("mode IN ('exclusive', 'auction')", name="check_listing_mode"),
        CheckConstraint(
            "status IN ('open', 'committed', 'cancelled', 'completed')",
            name="check_listing_status",
        ),
        CheckConstraint(
            "(mode = 'auction' AND auction_deadline IS NOT NULL)"
            " OR (mode = 'exclusive' AND auction_deadline IS NULL)",
            name="check_auction_deadline_matches_mode",
        ),
        # Browse query: open listings, newest first
        Index("ix_swap_listings_status_created", "status", "created_at"),
        # Sweeper query: open auctions by deadline
        Index("ix_swap_listings_mode_deadline", "mode", "auction_deadline"),
    )

    @property
    def is_auction(self) -> bool:
        return self.mode == ListingMode.AUCTION

    def __repr__(self) -> str:
        return f"<SwapListing(id={self.id}, owner={self.owner_id}, mode={self.mode}, status={self.status})>"
