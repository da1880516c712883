"""Initial schema: swap listings, targeting edges, transition events.

Revision ID: 001
Revises: None
Create Date: 2026-10-18
"""
from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    # Swap listings
    op.create_table(
        "swap_listings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("owner_id", sa.Integer(), nullable=False),
        sa.Column("booking_id", sa.String(64), nullable=False),
        sa.Column("title", sa.String(255), nullable=True),
        sa.Column("mode", sa.String(20), nullable=False, server_default="exclusive"),
        sa.Column("status", sa.String(20), nullable=False, server_default="open"),
        sa.Column("auction_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("mode IN ('exclusive', 'auction')", name="check_listing_mode"),
        sa.CheckConstraint(
            "status IN ('open', 'committed', 'cancelled', 'completed')",
            name="check_listing_status",
        ),
        sa.CheckConstraint(
            "(mode = 'auction' AND auction_deadline IS NOT NULL)"
            " OR (mode = 'exclusive' AND auction_deadline IS NULL)",
            name="check_auction_deadline_matches_mode",
        ),
    )
    op.create_index("ix_swap_listings_id", "swap_listings", ["id"])
    op.create_index("ix_swap_listings_owner_id", "swap_listings", ["owner_id"])
    # Browse: open listings, newest first
    op.create_index("ix_swap_listings_status_created", "swap_listings", ["status", "created_at"])
    # Sweeper: open auctions ordered by deadline
    op.create_index("ix_swap_listings_mode_deadline", "swap_listings", ["mode", "auction_deadline"])

    # Targeting edges (proposals)
    op.create_table(
        "targeting_edges",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("source_listing_id", sa.Integer(), sa.ForeignKey("swap_listings.id"), nullable=False),
        sa.Column("target_listing_id", sa.Integer(), sa.ForeignKey("swap_listings.id"), nullable=False),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("message", sa.Text(), nullable=True),
        sa.Column("conditions", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolved_by", sa.Integer(), nullable=True),
        sa.Column("resolution_reason", sa.String(50), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("source_listing_id <> target_listing_id", name="check_no_self_targeting"),
        sa.CheckConstraint(
            "status IN ('active', 'accepted', 'rejected', 'cancelled', 'expired')",
            name="check_edge_status",
        ),
    )
    op.create_index("ix_targeting_edges_id", "targeting_edges", ["id"])
    op.create_index("ix_targeting_edges_source_listing_id", "targeting_edges", ["source_listing_id"])
    op.create_index("ix_targeting_edges_target_listing_id", "targeting_edges", ["target_listing_id"])
    # At most one active edge per (source, target); terminal rows are history and may repeat
    op.create_index(
        "uq_active_edge_pair",
        "targeting_edges",
        ["source_listing_id", "target_listing_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )
    # Graph snapshot and "edges touching a listing" both filter on status first
    op.create_index("ix_targeting_edges_status_source", "targeting_edges", ["status", "source_listing_id"])
    op.create_index("ix_targeting_edges_status_target", "targeting_edges", ["status", "target_listing_id"])

    # Transition events: targeting history + outbox
    op.create_table(
        "targeting_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("event_type", sa.String(50), nullable=False),
        sa.Column("edge_id", sa.Integer(), nullable=True),
        sa.Column("listing_id", sa.Integer(), nullable=True),
        sa.Column("related_listing_id", sa.Integer(), nullable=True),
        sa.Column("actor_id", sa.Integer(), nullable=True),
        sa.Column("previous_status", sa.String(20), nullable=True),
        sa.Column("new_status", sa.String(20), nullable=True),
        sa.Column("reason", sa.String(50), nullable=True),
        sa.Column("payload", postgresql.JSONB(), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("recipients", postgresql.JSONB(), nullable=False, server_default=sa.text("'[]'::jsonb")),
        sa.Column("delivery_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("next_attempt_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lease_id", sa.String(32), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ledger_ref", sa.String(128), nullable=True),
        sa.Column("notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("delivered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_targeting_events_edge_id", "targeting_events", ["edge_id"])
    op.create_index("ix_targeting_events_listing_id", "targeting_events", ["listing_id"])
    op.create_index("ix_targeting_events_related_listing_id", "targeting_events", ["related_listing_id"])
    # Relay claim query: pending rows that are due
    op.create_index("ix_targeting_events_delivery", "targeting_events", ["delivery_status", "next_attempt_at"])


def downgrade() -> None:
    op.drop_table("targeting_events")
    op.drop_table("targeting_edges")
    op.drop_table("swap_listings")
