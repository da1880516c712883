"""
Persistence layer. Each store wraps the unit of work's AsyncSession and owns
writes to exactly one table.
"""

from swap_engine.repositories.listing_store import ListingStore
from swap_engine.repositories.outbox_store import TransitionOutbox
from swap_engine.repositories.targeting_store import TargetingGraphStore

__all__ = ["ListingStore", "TargetingGraphStore", "TransitionOutbox"]
