from swap_engine.models.listing import ListingMode, ListingStatus, SwapListing
from swap_engine.models.targeting import EdgeStatus, TargetingEdge
from swap_engine.models.transition_event import DeliveryStatus, EventType, TransitionEvent

__all__ = [
    "SwapListing", "ListingMode", "ListingStatus",
    "TargetingEdge", "EdgeStatus",
    "TransitionEvent", "EventType", "DeliveryStatus",
]
