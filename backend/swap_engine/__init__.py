"""Swap targeting and proposal matching engine for the booking-swap marketplace."""

__version__ = "1.0.0"
