"""Engine services: validation, proposal lifecycle, auctions, expiry and audit relay."""
