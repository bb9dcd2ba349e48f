"""Stream layer: shared message channel, message router, and subscriber fan-out."""
