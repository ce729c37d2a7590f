"""Domain events emitted by the resilience layer and the reconciler."""
