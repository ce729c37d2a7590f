"""API Resilience Implementations.

Contains services for retrying rate-limited calls with backoff and for
pacing outgoing requests on the client side.
Bounded Context: API Resilience
"""
