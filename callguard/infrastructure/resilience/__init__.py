"""API Resilience Implementations.

Contains the rate gate that spaces outgoing calls, enforces quota windows
and retries rate-limited calls with exponential backoff.
Bounded Context: API Resilience
"""
