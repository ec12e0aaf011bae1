"""Caching Service Implementation.

Provides the in-memory, capacity-bounded TTL cache used for idempotent
read results.
Bounded Context: Cache Management
"""
