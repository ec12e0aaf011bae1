"""callguard: an outbound-call guard for quota-limited remote APIs.

Shapes the rate of outgoing calls, retries rate-limited calls with backoff,
caches idempotent read results and aggregates call metrics for health checks.
"""

__version__ = "0.1.0"
