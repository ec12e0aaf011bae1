"""Infrastructure Layer: Contains concrete implementations and adapters.

Rate limiting, caching, monitoring, configuration and console rendering.
"""
