"""Core Application Layer: Orchestrates the guarded call path.

Connects the domain layer with the infrastructure components (rate gate,
result cache, call monitor) through injected instances.
"""
