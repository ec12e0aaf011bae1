"""Domain Event definitions.

Represents significant occurrences on the guarded call path that other parts
of the system (monitoring, logging, tests) might react to.
"""
