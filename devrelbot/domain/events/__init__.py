"""Domain Event definitions.

Represents significant occurrences within the resilience layer that other
parts of the system (alerting, audit, dashboards) might react to.
"""
