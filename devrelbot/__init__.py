"""devrelbot: resilience and cost control for bot integrations."""

__version__ = "0.1.0"
