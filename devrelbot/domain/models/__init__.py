"""Domain Models: value objects and state records of the resilience context."""
