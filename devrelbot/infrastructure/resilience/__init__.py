"""API Resilience Implementations.

Contains the components that gate every outbound call: per-user rate
limiting, per-dependency throttling, circuit breaking, retries with
exponential backoff, budget enforcement and the service pause switch.
Bounded Context: API Resilience
"""
