"""Logging setup, audit sink and domain event dispatching."""
