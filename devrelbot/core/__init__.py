"""Core Application Layer: Orchestrates use cases and application logic.

Connects the domain layer with the infrastructure layer: the resilience
facade used by command dispatch and dependency clients, and the command
handler behind the CLI.
"""
