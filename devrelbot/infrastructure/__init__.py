"""Infrastructure Layer: Contains concrete implementations and adapters.

Connects the application to the outside world (AI API, configuration files,
console, logging) and hosts the resilience components that gate every
outbound call.
"""
