"""Core infrastructure: configuration, exceptions, resilience."""
