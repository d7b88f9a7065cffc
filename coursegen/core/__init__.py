"""Core infrastructure: logging, persistence and shared errors."""
