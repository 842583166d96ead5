"""Core infrastructure: logging, audit trail and domain exceptions."""
