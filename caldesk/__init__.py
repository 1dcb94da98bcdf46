"""Personal calendar service with remote calendar reconciliation."""

__version__ = "1.0.0"
