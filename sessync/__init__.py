"""Resilient, exactly-once shipping of session logs to a remote table."""

__version__ = "0.1.0"
