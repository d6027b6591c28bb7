"""Automated CALL/PUT trade-cycle robot for a binary-options broker HTTP API."""

__version__ = "0.1.0"
