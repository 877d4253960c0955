"""Diagnostic logging and bounded command execution for request inspection."""

__version__ = "0.1.0"
