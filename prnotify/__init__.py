"""Scheduled pull request reminders for chat channels."""

__version__ = "0.1.0"
