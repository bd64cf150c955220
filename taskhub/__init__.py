"""Messaging, notification fan-out and proposal resolution core of the task marketplace."""

__version__ = "1.0.0"
