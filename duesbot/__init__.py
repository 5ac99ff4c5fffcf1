"""Recurring group dues: billing cycles, collection, reminders and eviction."""

__version__ = "0.1.0"
