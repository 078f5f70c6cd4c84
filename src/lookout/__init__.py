"""Lookout: keyword highlights for Discord, delivered by direct message."""

__version__ = "1.0.0"
