"""Retro chat client with a message synchronization and presence engine."""

__version__ = "0.1.0"
