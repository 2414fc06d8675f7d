"""Chatterbox: realtime rooms with end-to-end encrypted content."""

__version__ = "0.1.0"
