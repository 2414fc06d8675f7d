"""Realtime connection handling for Chatterbox."""

from .connection import AuthenticatedUser, Connection
from .gateway import ConnectionGateway

__all__ = ["AuthenticatedUser", "Connection", "ConnectionGateway"]
