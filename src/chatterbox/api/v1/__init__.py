# src/chatterbox/api/v1/__init__.py
"""Version 1 API endpoints."""

from .endpoints import (
    ai_router,
    crypto_router,
    realtime_router,
    rooms_router,
    users_router,
)

__all__ = [
    "ai_router",
    "crypto_router",
    "realtime_router",
    "rooms_router",
    "users_router",
]
