# src/chatterbox/api/v1/endpoints/__init__.py
"""API endpoint modules for version 1."""

from .ai import router as ai_router
from .crypto import router as crypto_router
from .realtime import router as realtime_router
from .rooms import router as rooms_router
from .users import router as users_router

__all__ = [
    "ai_router",
    "crypto_router",
    "realtime_router",
    "rooms_router",
    "users_router",
]
