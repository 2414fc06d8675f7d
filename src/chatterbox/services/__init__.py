"""Business logic services for the Chatterbox application."""

from .crypto import CryptoService
from .key_distribution import KeyDistributionService
from .messages import MessagePipeline
from .presence import TypingBroadcaster
from .receipts import ReadReceiptTracker

__all__ = [
    "CryptoService",
    "KeyDistributionService",
    "MessagePipeline",
    "TypingBroadcaster",
    "ReadReceiptTracker",
]
