"""Message senders."""

from relaykit.providers.base import MessageSender
from relaykit.providers.mock import MockMessageSender
from relaykit.providers.retry import RetryingMessageSender

__all__ = [
    "MessageSender",
    "MockMessageSender",
    "RetryingMessageSender",
]
