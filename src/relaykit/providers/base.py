"""Abstract base class for message senders."""

from __future__ import annotations

from abc import ABC, abstractmethod

from relaykit.models.delivery import DeliveryReceipt
from relaykit.models.message import MessageActivity
from relaykit.models.reference import ConversationReference


class MessageSender(ABC):
    """Delivers messages to a conversation on the messaging platform.

    Transport, authentication and retries are the sender's business; the
    router only looks at the returned receipt. Raising is treated the same
    as returning an unsuccessful receipt.
    """

    @property
    def name(self) -> str:
        """Sender name."""
        return self.__class__.__name__

    @abstractmethod
    async def send(
        self, recipient: ConversationReference, message: MessageActivity
    ) -> DeliveryReceipt:
        """Send *message* to *recipient*.

        Args:
            recipient: Where the message goes.
            message: The message, already addressed to *recipient*.

        Returns:
            Receipt with platform-specific delivery metadata.
        """
        ...

    async def close(self) -> None:  # noqa: B027
        """Release resources. Override in subclasses that hold connections."""
