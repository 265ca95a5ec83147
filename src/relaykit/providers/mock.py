"""Mock message sender for testing."""

from __future__ import annotations

import asyncio
from uuid import uuid4

from relaykit.models.delivery import DeliveryReceipt
from relaykit.models.message import MessageActivity
from relaykit.models.reference import ConversationReference
from relaykit.providers.base import MessageSender


class MockMessageSender(MessageSender):
    """Records sent messages for verification in tests.

    Args:
        fail: Return an unsuccessful receipt instead of delivering.
        error: Raise this exception from ``send``.
        delay: Seconds to sleep before answering, to exercise timeouts.
    """

    def __init__(
        self,
        fail: bool = False,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.sent: list[dict[str, ConversationReference | MessageActivity]] = []
        self.fail = fail
        self.error = error
        self.delay = delay

    async def send(
        self, recipient: ConversationReference, message: MessageActivity
    ) -> DeliveryReceipt:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        if self.fail:
            return DeliveryReceipt(success=False, error="mock delivery failure")
        self.sent.append({"recipient": recipient, "message": message})
        return DeliveryReceipt(success=True, message_id=uuid4().hex)
