"""Message sender wrapper that retries failed deliveries."""

from __future__ import annotations

import asyncio
import logging

from relaykit.core.retry import backoff_delay
from relaykit.models.config import RetryPolicy
from relaykit.models.delivery import DeliveryReceipt
from relaykit.models.message import MessageActivity
from relaykit.models.reference import ConversationReference
from relaykit.providers.base import MessageSender

logger = logging.getLogger("relaykit.providers.retry")


class RetryingMessageSender(MessageSender):
    """Wraps another sender and retries with exponential backoff.

    Both raised exceptions and unsuccessful receipts count as a failed
    attempt. Once the policy is exhausted the last unsuccessful receipt is
    returned, or the last exception re-raised if the final attempt raised.
    """

    def __init__(self, inner: MessageSender, policy: RetryPolicy | None = None) -> None:
        self._inner = inner
        self._policy = policy or RetryPolicy()

    @property
    def name(self) -> str:
        return f"Retrying({self._inner.name})"

    async def send(
        self, recipient: ConversationReference, message: MessageActivity
    ) -> DeliveryReceipt:
        attempts = 1 + self._policy.max_retries
        for attempt in range(attempts):
            last = attempt + 1 == attempts
            try:
                receipt = await self._inner.send(recipient, message)
            except Exception as exc:
                if last:
                    raise
                error = str(exc) or type(exc).__name__
            else:
                if receipt.success:
                    return receipt
                if last:
                    logger.warning(
                        "Delivery failed after retries",
                        extra={"sender": self._inner.name, "recipient": str(recipient)},
                    )
                    return receipt
                error = receipt.error or "delivery failed"

            delay = backoff_delay(self._policy, attempt)
            logger.warning(
                "Attempt %d/%d failed, retrying in %.1fs",
                attempt + 1,
                attempts,
                delay,
                extra={"attempt": attempt + 1, "delay": delay, "error": error},
            )
            await asyncio.sleep(delay)

        raise AssertionError("unreachable")

    async def close(self) -> None:
        await self._inner.close()
