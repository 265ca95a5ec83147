"""Message payload model exchanged with a MessageSender."""

from __future__ import annotations

from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from relaykit.models.reference import ChannelAccount, ConversationReference


class MessageActivity(BaseModel):
    """A message as seen by the router.

    The router only reads and rewrites the addressing fields; ``text``,
    ``attachments`` and ``metadata`` are carried through untouched.
    """

    id: str = Field(default_factory=lambda: uuid4().hex)
    type: str = "message"
    service_url: str
    channel_id: str
    conversation_id: str
    sender: ChannelAccount | None = None
    recipient: ChannelAccount | None = None
    text: str | None = None
    attachments: list[dict[str, Any]] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


def sender_reference(message: MessageActivity) -> ConversationReference:
    """Reference to whoever sent *message*."""
    return ConversationReference(
        service_url=message.service_url,
        channel_id=message.channel_id,
        conversation_id=message.conversation_id,
        account=message.sender,
    )


def recipient_reference(message: MessageActivity) -> ConversationReference:
    """Reference to the account *message* was addressed to (usually the bot)."""
    return ConversationReference(
        service_url=message.service_url,
        channel_id=message.channel_id,
        conversation_id=message.conversation_id,
        account=message.recipient,
    )


def readdress(message: MessageActivity, recipient: ConversationReference) -> MessageActivity:
    """Deep copy of *message* addressed to *recipient*.

    The original sender is cleared so the channel fills in its own sender
    account; every other payload field is preserved.
    """
    update: dict[str, Any] = {
        "sender": None,
        "service_url": recipient.service_url,
        "channel_id": recipient.channel_id,
        "conversation_id": recipient.conversation_id,
    }
    if recipient.account is not None:
        update["recipient"] = recipient.account
    return message.model_copy(deep=True, update=update)
