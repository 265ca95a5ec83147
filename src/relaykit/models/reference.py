"""Conversation reference models and comparison helpers."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict


class ChannelAccount(BaseModel):
    """An account on a channel (a user, a staff member, or the bot itself)."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str | None = None


class ConversationReference(BaseModel):
    """Where a participant lives: endpoint, channel, conversation and account.

    Aggregation destinations omit ``account``: they name a conversation
    (e.g. a staff channel in Slack) rather than a specific person.
    """

    model_config = ConfigDict(frozen=True)

    service_url: str
    channel_id: str
    conversation_id: str
    account: ChannelAccount | None = None

    @property
    def account_id(self) -> str | None:
        return self.account.id if self.account is not None else None

    @property
    def account_name(self) -> str | None:
        return self.account.name if self.account is not None else None

    def __str__(self) -> str:
        who = self.account_id or "*"
        return f"{self.channel_id}:{self.conversation_id}/{who}@{self.service_url}"


def conversation_match(a: ConversationReference, b: ConversationReference) -> bool:
    """True when both references point at the same conversation, ignoring accounts."""
    return (
        a.service_url == b.service_url
        and a.channel_id == b.channel_id
        and a.conversation_id == b.conversation_id
    )


def exact_match(a: ConversationReference, b: ConversationReference) -> bool:
    """Strict identity: same conversation and same account id.

    Two references without an account are equal; account names are display
    data and never compared.
    """
    return conversation_match(a, b) and a.account_id == b.account_id


def channel_match(a: ConversationReference, b: ConversationReference) -> bool:
    """Loose identity: same conversation, account ids compared only if both present.

    Used wherever the incoming reference may be missing fields that the stored
    one carries (or the other way round).
    """
    if not conversation_match(a, b):
        return False
    if a.account_id is None or b.account_id is None:
        return True
    return a.account_id == b.account_id


def reference_key(ref: ConversationReference) -> tuple[str, str, str, str | None]:
    """Hashable key under which :func:`exact_match` is plain equality."""
    return (ref.service_url, ref.channel_id, ref.conversation_id, ref.account_id)
