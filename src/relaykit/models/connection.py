"""Connection model: an active 1:1 pairing between an owner and a client."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from relaykit.models.reference import ConversationReference, channel_match


class Connection(BaseModel):
    """An owner (e.g. a staff member) engaged with a client (e.g. an end user).

    The pairing is symmetric for message forwarding; ``owner`` is the side
    that accepted the request and serves as the unique lookup key.
    """

    owner: ConversationReference
    client: ConversationReference
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    last_activity_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    def involves(self, ref: ConversationReference) -> bool:
        return channel_match(self.owner, ref) or channel_match(self.client, ref)

    def counterpart_of(self, ref: ConversationReference) -> ConversationReference | None:
        """Return the other side of the connection, or ``None`` if *ref* is not part of it."""
        if channel_match(self.owner, ref):
            return self.client
        if channel_match(self.client, ref):
            return self.owner
        return None

    def __str__(self) -> str:
        return f"{self.owner} -> {self.client}"
