"""Routing change notification model."""

from __future__ import annotations

from datetime import UTC, datetime

from pydantic import BaseModel, Field

from relaykit.models.enums import ChangeType
from relaykit.models.reference import ConversationReference


class RoutingChange(BaseModel):
    """Emitted when a request is initiated or a connection is added or removed.

    ``owner`` is ``None`` for ``INITIATED``: nobody has accepted the request yet.
    """

    change_type: ChangeType
    owner: ConversationReference | None = None
    client: ConversationReference
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
