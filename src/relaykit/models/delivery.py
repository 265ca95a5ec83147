"""Delivery and routing result models."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from relaykit.models.connection import Connection
from relaykit.models.enums import (
    ConnectionRequestResultType,
    ConnectionResultType,
    RoutingResultType,
)
from relaykit.models.reference import ConversationReference


class DeliveryReceipt(BaseModel):
    """Acknowledgment from a sender delivery attempt."""

    success: bool
    message_id: str | None = None
    error: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class RoutingResult(BaseModel):
    """Outcome of forwarding one message between connected parties."""

    type: RoutingResultType = RoutingResultType.NO_ACTION_TAKEN
    connection: Connection | None = None
    error_message: str | None = None


class ConnectionRequestResult(BaseModel):
    """Outcome of asking to be connected to an owner."""

    type: ConnectionRequestResultType
    requestor: ConversationReference
    error_message: str | None = None


class ConnectionResult(BaseModel):
    """Outcome of accepting, rejecting or ending a connection."""

    type: ConnectionResultType
    connection: Connection | None = None
    error_message: str | None = None
