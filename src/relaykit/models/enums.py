"""All string enums for RelayKit."""

from __future__ import annotations

from enum import StrEnum, unique


@unique
class EngagementRole(StrEnum):
    """Which side of a connection an identity is looked up on."""

    OWNER = "owner"
    CLIENT = "client"
    ANY = "any"


@unique
class ChangeType(StrEnum):
    INITIATED = "initiated"
    ADDED = "added"
    REMOVED = "removed"


@unique
class RoutingResultType(StrEnum):
    NO_ACTION_TAKEN = "no_action_taken"
    MESSAGE_ROUTED = "message_routed"
    FAILED_TO_ROUTE_MESSAGE = "failed_to_route_message"
    ERROR = "error"


@unique
class ConnectionRequestResultType(StrEnum):
    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    ALREADY_CONNECTED = "already_connected"
    NOT_SETUP = "not_setup"


@unique
class ConnectionResultType(StrEnum):
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"
    REJECTED = "rejected"
    NOT_PENDING = "not_pending"
    NOT_CONNECTED = "not_connected"
    ERROR = "error"
