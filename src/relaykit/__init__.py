"""RelayKit - Pure async Python library for human-handoff message routing."""

from relaykit._version import __version__
from relaykit.core.errors import InvalidIdentityError, RelayKitError
from relaykit.core.router import MessageRouter
from relaykit.models.change import RoutingChange
from relaykit.models.config import RetryPolicy, RouterConfig
from relaykit.models.connection import Connection
from relaykit.models.delivery import (
    ConnectionRequestResult,
    ConnectionResult,
    DeliveryReceipt,
    RoutingResult,
)
from relaykit.models.enums import (
    ChangeType,
    ConnectionRequestResultType,
    ConnectionResultType,
    EngagementRole,
    RoutingResultType,
)
from relaykit.models.message import (
    MessageActivity,
    readdress,
    recipient_reference,
    sender_reference,
)
from relaykit.models.reference import (
    ChannelAccount,
    ConversationReference,
    channel_match,
    conversation_match,
    exact_match,
)
from relaykit.providers.base import MessageSender
from relaykit.providers.mock import MockMessageSender
from relaykit.providers.retry import RetryingMessageSender
from relaykit.store.base import ChangeHandler, RoutingDataManager
from relaykit.store.memory import InMemoryRoutingDataManager

__all__ = [
    "ChangeHandler",
    "ChangeType",
    "ChannelAccount",
    "Connection",
    "ConnectionRequestResult",
    "ConnectionRequestResultType",
    "ConnectionResult",
    "ConnectionResultType",
    "ConversationReference",
    "DeliveryReceipt",
    "EngagementRole",
    "InMemoryRoutingDataManager",
    "InvalidIdentityError",
    "MessageActivity",
    "MessageRouter",
    "MessageSender",
    "MockMessageSender",
    "RelayKitError",
    "RetryPolicy",
    "RetryingMessageSender",
    "RouterConfig",
    "RoutingChange",
    "RoutingDataManager",
    "RoutingResult",
    "RoutingResultType",
    "__version__",
    "channel_match",
    "conversation_match",
    "exact_match",
    "readdress",
    "recipient_reference",
    "sender_reference",
]


def __getattr__(name: str) -> object:
    if name == "PostgresRoutingDataManager":
        from relaykit.store.postgres import PostgresRoutingDataManager

        return PostgresRoutingDataManager
    raise AttributeError(f"module 'relaykit' has no attribute {name}")
