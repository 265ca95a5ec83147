"""Abstract base class for routing data storage."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable

from relaykit.core.errors import InvalidIdentityError
from relaykit.models.change import RoutingChange
from relaykit.models.connection import Connection
from relaykit.models.enums import ChangeType, EngagementRole
from relaykit.models.reference import ConversationReference, conversation_match

logger = logging.getLogger("relaykit.store")

ChangeHandler = Callable[[RoutingChange], Awaitable[None]]


class RoutingDataManager(ABC):
    """Routing state: known identities, pending requests and connections.

    Implement this ABC to plug in any storage backend (SQL, Redis, etc.).
    The library ships with ``InMemoryRoutingDataManager`` for single-process
    deployments and ``PostgresRoutingDataManager`` for shared state.

    Every mutating operation must be atomic against the backing store: two
    callers racing to connect the same client to different owners get one
    ``True`` and one ``False``, never two connections.

    Expected negative outcomes (duplicates, missing entries, conflicting
    connections) are reported as ``False``/``0``/``None``. Only contract
    violations raise, see :class:`~relaykit.core.errors.InvalidIdentityError`.
    """

    def __init__(self) -> None:
        self._change_handlers: list[ChangeHandler] = []

    # Observers

    def on_change(self, handler: ChangeHandler) -> ChangeHandler:
        """Register an async handler for routing changes.

        Handlers run inline, in registration order, right after the mutation
        that triggered them. Usable as a decorator.
        """
        self._change_handlers.append(handler)
        return handler

    def remove_change_handler(self, handler: ChangeHandler) -> bool:
        """Unregister *handler*. Returns ``True`` if it was registered."""
        try:
            self._change_handlers.remove(handler)
        except ValueError:
            return False
        return True

    async def _emit(
        self,
        change_type: ChangeType,
        client: ConversationReference,
        owner: ConversationReference | None = None,
    ) -> None:
        change = RoutingChange(change_type=change_type, owner=owner, client=client)
        for handler in list(self._change_handlers):
            try:
                await handler(change)
            except Exception:
                logger.exception(
                    "Routing change handler failed",
                    extra={"change_type": str(change_type), "client": str(client)},
                )

    # Contract checks shared by backends

    @staticmethod
    def _check_bot_identity(ref: ConversationReference) -> None:
        if ref.account is None:
            raise InvalidIdentityError(f"Bot identity must have an account: {ref}")

    @staticmethod
    def _check_aggregation_destination(ref: ConversationReference) -> None:
        if ref.account is not None:
            raise InvalidIdentityError(f"Aggregation destination cannot have an account: {ref}")

    # Identity operations

    @abstractmethod
    async def get_user_identities(self) -> list[ConversationReference]:
        """Return the known human participants."""
        ...

    @abstractmethod
    async def get_bot_identities(self) -> list[ConversationReference]:
        """Return the bot's identities, one per channel it is addressed from."""
        ...

    @abstractmethod
    async def add_identity(self, ref: ConversationReference, is_user: bool = True) -> bool:
        """Add a user (or bot) identity. Returns ``False`` for an exact duplicate.

        Raises:
            InvalidIdentityError: If a bot identity has no account.
        """
        ...

    @abstractmethod
    async def remove_identity(self, ref: ConversationReference) -> bool:
        """Remove every channel-matching user, bot and pending entry for *ref*.

        Connections in which *ref* is the owner or the client (channel-matching)
        are torn down too. Returns ``True`` if anything was removed.
        """
        ...

    # Aggregation operations

    @abstractmethod
    async def get_aggregation_destinations(self) -> list[ConversationReference]:
        """Return the conversations where pending requests are surfaced."""
        ...

    @abstractmethod
    async def add_aggregation_destination(self, ref: ConversationReference) -> bool:
        """Add an aggregation destination. Returns ``False`` for a duplicate.

        Raises:
            InvalidIdentityError: If *ref* carries an account.
        """
        ...

    @abstractmethod
    async def remove_aggregation_destination(self, ref: ConversationReference) -> bool:
        """Remove an aggregation destination. Returns ``True`` if it existed."""
        ...

    # Pending request operations

    @abstractmethod
    async def get_pending_requests(self) -> list[ConversationReference]:
        """Return identities waiting for their request to be accepted."""
        ...

    @abstractmethod
    async def add_pending_request(self, ref: ConversationReference) -> bool:
        """Add a pending request and emit ``INITIATED``. ``False`` for a duplicate."""
        ...

    @abstractmethod
    async def remove_pending_request(self, ref: ConversationReference) -> bool:
        """Remove a pending request. Returns ``True`` if it existed."""
        ...

    # Connection operations

    @abstractmethod
    async def get_connections(self) -> list[Connection]:
        """Return all active connections."""
        ...

    @abstractmethod
    async def add_connection(
        self, owner: ConversationReference, client: ConversationReference
    ) -> bool:
        """Connect *owner* with *client* and clear the client's pending request.

        Returns ``False`` without changing anything when either side is
        already engaged. Emits ``ADDED`` on success.
        """
        ...

    @abstractmethod
    async def remove_connection(self, ref: ConversationReference, role: EngagementRole) -> int:
        """Remove connections where *ref* plays *role*. Returns how many were removed.

        Emits ``REMOVED`` for each removed connection.
        """
        ...

    @abstractmethod
    async def update_last_activity(self, connection: Connection) -> bool:
        """Refresh the activity timestamp. ``False`` if the connection is gone."""
        ...

    @abstractmethod
    async def is_engaged(self, ref: ConversationReference, role: EngagementRole) -> bool:
        """Whether *ref* (exact match) is part of a connection in the given role."""
        ...

    @abstractmethod
    async def find_counterpart(self, ref: ConversationReference) -> ConversationReference | None:
        """The owner of *ref*'s connection if *ref* is a client, else its client if
        *ref* is an owner, else ``None``."""
        ...

    @abstractmethod
    async def find_connection(self, ref: ConversationReference) -> Connection | None:
        """Find the connection *ref* belongs to, channel-matching owners first."""
        ...

    @abstractmethod
    async def clear(self) -> None:
        """Drop all routing data. No notifications are emitted."""
        ...

    # Finders

    async def find_user_identity(
        self, account_id: str, conversation_id: str
    ) -> ConversationReference | None:
        """Find a user identity by exact account and conversation id."""
        for ref in await self.get_user_identities():
            if ref.account_id == account_id and ref.conversation_id == conversation_id:
                return ref
        return None

    async def find_bot_identity(
        self, channel_id: str, conversation_id: str
    ) -> ConversationReference | None:
        """Find the bot identity used in a given channel conversation.

        Returns ``None`` when no identity or more than one matches.
        """
        matches = [
            ref
            for ref in await self.get_bot_identities()
            if ref.channel_id == channel_id and ref.conversation_id == conversation_id
        ]
        if len(matches) > 1:
            logger.warning(
                "Ambiguous bot identity",
                extra={"channel_id": channel_id, "conversation_id": conversation_id},
            )
            return None
        return matches[0] if matches else None

    async def find_engaged_identity(
        self, channel_id: str, account_id: str
    ) -> ConversationReference | None:
        """Find an engaged identity by channel and account, owners before clients."""
        connections = await self.get_connections()
        for candidate in [c.owner for c in connections] + [c.client for c in connections]:
            if candidate.channel_id == channel_id and candidate.account_id == account_id:
                return candidate
        return None

    async def is_aggregation_member(self, ref: ConversationReference) -> bool:
        """Whether *ref* lives in an aggregation destination, whatever its account."""
        return any(
            conversation_match(destination, ref)
            for destination in await self.get_aggregation_destinations()
        )

    async def resolve_bot_name(self, ref: ConversationReference) -> str | None:
        """Display name the bot uses in *ref*'s conversation, if known."""
        bot = await self.find_bot_identity(ref.channel_id, ref.conversation_id)
        return bot.account_name if bot is not None else None

    async def dump_connections(self) -> str:
        """Human-readable ``owner -> client`` lines for diagnostics."""
        return "".join(f"{c}\n" for c in await self.get_connections())
