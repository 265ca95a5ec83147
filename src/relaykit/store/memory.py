"""In-memory implementation of RoutingDataManager."""

from __future__ import annotations

import logging
from datetime import UTC, datetime

from relaykit.models.connection import Connection
from relaykit.models.enums import ChangeType, EngagementRole
from relaykit.models.reference import (
    ConversationReference,
    channel_match,
    exact_match,
    reference_key,
)
from relaykit.store.base import RoutingDataManager

logger = logging.getLogger("relaykit.store")

_Key = tuple[str, str, str, str | None]


def _utcnow() -> datetime:
    return datetime.now(UTC)


class InMemoryRoutingDataManager(RoutingDataManager):
    """Dict-based in-memory routing state.

    Connections are indexed both by owner and by client so counterpart
    lookups never scan. Mutations contain no ``await`` between check and
    write, which makes them atomic within one event loop; notifications
    are awaited only once the state change is complete.

    Not suitable for deployments with several processes: each would see
    its own routing tables.
    """

    def __init__(self) -> None:
        super().__init__()
        self._users: dict[_Key, ConversationReference] = {}
        self._bots: dict[_Key, ConversationReference] = {}
        self._aggregations: dict[_Key, ConversationReference] = {}
        self._pending: dict[_Key, ConversationReference] = {}
        self._by_owner: dict[_Key, Connection] = {}
        self._by_client: dict[_Key, Connection] = {}

    # Identity operations

    async def get_user_identities(self) -> list[ConversationReference]:
        return list(self._users.values())

    async def get_bot_identities(self) -> list[ConversationReference]:
        return list(self._bots.values())

    async def add_identity(self, ref: ConversationReference, is_user: bool = True) -> bool:
        if ref is None:
            return False
        if not is_user:
            self._check_bot_identity(ref)
        target = self._users if is_user else self._bots
        key = reference_key(ref)
        if key in target:
            return False
        target[key] = ref
        return True

    async def remove_identity(self, ref: ConversationReference) -> bool:
        removed = False
        for collection in (self._users, self._bots, self._pending):
            keys = [k for k, existing in collection.items() if channel_match(existing, ref)]
            for key in keys:
                del collection[key]
            removed = removed or bool(keys)

        # Stored account fields may be stale, so connections match by channel.
        dropped = [c for c in self._by_owner.values() if c.involves(ref)]
        for connection in dropped:
            self._drop(connection)

        for connection in dropped:
            await self._emit(ChangeType.REMOVED, connection.client, connection.owner)
        return removed or bool(dropped)

    # Aggregation operations

    async def get_aggregation_destinations(self) -> list[ConversationReference]:
        return list(self._aggregations.values())

    async def add_aggregation_destination(self, ref: ConversationReference) -> bool:
        self._check_aggregation_destination(ref)
        key = reference_key(ref)
        if key in self._aggregations:
            return False
        self._aggregations[key] = ref
        return True

    async def remove_aggregation_destination(self, ref: ConversationReference) -> bool:
        return self._aggregations.pop(reference_key(ref), None) is not None

    # Pending request operations

    async def get_pending_requests(self) -> list[ConversationReference]:
        return list(self._pending.values())

    async def add_pending_request(self, ref: ConversationReference) -> bool:
        if ref is None:
            return False
        key = reference_key(ref)
        if key in self._pending:
            return False
        self._pending[key] = ref
        await self._emit(ChangeType.INITIATED, ref)
        return True

    async def remove_pending_request(self, ref: ConversationReference) -> bool:
        return self._pending.pop(reference_key(ref), None) is not None

    # Connection operations

    async def get_connections(self) -> list[Connection]:
        return [c.model_copy() for c in self._by_owner.values()]

    async def add_connection(
        self, owner: ConversationReference, client: ConversationReference
    ) -> bool:
        if owner is None or client is None:
            return False
        owner_key = reference_key(owner)
        client_key = reference_key(client)
        if owner_key == client_key or self._engaged(owner_key) or self._engaged(client_key):
            logger.warning(
                "Failed to add connection: a party is already engaged",
                extra={"owner": str(owner), "client": str(client)},
            )
            return False

        connection = Connection(owner=owner, client=client)
        self._by_owner[owner_key] = connection
        self._by_client[client_key] = connection
        for key in [k for k, ref in self._pending.items() if channel_match(ref, client)]:
            del self._pending[key]

        await self._emit(ChangeType.ADDED, client, owner)
        return True

    async def remove_connection(self, ref: ConversationReference, role: EngagementRole) -> int:
        if ref is None:
            return 0
        key = reference_key(ref)
        matches: list[Connection] = []
        if role in (EngagementRole.OWNER, EngagementRole.ANY) and key in self._by_owner:
            matches.append(self._by_owner[key])
        if role in (EngagementRole.CLIENT, EngagementRole.ANY) and key in self._by_client:
            matches.append(self._by_client[key])

        for connection in matches:
            self._drop(connection)
            logger.debug("Removed connection", extra={"connection": str(connection)})

        for connection in matches:
            await self._emit(ChangeType.REMOVED, connection.client, connection.owner)
        return len(matches)

    async def update_last_activity(self, connection: Connection) -> bool:
        current = self._by_owner.get(reference_key(connection.owner))
        if current is None or not exact_match(current.client, connection.client):
            return False
        refreshed = current.model_copy(update={"last_activity_at": _utcnow()})
        self._by_owner[reference_key(refreshed.owner)] = refreshed
        self._by_client[reference_key(refreshed.client)] = refreshed
        return True

    async def is_engaged(self, ref: ConversationReference, role: EngagementRole) -> bool:
        if ref is None:
            return False
        key = reference_key(ref)
        if role == EngagementRole.OWNER:
            return key in self._by_owner
        if role == EngagementRole.CLIENT:
            return key in self._by_client
        return self._engaged(key)

    async def find_counterpart(self, ref: ConversationReference) -> ConversationReference | None:
        key = reference_key(ref)
        if key in self._by_client:
            return self._by_client[key].owner
        if key in self._by_owner:
            return self._by_owner[key].client
        return None

    async def find_connection(self, ref: ConversationReference) -> Connection | None:
        key = reference_key(ref)
        connection = (
            self._by_owner.get(key)
            or next((c for c in self._by_owner.values() if channel_match(c.owner, ref)), None)
            or self._by_client.get(key)
            or next((c for c in self._by_client.values() if channel_match(c.client, ref)), None)
        )
        return connection.model_copy() if connection is not None else None

    async def clear(self) -> None:
        self._users.clear()
        self._bots.clear()
        self._aggregations.clear()
        self._pending.clear()
        self._by_owner.clear()
        self._by_client.clear()

    # Helpers

    def _engaged(self, key: _Key) -> bool:
        return key in self._by_owner or key in self._by_client

    def _drop(self, connection: Connection) -> None:
        self._by_owner.pop(reference_key(connection.owner), None)
        self._by_client.pop(reference_key(connection.client), None)
