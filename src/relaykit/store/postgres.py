"""PostgreSQL implementation of RoutingDataManager using asyncpg."""

from __future__ import annotations

import logging
from typing import Any

from relaykit.models.connection import Connection
from relaykit.models.enums import ChangeType, EngagementRole
from relaykit.models.reference import ConversationReference
from relaykit.store.base import RoutingDataManager

logger = logging.getLogger("relaykit.store")

_SCHEMA = """\
CREATE TABLE IF NOT EXISTS routing_identities (
    kind TEXT NOT NULL,
    service_url TEXT NOT NULL,
    channel_id TEXT NOT NULL,
    conversation_id TEXT NOT NULL,
    account_id TEXT NOT NULL DEFAULT '',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    data JSONB NOT NULL,
    PRIMARY KEY (kind, service_url, channel_id, conversation_id, account_id)
);

CREATE TABLE IF NOT EXISTS routing_connections (
    owner_service_url TEXT NOT NULL,
    owner_channel_id TEXT NOT NULL,
    owner_conversation_id TEXT NOT NULL,
    owner_account_id TEXT NOT NULL,
    client_service_url TEXT NOT NULL,
    client_channel_id TEXT NOT NULL,
    client_conversation_id TEXT NOT NULL,
    client_account_id TEXT NOT NULL,
    created_at TIMESTAMPTZ NOT NULL,
    last_activity_at TIMESTAMPTZ NOT NULL,
    owner JSONB NOT NULL,
    client JSONB NOT NULL,
    PRIMARY KEY (owner_service_url, owner_channel_id, owner_conversation_id, owner_account_id),
    UNIQUE (client_service_url, client_channel_id, client_conversation_id, client_account_id)
);
"""

# Serializes connection mutations across every instance sharing the database.
_CONNECTION_LOCK = 0x52454C4159

_USER = "user"
_BOT = "bot"
_AGGREGATION = "aggregation"
_PENDING = "pending"


def _params(ref: ConversationReference) -> tuple[str, str, str, str]:
    # Absent accounts are stored as '' so they take part in primary keys.
    return (ref.service_url, ref.channel_id, ref.conversation_id, ref.account_id or "")


def _where(prefix: str, first: int, *, loose: bool = False) -> str:
    """SQL predicate matching a reference bound to ``$first .. $first+3``.

    ``loose`` gives channel-matching semantics: accounts are compared only
    when both sides have one.
    """
    account = f"${first + 3}"
    if loose:
        account_clause = (
            f"({account} = '' OR {prefix}account_id = '' OR {prefix}account_id = {account})"
        )
    else:
        account_clause = f"{prefix}account_id = {account}"
    return (
        f"{prefix}service_url = ${first} AND {prefix}channel_id = ${first + 1} "
        f"AND {prefix}conversation_id = ${first + 2} AND {account_clause}"
    )


def _connection(row: Any) -> Connection:
    return Connection(
        owner=ConversationReference.model_validate_json(row["owner"]),
        client=ConversationReference.model_validate_json(row["client"]),
        created_at=row["created_at"],
        last_activity_at=row["last_activity_at"],
    )


class PostgresRoutingDataManager(RoutingDataManager):
    """PostgreSQL-backed routing state shared by several bot instances.

    Identity sets rely on primary keys with ``ON CONFLICT DO NOTHING``.
    Connection mutations run in a transaction holding an advisory lock and
    are backed by unique owner and client keys, so two instances racing to
    accept the same request get exactly one success.

    Change handlers only fire in the instance that made the change.
    """

    def __init__(
        self,
        dsn: str | None = None,
        pool: Any = None,
    ) -> None:
        super().__init__()
        try:
            import asyncpg as _asyncpg
        except ImportError as exc:
            raise ImportError(
                "asyncpg is required for PostgresRoutingDataManager. "
                "Install it with: pip install relaykit[postgres]"
            ) from exc
        self._asyncpg = _asyncpg
        self._dsn = dsn
        self._pool = pool
        self._owns_pool = pool is None

    async def init(self, min_size: int = 2, max_size: int = 10) -> None:
        """Create the connection pool (if needed) and ensure schema exists."""
        if self._pool is None:
            self._pool = await self._asyncpg.create_pool(
                self._dsn,
                min_size=min_size,
                max_size=max_size,
            )
        async with self._pool.acquire() as conn:
            await conn.execute(_SCHEMA)

    async def close(self) -> None:
        """Release the connection pool if we own it."""
        if self._pool is not None and self._owns_pool:
            await self._pool.close()
            self._pool = None

    async def __aenter__(self) -> PostgresRoutingDataManager:
        await self.init()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── Identity set helpers ─────────────────────────────────────

    async def _list(self, kind: str) -> list[ConversationReference]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT data FROM routing_identities WHERE kind = $1 ORDER BY created_at",
                kind,
            )
        return [ConversationReference.model_validate_json(r["data"]) for r in rows]

    async def _insert(self, kind: str, ref: ConversationReference) -> bool:
        async with self._pool.acquire() as conn:
            tag = await conn.execute(
                "INSERT INTO routing_identities "
                "(kind, service_url, channel_id, conversation_id, account_id, data) "
                "VALUES ($1, $2, $3, $4, $5, $6) ON CONFLICT DO NOTHING",
                kind,
                *_params(ref),
                ref.model_dump_json(),
            )
        return bool(tag == "INSERT 0 1")

    async def _delete(self, kind: str, ref: ConversationReference) -> bool:
        async with self._pool.acquire() as conn:
            tag = await conn.execute(
                f"DELETE FROM routing_identities WHERE kind = $1 AND {_where('', 2)}",
                kind,
                *_params(ref),
            )
        return bool(tag == "DELETE 1")

    # ── Identity operations ──────────────────────────────────────

    async def get_user_identities(self) -> list[ConversationReference]:
        return await self._list(_USER)

    async def get_bot_identities(self) -> list[ConversationReference]:
        return await self._list(_BOT)

    async def add_identity(self, ref: ConversationReference, is_user: bool = True) -> bool:
        if ref is None:
            return False
        if not is_user:
            self._check_bot_identity(ref)
        return await self._insert(_USER if is_user else _BOT, ref)

    async def remove_identity(self, ref: ConversationReference) -> bool:
        async with self._pool.acquire() as conn, conn.transaction():
            await conn.execute("SELECT pg_advisory_xact_lock($1)", _CONNECTION_LOCK)
            removed = await conn.fetch(
                "DELETE FROM routing_identities WHERE kind = ANY($5::text[]) AND "
                f"{_where('', 1, loose=True)} RETURNING kind",
                *_params(ref),
                [_USER, _BOT, _PENDING],
            )
            rows = await conn.fetch(
                "DELETE FROM routing_connections WHERE "
                f"({_where('owner_', 1, loose=True)}) OR ({_where('client_', 1, loose=True)}) "
                "RETURNING owner, client, created_at, last_activity_at",
                *_params(ref),
            )
        dropped = [_connection(r) for r in rows]
        for connection in dropped:
            await self._emit(ChangeType.REMOVED, connection.client, connection.owner)
        return bool(removed) or bool(dropped)

    # ── Aggregation operations ───────────────────────────────────

    async def get_aggregation_destinations(self) -> list[ConversationReference]:
        return await self._list(_AGGREGATION)

    async def add_aggregation_destination(self, ref: ConversationReference) -> bool:
        self._check_aggregation_destination(ref)
        return await self._insert(_AGGREGATION, ref)

    async def remove_aggregation_destination(self, ref: ConversationReference) -> bool:
        return await self._delete(_AGGREGATION, ref)

    async def is_aggregation_member(self, ref: ConversationReference) -> bool:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT 1 FROM routing_identities WHERE kind = $1 AND service_url = $2 "
                "AND channel_id = $3 AND conversation_id = $4 LIMIT 1",
                _AGGREGATION,
                ref.service_url,
                ref.channel_id,
                ref.conversation_id,
            )
        return row is not None

    # ── Pending request operations ───────────────────────────────

    async def get_pending_requests(self) -> list[ConversationReference]:
        return await self._list(_PENDING)

    async def add_pending_request(self, ref: ConversationReference) -> bool:
        if ref is None:
            return False
        if not await self._insert(_PENDING, ref):
            return False
        await self._emit(ChangeType.INITIATED, ref)
        return True

    async def remove_pending_request(self, ref: ConversationReference) -> bool:
        return await self._delete(_PENDING, ref)

    # ── Connection operations ────────────────────────────────────

    async def get_connections(self) -> list[Connection]:
        async with self._pool.acquire() as conn:
            rows = await conn.fetch(
                "SELECT owner, client, created_at, last_activity_at "
                "FROM routing_connections ORDER BY created_at"
            )
        return [_connection(r) for r in rows]

    async def add_connection(
        self, owner: ConversationReference, client: ConversationReference
    ) -> bool:
        if owner is None or client is None or _params(owner) == _params(client):
            return False
        connection = Connection(owner=owner, client=client)
        async with self._pool.acquire() as conn, conn.transaction():
            await conn.execute("SELECT pg_advisory_xact_lock($1)", _CONNECTION_LOCK)
            engaged = await conn.fetchrow(
                "SELECT 1 FROM routing_connections WHERE "
                f"({_where('owner_', 1)}) OR ({_where('client_', 1)}) "
                f"OR ({_where('owner_', 5)}) OR ({_where('client_', 5)}) LIMIT 1",
                *_params(owner),
                *_params(client),
            )
            if engaged is None:
                await conn.execute(
                    "INSERT INTO routing_connections VALUES "
                    "($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12)",
                    *_params(owner),
                    *_params(client),
                    connection.created_at,
                    connection.last_activity_at,
                    owner.model_dump_json(),
                    client.model_dump_json(),
                )
                await conn.execute(
                    f"DELETE FROM routing_identities WHERE kind = $5 AND {_where('', 1, loose=True)}",
                    *_params(client),
                    _PENDING,
                )

        if engaged is not None:
            logger.warning(
                "Failed to add connection: a party is already engaged",
                extra={"owner": str(owner), "client": str(client)},
            )
            return False
        await self._emit(ChangeType.ADDED, client, owner)
        return True

    async def remove_connection(self, ref: ConversationReference, role: EngagementRole) -> int:
        if ref is None:
            return 0
        if role == EngagementRole.OWNER:
            where = _where("owner_", 1)
        elif role == EngagementRole.CLIENT:
            where = _where("client_", 1)
        else:
            where = f"({_where('owner_', 1)}) OR ({_where('client_', 1)})"

        async with self._pool.acquire() as conn, conn.transaction():
            await conn.execute("SELECT pg_advisory_xact_lock($1)", _CONNECTION_LOCK)
            rows = await conn.fetch(
                f"DELETE FROM routing_connections WHERE {where} "
                "RETURNING owner, client, created_at, last_activity_at",
                *_params(ref),
            )
        removed = [_connection(r) for r in rows]
        if role == EngagementRole.CLIENT and len(removed) > 1:
            logger.warning(
                "Client engaged in multiple connections",
                extra={"client": str(ref), "count": len(removed)},
            )
        for connection in removed:
            await self._emit(ChangeType.REMOVED, connection.client, connection.owner)
        return len(removed)

    async def update_last_activity(self, connection: Connection) -> bool:
        async with self._pool.acquire() as conn:
            tag = await conn.execute(
                "UPDATE routing_connections SET last_activity_at = now() "
                f"WHERE {_where('owner_', 1)} AND {_where('client_', 5)}",
                *_params(connection.owner),
                *_params(connection.client),
            )
        return bool(tag == "UPDATE 1")

    async def is_engaged(self, ref: ConversationReference, role: EngagementRole) -> bool:
        if ref is None:
            return False
        if role == EngagementRole.OWNER:
            where = _where("owner_", 1)
        elif role == EngagementRole.CLIENT:
            where = _where("client_", 1)
        else:
            where = f"({_where('owner_', 1)}) OR ({_where('client_', 1)})"
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT 1 FROM routing_connections WHERE {where} LIMIT 1",
                *_params(ref),
            )
        return row is not None

    async def find_counterpart(self, ref: ConversationReference) -> ConversationReference | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT owner AS other, 0 AS side FROM routing_connections "
                f"WHERE {_where('client_', 1)} "
                "UNION ALL SELECT client, 1 FROM routing_connections "
                f"WHERE {_where('owner_', 1)} ORDER BY side LIMIT 1",
                *_params(ref),
            )
        if row is None:
            return None
        return ConversationReference.model_validate_json(row["other"])

    async def find_connection(self, ref: ConversationReference) -> Connection | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                "SELECT owner, client, created_at, last_activity_at, 0 AS side "
                f"FROM routing_connections WHERE {_where('owner_', 1, loose=True)} "
                "UNION ALL SELECT owner, client, created_at, last_activity_at, 1 "
                f"FROM routing_connections WHERE {_where('client_', 1, loose=True)} "
                "ORDER BY side LIMIT 1",
                *_params(ref),
            )
        return _connection(row) if row is not None else None

    async def clear(self) -> None:
        async with self._pool.acquire() as conn:
            await conn.execute("TRUNCATE routing_identities, routing_connections")
