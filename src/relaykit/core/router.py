"""Message router: forwards messages between connected parties."""

from __future__ import annotations

import asyncio
import logging

from relaykit.models.config import RouterConfig
from relaykit.models.delivery import (
    ConnectionRequestResult,
    ConnectionResult,
    DeliveryReceipt,
    RoutingResult,
)
from relaykit.models.enums import (
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
from relaykit.models.reference import ConversationReference, channel_match
from relaykit.providers.base import MessageSender
from relaykit.store.base import RoutingDataManager

logger = logging.getLogger("relaykit.router")


class MessageRouter:
    """Stateless orchestrator over a :class:`RoutingDataManager`.

    All routing state lives in the store, so several routers (or several
    processes sharing a durable store) can serve the same conversations.
    """

    def __init__(
        self,
        store: RoutingDataManager,
        sender: MessageSender,
        config: RouterConfig | None = None,
    ) -> None:
        self._store = store
        self._sender = sender
        self._config = config or RouterConfig()

    @property
    def store(self) -> RoutingDataManager:
        return self._store

    # Forwarding

    async def route_if_connected(
        self,
        message: MessageActivity,
        sender: ConversationReference | None = None,
    ) -> RoutingResult:
        """Forward *message* to the sender's counterpart, if the sender is connected.

        Exactly one send is attempted. The connection is looked up with
        channel matching because inbound messages may lack fields (such as the
        account name) present on the stored reference.

        Args:
            message: The inbound message.
            sender: Who sent it. Derived from *message* when omitted.

        Returns:
            ``NO_ACTION_TAKEN`` if the sender has no connection,
            ``MESSAGE_ROUTED`` on delivery, ``FAILED_TO_ROUTE_MESSAGE`` if
            delivery failed or timed out, ``ERROR`` if the connection has no
            resolvable counterpart.
        """
        sender = sender or sender_reference(message)
        connection = await self._store.find_connection(sender)
        if connection is None:
            return RoutingResult(type=RoutingResultType.NO_ACTION_TAKEN)

        recipient = connection.counterpart_of(sender)
        if recipient is None:
            logger.error(
                "Connection found but its counterpart could not be resolved",
                extra={"sender": str(sender), "connection": str(connection)},
            )
            return RoutingResult(
                type=RoutingResultType.ERROR,
                connection=connection,
                error_message="Failed to find the recipient to forward the message to",
            )

        receipt = await self._deliver(recipient, readdress(message, recipient))
        if not receipt.success:
            logger.warning(
                "Failed to forward message",
                extra={"recipient": str(recipient), "error": receipt.error},
            )
            return RoutingResult(
                type=RoutingResultType.FAILED_TO_ROUTE_MESSAGE,
                connection=connection,
                error_message=(
                    f"Failed to forward the message to the recipient: {receipt.error}"
                    if receipt.error
                    else "Failed to forward the message to the recipient"
                ),
            )

        if not await self._store.update_last_activity(connection):
            logger.warning(
                "Failed to update the last activity time of the connection",
                extra={"connection": str(connection)},
            )
        return RoutingResult(type=RoutingResultType.MESSAGE_ROUTED, connection=connection)

    async def send_message(
        self, recipient: ConversationReference, message: MessageActivity
    ) -> DeliveryReceipt:
        """Address *message* to *recipient* and send it (e.g. a status post)."""
        return await self._deliver(recipient, readdress(message, recipient))

    async def _deliver(
        self, recipient: ConversationReference, message: MessageActivity
    ) -> DeliveryReceipt:
        try:
            async with asyncio.timeout(self._config.send_timeout):
                return await self._sender.send(recipient, message)
        except TimeoutError:
            return DeliveryReceipt(
                success=False,
                error=f"Timed out after {self._config.send_timeout}s",
            )
        except Exception as exc:
            logger.exception(
                "Message sender raised",
                extra={"sender": self._sender.name, "recipient": str(recipient)},
            )
            return DeliveryReceipt(success=False, error=str(exc) or type(exc).__name__)

    # Bookkeeping

    async def store_references(self, message: MessageActivity) -> bool:
        """Remember the sender as a user and the recipient as the bot.

        Returns ``True`` if either was new.
        """
        added = False
        if message.sender is not None:
            added = await self._store.add_identity(sender_reference(message)) or added
        if message.recipient is not None:
            added = (
                await self._store.add_identity(recipient_reference(message), is_user=False)
                or added
            )
        return added

    # Connection workflow

    async def request_connection(
        self, requestor: ConversationReference
    ) -> ConnectionRequestResult:
        """Ask for *requestor* to be connected with an owner."""
        if await self._store.is_engaged(requestor, EngagementRole.ANY):
            result_type = ConnectionRequestResultType.ALREADY_CONNECTED
        elif (
            self._config.require_aggregation
            and not await self._store.get_aggregation_destinations()
        ):
            result_type = ConnectionRequestResultType.NOT_SETUP
        elif await self._store.add_pending_request(requestor):
            result_type = ConnectionRequestResultType.CREATED
        else:
            result_type = ConnectionRequestResultType.ALREADY_EXISTS
        return ConnectionRequestResult(type=result_type, requestor=requestor)

    async def accept_request(
        self, owner: ConversationReference, client: ConversationReference
    ) -> ConnectionResult:
        """Connect *owner* with the pending request of *client*."""
        pending = await self._find_pending(client)
        if pending is None:
            return ConnectionResult(type=ConnectionResultType.NOT_PENDING)

        if not await self._store.add_connection(owner, pending):
            return ConnectionResult(
                type=ConnectionResultType.ERROR,
                error_message=f"Failed to connect {owner} with {pending}",
            )
        connection = await self._store.find_connection(pending)
        return ConnectionResult(type=ConnectionResultType.CONNECTED, connection=connection)

    async def reject_request(self, client: ConversationReference) -> ConnectionResult:
        """Drop the pending request of *client* without connecting it."""
        pending = await self._find_pending(client)
        if pending is None or not await self._store.remove_pending_request(pending):
            return ConnectionResult(type=ConnectionResultType.NOT_PENDING)
        return ConnectionResult(type=ConnectionResultType.REJECTED)

    async def disconnect(self, ref: ConversationReference) -> ConnectionResult:
        """End the connection *ref* takes part in, whichever side it is on."""
        connection = await self._store.find_connection(ref)
        if connection is None:
            return ConnectionResult(type=ConnectionResultType.NOT_CONNECTED)
        if not await self._store.remove_connection(connection.owner, EngagementRole.OWNER):
            return ConnectionResult(type=ConnectionResultType.NOT_CONNECTED)
        return ConnectionResult(type=ConnectionResultType.DISCONNECTED, connection=connection)

    async def _find_pending(self, ref: ConversationReference) -> ConversationReference | None:
        for pending in await self._store.get_pending_requests():
            if channel_match(pending, ref):
                return pending
        return None
