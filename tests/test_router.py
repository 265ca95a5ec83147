"""Tests for MessageRouter."""

from __future__ import annotations

from datetime import timedelta

import pytest

from relaykit.core.router import MessageRouter
from relaykit.models.change import RoutingChange
from relaykit.models.config import RouterConfig
from relaykit.models.connection import Connection
from relaykit.models.enums import (
    ChangeType,
    ConnectionRequestResultType,
    ConnectionResultType,
    EngagementRole,
    RoutingResultType,
)
from relaykit.models.message import MessageActivity
from relaykit.models.reference import ChannelAccount, ConversationReference
from relaykit.providers.mock import MockMessageSender
from relaykit.store.memory import InMemoryRoutingDataManager
from tests.conftest import make_message, make_ref


class TestRouteIfConnected:
    async def test_routes_client_message_to_owner(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        sender: MockMessageSender,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        await manager.add_connection(staff, user)
        message = make_message(user, text="I need help")

        result = await router.route_if_connected(message)

        assert result.type == RoutingResultType.MESSAGE_ROUTED
        assert result.error_message is None
        assert result.connection is not None
        assert result.connection.owner == staff
        assert len(sender.sent) == 1
        assert sender.sent[0]["recipient"] == staff
        forwarded = sender.sent[0]["message"]
        assert isinstance(forwarded, MessageActivity)
        assert forwarded.conversation_id == "conv-staff"
        assert forwarded.recipient == staff.account
        assert forwarded.sender is None
        assert forwarded.text == "I need help"

    async def test_routes_owner_message_to_client(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        sender: MockMessageSender,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        await manager.add_connection(staff, user)

        result = await router.route_if_connected(make_message(staff, text="How can I help?"))

        assert result.type == RoutingResultType.MESSAGE_ROUTED
        assert sender.sent[0]["recipient"] == user

    async def test_sender_found_without_account_name(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        sender: MockMessageSender,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        await manager.add_connection(staff, user)
        message = make_message(make_ref("conv-user", "user-1", None))

        result = await router.route_if_connected(message)

        assert result.type == RoutingResultType.MESSAGE_ROUTED

    async def test_message_without_sender_routes_by_conversation(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        sender: MockMessageSender,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        await manager.add_connection(staff, user)
        message = make_message(user)
        message.sender = None

        result = await router.route_if_connected(message)

        assert result.type == RoutingResultType.MESSAGE_ROUTED
        assert sender.sent[0]["recipient"] == staff

    async def test_message_without_sender_elsewhere_is_ignored(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        sender: MockMessageSender,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        await manager.add_connection(staff, user)
        message = make_message(make_ref("conv-elsewhere", None))

        result = await router.route_if_connected(message)

        assert result.type == RoutingResultType.NO_ACTION_TAKEN
        assert sender.sent == []

    async def test_explicit_sender_reference(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        sender: MockMessageSender,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        await manager.add_connection(staff, user)
        message = make_message(make_ref("somewhere-else", "nobody"))

        result = await router.route_if_connected(message, sender=user)

        assert result.type == RoutingResultType.MESSAGE_ROUTED
        assert sender.sent[0]["recipient"] == staff

    async def test_preserves_payload(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        sender: MockMessageSender,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        await manager.add_connection(staff, user)
        message = make_message(
            user,
            text="photo",
            attachments=[{"contentType": "image/png", "contentUrl": "https://x/p.png"}],
            metadata={"channelData": {"tenant": "t1"}},
        )

        await router.route_if_connected(message)

        forwarded = sender.sent[0]["message"]
        assert isinstance(forwarded, MessageActivity)
        assert forwarded.attachments == message.attachments
        assert forwarded.metadata == message.metadata
        assert forwarded.id == message.id

    async def test_updates_last_activity(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        user: ConversationReference,
        staff: ConversationReference,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        await manager.add_connection(staff, user)
        before = await manager.find_connection(user)
        assert before is not None
        later = before.last_activity_at + timedelta(seconds=30)
        monkeypatch.setattr("relaykit.store.memory._utcnow", lambda: later)

        await router.route_if_connected(make_message(user))

        after = await manager.find_connection(user)
        assert after is not None
        assert after.last_activity_at == later

    async def test_no_connection_no_send(
        self,
        router: MessageRouter,
        sender: MockMessageSender,
        user: ConversationReference,
    ) -> None:
        result = await router.route_if_connected(make_message(user))

        assert result.type == RoutingResultType.NO_ACTION_TAKEN
        assert result.connection is None
        assert sender.sent == []

    async def test_pending_request_is_not_routed(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        sender: MockMessageSender,
        user: ConversationReference,
    ) -> None:
        await manager.add_pending_request(user)

        result = await router.route_if_connected(make_message(user))

        assert result.type == RoutingResultType.NO_ACTION_TAKEN
        assert sender.sent == []

    async def test_delivery_failure(
        self,
        manager: InMemoryRoutingDataManager,
        user: ConversationReference,
        staff: ConversationReference,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        router = MessageRouter(manager, MockMessageSender(fail=True))
        await manager.add_connection(staff, user)
        before = await manager.find_connection(user)
        assert before is not None
        monkeypatch.setattr(
            "relaykit.store.memory._utcnow",
            lambda: before.last_activity_at + timedelta(hours=1),
        )

        result = await router.route_if_connected(make_message(user))

        assert result.type == RoutingResultType.FAILED_TO_ROUTE_MESSAGE
        assert result.error_message is not None
        assert "mock delivery failure" in result.error_message
        after = await manager.find_connection(user)
        assert after is not None
        assert after.last_activity_at == before.last_activity_at
        assert await manager.is_engaged(user, EngagementRole.CLIENT) is True

    async def test_sender_exception_is_a_failure(
        self,
        manager: InMemoryRoutingDataManager,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        router = MessageRouter(manager, MockMessageSender(error=ConnectionError("refused")))
        await manager.add_connection(staff, user)

        result = await router.route_if_connected(make_message(user))

        assert result.type == RoutingResultType.FAILED_TO_ROUTE_MESSAGE
        assert result.error_message is not None
        assert "refused" in result.error_message

    async def test_timeout_is_a_failure(
        self,
        manager: InMemoryRoutingDataManager,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        sender = MockMessageSender(delay=1.0)
        router = MessageRouter(manager, sender, RouterConfig(send_timeout=0.01))
        await manager.add_connection(staff, user)

        result = await router.route_if_connected(make_message(user))

        assert result.type == RoutingResultType.FAILED_TO_ROUTE_MESSAGE
        assert result.error_message is not None
        assert "Timed out" in result.error_message
        assert sender.sent == []

    async def test_unresolvable_counterpart_is_an_error(
        self,
        sender: MockMessageSender,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        class BrokenManager(InMemoryRoutingDataManager):
            async def find_connection(self, ref: ConversationReference) -> Connection | None:
                # A connection that does not involve the sender at all.
                return Connection(owner=staff, client=make_ref("conv-other", "user-2"))

        router = MessageRouter(BrokenManager(), sender)

        result = await router.route_if_connected(make_message(user))

        assert result.type == RoutingResultType.ERROR
        assert result.error_message == "Failed to find the recipient to forward the message to"
        assert result.connection is not None
        assert sender.sent == []

    async def test_vanished_connection_still_routed(
        self,
        sender: MockMessageSender,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        class RacingManager(InMemoryRoutingDataManager):
            async def update_last_activity(self, connection: Connection) -> bool:
                await self.remove_connection(connection.owner, EngagementRole.OWNER)
                return await super().update_last_activity(connection)

        manager = RacingManager()
        await manager.add_connection(staff, user)
        router = MessageRouter(manager, sender)

        result = await router.route_if_connected(make_message(user))

        assert result.type == RoutingResultType.MESSAGE_ROUTED
        assert len(sender.sent) == 1


class TestStoreReferences:
    async def test_records_user_and_bot(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        user: ConversationReference,
    ) -> None:
        message = make_message(user, bot_account=ChannelAccount(id="bot", name="Relay Bot"))

        assert await router.store_references(message) is True
        assert await router.store_references(message) is False

        assert await manager.get_user_identities() == [user]
        bots = await manager.get_bot_identities()
        assert len(bots) == 1
        assert bots[0].account_name == "Relay Bot"
        assert await manager.resolve_bot_name(user) == "Relay Bot"

    async def test_skips_missing_accounts(
        self, router: MessageRouter, manager: InMemoryRoutingDataManager
    ) -> None:
        message = MessageActivity(
            service_url="https://x/", channel_id="webchat", conversation_id="c1"
        )
        assert await router.store_references(message) is False
        assert await manager.get_user_identities() == []
        assert await manager.get_bot_identities() == []


class TestConnectionWorkflow:
    async def test_request_accept_route_disconnect(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        changes: list[RoutingChange],
        sender: MockMessageSender,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        request = await router.request_connection(user)
        assert request.type == ConnectionRequestResultType.CREATED
        assert changes[-1].change_type == ChangeType.INITIATED
        assert changes[-1].owner is None

        accepted = await router.accept_request(staff, make_ref("conv-user", "user-1"))
        assert accepted.type == ConnectionResultType.CONNECTED
        assert accepted.connection is not None
        assert accepted.connection.client == user
        assert changes[-1].change_type == ChangeType.ADDED
        assert await manager.get_pending_requests() == []

        routed = await router.route_if_connected(make_message(staff, text="hi"))
        assert routed.type == RoutingResultType.MESSAGE_ROUTED

        ended = await router.disconnect(user)
        assert ended.type == ConnectionResultType.DISCONNECTED
        assert changes[-1].change_type == ChangeType.REMOVED
        assert await manager.is_engaged(staff, EngagementRole.ANY) is False

    async def test_request_twice(self, router: MessageRouter, user: ConversationReference) -> None:
        await router.request_connection(user)
        again = await router.request_connection(user)
        assert again.type == ConnectionRequestResultType.ALREADY_EXISTS

    async def test_request_while_connected(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        await manager.add_connection(staff, user)
        result = await router.request_connection(user)
        assert result.type == ConnectionRequestResultType.ALREADY_CONNECTED
        assert await manager.get_pending_requests() == []

    async def test_request_requires_aggregation(
        self,
        manager: InMemoryRoutingDataManager,
        sender: MockMessageSender,
        user: ConversationReference,
    ) -> None:
        router = MessageRouter(manager, sender, RouterConfig(require_aggregation=True))
        result = await router.request_connection(user)
        assert result.type == ConnectionRequestResultType.NOT_SETUP

        await manager.add_aggregation_destination(make_ref("staff-channel", None))
        result = await router.request_connection(user)
        assert result.type == ConnectionRequestResultType.CREATED

    async def test_accept_without_request(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        result = await router.accept_request(staff, user)
        assert result.type == ConnectionResultType.NOT_PENDING
        assert await manager.get_connections() == []

    async def test_accept_by_busy_owner(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        other = make_ref("conv-other", "user-2")
        await router.request_connection(user)
        await router.request_connection(other)
        await router.accept_request(staff, user)

        result = await router.accept_request(staff, other)

        assert result.type == ConnectionResultType.ERROR
        assert result.error_message is not None
        assert await manager.get_pending_requests() == [other]

    async def test_reject_request(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        user: ConversationReference,
    ) -> None:
        await router.request_connection(user)
        assert (await router.reject_request(user)).type == ConnectionResultType.REJECTED
        assert (await router.reject_request(user)).type == ConnectionResultType.NOT_PENDING
        assert await manager.get_pending_requests() == []

    async def test_disconnect_when_not_connected(
        self, router: MessageRouter, user: ConversationReference
    ) -> None:
        result = await router.disconnect(user)
        assert result.type == ConnectionResultType.NOT_CONNECTED

    async def test_disconnect_from_owner_side(
        self,
        router: MessageRouter,
        manager: InMemoryRoutingDataManager,
        user: ConversationReference,
        staff: ConversationReference,
    ) -> None:
        await manager.add_connection(staff, user)
        result = await router.disconnect(staff)
        assert result.type == ConnectionResultType.DISCONNECTED
        assert result.connection is not None
        assert result.connection.client == user


class TestSendMessage:
    async def test_send_status_to_aggregation_destination(
        self,
        router: MessageRouter,
        sender: MockMessageSender,
        user: ConversationReference,
    ) -> None:
        destination = make_ref("staff-channel", None)
        status = make_message(user, text="Alice is waiting for help")

        receipt = await router.send_message(destination, status)

        assert receipt.success is True
        assert sender.sent[0]["recipient"] == destination
        sent = sender.sent[0]["message"]
        assert isinstance(sent, MessageActivity)
        assert sent.conversation_id == "staff-channel"

    async def test_send_failure_returns_receipt(
        self, manager: InMemoryRoutingDataManager, user: ConversationReference
    ) -> None:
        router = MessageRouter(manager, MockMessageSender(error=RuntimeError("down")))
        receipt = await router.send_message(make_ref("staff-channel", None), make_message(user))
        assert receipt.success is False
        assert receipt.error == "down"
