"""Shared test fixtures and helpers."""

from __future__ import annotations

import pytest

from relaykit.core.router import MessageRouter
from relaykit.models.change import RoutingChange
from relaykit.models.message import MessageActivity
from relaykit.models.reference import ChannelAccount, ConversationReference
from relaykit.providers.mock import MockMessageSender
from relaykit.store.memory import InMemoryRoutingDataManager

SERVICE_URL = "https://smba.example.com/"


def make_ref(
    conversation_id: str = "conv-user",
    account_id: str | None = "user-1",
    account_name: str | None = None,
    channel_id: str = "msteams",
    service_url: str = SERVICE_URL,
) -> ConversationReference:
    account = ChannelAccount(id=account_id, name=account_name) if account_id else None
    return ConversationReference(
        service_url=service_url,
        channel_id=channel_id,
        conversation_id=conversation_id,
        account=account,
    )


def make_message(
    sender: ConversationReference,
    text: str = "hello",
    bot_account: ChannelAccount | None = None,
    **kwargs: object,
) -> MessageActivity:
    return MessageActivity(
        service_url=sender.service_url,
        channel_id=sender.channel_id,
        conversation_id=sender.conversation_id,
        sender=sender.account,
        recipient=bot_account or ChannelAccount(id="bot", name="Relay Bot"),
        text=text,
        **kwargs,  # type: ignore[arg-type]
    )


@pytest.fixture
def manager() -> InMemoryRoutingDataManager:
    return InMemoryRoutingDataManager()


@pytest.fixture
def changes(manager: InMemoryRoutingDataManager) -> list[RoutingChange]:
    """Records every routing change emitted by ``manager``."""
    recorded: list[RoutingChange] = []

    @manager.on_change
    async def _record(change: RoutingChange) -> None:
        recorded.append(change)

    return recorded


@pytest.fixture
def sender() -> MockMessageSender:
    return MockMessageSender()


@pytest.fixture
def router(manager: InMemoryRoutingDataManager, sender: MockMessageSender) -> MessageRouter:
    return MessageRouter(manager, sender)


@pytest.fixture
def user() -> ConversationReference:
    return make_ref("conv-user", "user-1", "Alice")


@pytest.fixture
def staff() -> ConversationReference:
    return make_ref("conv-staff", "staff-1", "Sam")
