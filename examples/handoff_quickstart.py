"""RelayKit quickstart: a customer asks for a human and gets connected to an agent.

Run with:
    uv run python examples/handoff_quickstart.py
"""

from __future__ import annotations

import asyncio
import logging

from relaykit import (
    ChangeType,
    ChannelAccount,
    ConversationReference,
    InMemoryRoutingDataManager,
    MessageActivity,
    MessageRouter,
    MockMessageSender,
    RetryingMessageSender,
    RetryPolicy,
    RoutingChange,
)

SERVICE_URL = "https://smba.example.com/"


def ref(conversation_id: str, account_id: str | None, name: str | None = None):
    account = ChannelAccount(id=account_id, name=name) if account_id else None
    return ConversationReference(
        service_url=SERVICE_URL,
        channel_id="msteams",
        conversation_id=conversation_id,
        account=account,
    )


def inbound(sender: ConversationReference, text: str) -> MessageActivity:
    return MessageActivity(
        service_url=sender.service_url,
        channel_id=sender.channel_id,
        conversation_id=sender.conversation_id,
        sender=sender.account,
        recipient=ChannelAccount(id="bot", name="Help Desk"),
        text=text,
    )


async def main() -> None:
    logging.basicConfig(level=logging.INFO)

    # --- Setup -----------------------------------------------------------
    store = InMemoryRoutingDataManager()
    sender = MockMessageSender()
    router = MessageRouter(store, RetryingMessageSender(sender, RetryPolicy(max_retries=2)))

    staff_channel = ref("staff-channel", None)
    await store.add_aggregation_destination(staff_channel)

    # Post a status line to the staff channel whenever a request comes in.
    @store.on_change
    async def announce(change: RoutingChange) -> None:
        if change.change_type == ChangeType.INITIATED:
            status = inbound(change.client, f"{change.client.account_name} needs help")
            await router.send_message(staff_channel, status)
        print(f"[change] {change.change_type}: {change.owner} -> {change.client}")

    customer = ref("conv-customer", "cust-1", "Alice")
    agent = ref("conv-agent", "agent-1", "Sam")

    # --- Before any connection, messages are left to the bot -------------
    greeting = inbound(customer, "Hi, I have a billing question")
    await router.store_references(greeting)
    result = await router.route_if_connected(greeting)
    print(f"Before handoff: {result.type}")

    # --- Customer asks for a human, agent accepts ------------------------
    request = await router.request_connection(customer)
    print(f"Request: {request.type}")

    accepted = await router.accept_request(agent, ref("conv-customer", "cust-1"))
    print(f"Accept: {accepted.type}")

    # --- Messages now flow both ways -------------------------------------
    await router.route_if_connected(inbound(customer, "My invoice is wrong"))
    await router.route_if_connected(inbound(agent, "Let me take a look"))

    print("\nDelivered:")
    for item in sender.sent:
        message = item["message"]
        assert isinstance(message, MessageActivity)
        print(f"  to {message.conversation_id}: {message.text}")

    print("\nConnections:")
    print(await store.dump_connections())

    # --- Either side can end it -------------------------------------------
    ended = await router.disconnect(customer)
    print(f"Disconnect: {ended.type}")


if __name__ == "__main__":
    asyncio.run(main())
