"""
Tests for the message bus.
"""

import asyncio

import pytest

from pico_agent.bus import InboundMessage, MessageBus, OutboundMessage


def test_inbound_for_channel():
    """Test building a channel-scoped session key."""
    msg = InboundMessage.for_channel("telegram", "42", "Hello, world!")

    assert msg.session_key == "telegram:42"
    assert msg.content == "Hello, world!"
    assert msg.metadata == {}
    assert msg.timestamp.tzinfo is not None


def test_outbound_defaults():
    reply = OutboundMessage(session_key="cli:1", content="hi")
    assert not reply.is_error


@pytest.mark.asyncio
async def test_queues_are_fifo():
    bus = MessageBus()
    for i in range(3):
        await bus.publish_inbound(InboundMessage(session_key="k", content=str(i)))

    assert bus.inbound_size == 3
    received = [(await bus.consume_inbound()).content for _ in range(3)]
    assert received == ["0", "1", "2"]
    assert bus.inbound_size == 0


@pytest.mark.asyncio
async def test_consume_waits_for_publish():
    """Consumers block until a message arrives."""
    bus = MessageBus()
    waiter = asyncio.create_task(bus.consume_outbound())
    await asyncio.sleep(0)
    assert not waiter.done()

    await bus.publish_outbound(OutboundMessage(session_key="k", content="late"))
    reply = await asyncio.wait_for(waiter, timeout=1.0)
    assert reply.content == "late"
