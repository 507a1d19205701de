"""
Message bus payloads and an in-process asyncio implementation.

The agent loop only depends on the payload contract: inbound messages
carry a session key and text; outbound replies carry the same key and
either the answer or an error description.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class InboundMessage:
    """A message addressed to a named conversation session."""

    session_key: str
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def for_channel(cls, channel: str, conversation_id: str, content: str) -> "InboundMessage":
        """Build a message keyed ``<channel>:<conversation-id>``."""
        return cls(session_key=f"{channel}:{conversation_id}", content=content)


@dataclass
class OutboundMessage:
    """A reply being sent back for a session."""

    session_key: str
    content: str
    is_error: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)


class MessageBus:
    """Two FIFO queues connecting channels to the agent loop."""

    def __init__(self, maxsize: int = 0):
        self._inbound: asyncio.Queue[InboundMessage] = asyncio.Queue(maxsize)
        self._outbound: asyncio.Queue[OutboundMessage] = asyncio.Queue(maxsize)

    async def publish_inbound(self, message: InboundMessage) -> None:
        await self._inbound.put(message)

    async def consume_inbound(self) -> InboundMessage:
        return await self._inbound.get()

    async def publish_outbound(self, message: OutboundMessage) -> None:
        await self._outbound.put(message)

    async def consume_outbound(self) -> OutboundMessage:
        return await self._outbound.get()

    @property
    def inbound_size(self) -> int:
        return self._inbound.qsize()

    @property
    def outbound_size(self) -> int:
        return self._outbound.qsize()
