"""
Message bus - the delivery boundary between channels and the agent loop.
"""

from .base import InboundMessage, MessageBus, OutboundMessage

__all__ = ["InboundMessage", "MessageBus", "OutboundMessage"]
