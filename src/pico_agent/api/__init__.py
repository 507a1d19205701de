"""
HTTP gateway onto the agent loop.
"""

from .app import MessageReply, MessageRequest, create_app

__all__ = ["MessageReply", "MessageRequest", "create_app"]
