"""
Session module - conversation transcripts and their persistence.
"""

from .store import SessionStore, sanitize_key
from .types import Message, Role, Session, ToolCall

__all__ = [
    "Message",
    "Role",
    "Session",
    "SessionStore",
    "ToolCall",
    "sanitize_key",
]
