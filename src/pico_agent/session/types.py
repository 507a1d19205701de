"""
Conversation data model: roles, messages, tool calls and sessions.

A session's message list is append-only and is the single source of truth
for replaying a conversation to the provider.
"""

import copy
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from ..errors import CorrelationError, SessionDataError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Message roles for conversation."""
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCall:
    """A tool call requested by the model."""

    id: str
    name: str
    arguments: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        try:
            arguments = data.get("arguments") or {}
            if not isinstance(arguments, dict):
                raise SessionDataError(f"Tool call arguments must be an object, got {type(arguments).__name__}")
            return cls(id=str(data["id"]), name=str(data["name"]), arguments=arguments)
        except (KeyError, TypeError, AttributeError) as e:
            raise SessionDataError(f"Invalid tool call record: {e}") from e


@dataclass
class Message:
    """One turn in a conversation transcript."""

    role: Role
    content: str = ""
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=Role.SYSTEM, content=content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=Role.USER, content=content)

    @classmethod
    def assistant(cls, content: str) -> "Message":
        return cls(role=Role.ASSISTANT, content=content)

    @classmethod
    def assistant_with_tools(cls, content: str, tool_calls: list[ToolCall]) -> "Message":
        return cls(role=Role.ASSISTANT, content=content, tool_calls=list(tool_calls))

    @classmethod
    def tool_result(cls, tool_call_id: str, content: str) -> "Message":
        return cls(role=Role.TOOL, content=content, tool_call_id=tool_call_id)

    def has_tool_calls(self) -> bool:
        return self.role == Role.ASSISTANT and bool(self.tool_calls)

    def is_tool_result(self) -> bool:
        return self.role == Role.TOOL and self.tool_call_id is not None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            data["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            data["tool_call_id"] = self.tool_call_id
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        if not isinstance(data, dict):
            raise SessionDataError(f"Message record must be an object, got {type(data).__name__}")
        try:
            role = Role(data["role"])
        except KeyError as e:
            raise SessionDataError("Message record is missing 'role'") from e
        except ValueError as e:
            raise SessionDataError(f"Unknown message role: {data['role']!r}") from e

        content = data.get("content", "")
        if content is None:
            content = ""
        if not isinstance(content, str):
            raise SessionDataError("Message content must be a string")

        raw_calls = data.get("tool_calls")
        tool_calls = [ToolCall.from_dict(tc) for tc in raw_calls] if raw_calls else None

        return cls(
            role=role,
            content=content,
            tool_calls=tool_calls,
            tool_call_id=data.get("tool_call_id"),
        )


@dataclass
class Session:
    """A named, persisted conversation transcript."""

    key: str
    messages: list[Message] = field(default_factory=list)
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)
    metadata: dict[str, Any] = field(default_factory=dict)

    def add_message(self, message: Message) -> None:
        """Append a message, rejecting tool results with no matching tool call."""
        if message.role == Role.TOOL:
            if not message.tool_call_id:
                raise CorrelationError("Tool result message has no tool_call_id")
            if message.tool_call_id not in self.issued_tool_call_ids():
                raise CorrelationError(
                    f"Tool result {message.tool_call_id!r} does not match any tool call in session {self.key!r}"
                )
        self.messages.append(message)
        self.updated_at = _utcnow()

    def issued_tool_call_ids(self) -> set[str]:
        """IDs of every tool call emitted by assistant messages so far."""
        return {
            tc.id
            for msg in self.messages
            if msg.has_tool_calls()
            for tc in msg.tool_calls or []
        }

    def clone(self) -> "Session":
        return copy.deepcopy(self)

    def is_empty(self) -> bool:
        return not self.messages

    def __len__(self) -> int:
        return len(self.messages)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "metadata": self.metadata,
            "messages": [m.to_dict() for m in self.messages],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        if not isinstance(data, dict) or "key" not in data:
            raise SessionDataError("Session record is missing 'key'")

        raw_messages = data.get("messages", [])
        if not isinstance(raw_messages, list):
            raise SessionDataError("Session 'messages' must be a list")

        try:
            created_at = datetime.fromisoformat(data["created_at"]) if data.get("created_at") else _utcnow()
            updated_at = datetime.fromisoformat(data["updated_at"]) if data.get("updated_at") else created_at
        except (TypeError, ValueError) as e:
            raise SessionDataError(f"Invalid session timestamp: {e}") from e

        return cls(
            key=str(data["key"]),
            messages=[Message.from_dict(m) for m in raw_messages],
            created_at=created_at,
            updated_at=updated_at,
            metadata=dict(data.get("metadata") or {}),
        )
