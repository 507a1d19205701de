"""
Context builder - renders a session into the message list sent to the provider.

Rendering never reorders messages and never separates an assistant tool
call from its tool result: the two are kept or dropped together.
"""

from dataclasses import replace

import structlog

from ..session.types import Message, Role, Session

logger = structlog.get_logger()

# Approximate characters per token (conservative estimate)
CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_CHARS = 20


def estimate_tokens(messages: list[Message]) -> int:
    """Estimate token count for a list of messages."""
    total_chars = 0
    for m in messages:
        total_chars += len(m.content) + MESSAGE_OVERHEAD_CHARS
        for tc in m.tool_calls or []:
            total_chars += len(tc.name) + len(str(tc.arguments))
    return total_chars // CHARS_PER_TOKEN


def _repair_correlation(messages: list[Message]) -> list[Message]:
    """Keep only tool calls and tool results that correlate with each other.

    A tool result is valid only inside the run of tool messages directly
    following the assistant message that issued its call. Results outside
    such a run, and calls that never received a result, are dropped from
    the rendered copy.
    """
    repaired: list[Message] = []
    i = 0
    while i < len(messages):
        msg = messages[i]
        i += 1

        if msg.role == Role.TOOL:
            logger.warning("Dropping uncorrelated tool result", tool_call_id=msg.tool_call_id)
            continue

        if not msg.has_tool_calls():
            repaired.append(msg)
            continue

        call_ids = {tc.id for tc in msg.tool_calls or []}
        results: list[Message] = []
        answered: set[str] = set()
        while i < len(messages) and messages[i].role == Role.TOOL:
            result = messages[i]
            i += 1
            if result.tool_call_id in call_ids and result.tool_call_id not in answered:
                answered.add(result.tool_call_id)
                results.append(result)
            else:
                logger.warning("Dropping uncorrelated tool result", tool_call_id=result.tool_call_id)

        calls = [tc for tc in msg.tool_calls or [] if tc.id in answered]
        if len(calls) != len(msg.tool_calls or []):
            logger.warning("Dropping unanswered tool calls", dropped=sorted(call_ids - answered))
        if calls:
            repaired.append(replace(msg, tool_calls=calls))
        elif msg.content:
            repaired.append(replace(msg, tool_calls=None))
        repaired.extend(results)
    return repaired


def group_messages(messages: list[Message]) -> list[list[Message]]:
    """Split messages into units that must be kept or dropped together.

    An assistant message with tool calls and the tool results that follow it
    form one unit; every other message is a unit on its own.
    """
    groups: list[list[Message]] = []
    open_ids: set[str] = set()
    for msg in messages:
        if msg.role == Role.TOOL and msg.tool_call_id in open_ids:
            groups[-1].append(msg)
            continue
        groups.append([msg])
        open_ids = {tc.id for tc in msg.tool_calls or []} if msg.has_tool_calls() else set()
    return groups


class ContextBuilder:
    """Builds the ordered provider input for a session.

    ``max_messages`` and ``max_tokens`` bound the history (0 disables a
    bound). When over budget, the oldest units are dropped first; the newest
    unit and the system prompt are always kept.
    """

    def __init__(
        self,
        system_prompt: str | None = None,
        max_messages: int = 0,
        max_tokens: int = 0,
    ):
        self.system_prompt = system_prompt
        self.max_messages = max_messages
        self.max_tokens = max_tokens

    def _over_budget(self, groups: list[list[Message]], reserved_tokens: int) -> bool:
        if self.max_messages > 0 and sum(len(g) for g in groups) > self.max_messages:
            return True
        if self.max_tokens > 0:
            tokens = reserved_tokens + sum(estimate_tokens(g) for g in groups)
            if tokens > self.max_tokens:
                return True
        return False

    def truncate(self, messages: list[Message], reserved_tokens: int = 0) -> list[Message]:
        """Drop the oldest message units until the history fits the budget."""
        groups = group_messages(messages)
        dropped = 0
        while len(groups) > 1 and self._over_budget(groups, reserved_tokens):
            dropped += len(groups.pop(0))
        if dropped:
            logger.info("Context truncated", dropped_messages=dropped, kept_messages=sum(len(g) for g in groups))
        return [msg for group in groups for msg in group]

    def build(self, session: Session) -> list[Message]:
        """Render the system prompt followed by the session history."""
        history = _repair_correlation(session.messages)

        system: list[Message] = []
        if self.system_prompt:
            system.append(Message.system(self.system_prompt))

        history = self.truncate(history, reserved_tokens=estimate_tokens(system))
        return system + history
