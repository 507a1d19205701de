"""
Shared fixtures for pico-agent tests.
"""

import asyncio

import pytest

from pico_agent.llm.base import BaseLLM, LLMResponse, ToolDefinition
from pico_agent.session import Message, SessionStore, ToolCall


class ScriptedLLM(BaseLLM):
    """Provider double that replays a fixed list of responses."""

    def __init__(self, responses: list[LLMResponse | Exception], delay: float = 0.0):
        super().__init__(api_key="test", model="scripted")
        self.responses = list(responses)
        self.delay = delay
        self.calls: list[list[Message]] = []
        self.tools_seen: list[list[ToolDefinition] | None] = []

    @property
    def provider_name(self) -> str:
        return "scripted"

    async def generate(self, messages, tools=None) -> LLMResponse:
        self.calls.append(list(messages))
        self.tools_seen.append(tools)
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            return LLMResponse(content="(script exhausted)")
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class AlwaysToolsLLM(BaseLLM):
    """Provider double that never stops asking for tools."""

    def __init__(self, tool_name: str = "echo"):
        super().__init__(api_key="test", model="looping")
        self.tool_name = tool_name
        self.call_count = 0

    @property
    def provider_name(self) -> str:
        return "looping"

    async def generate(self, messages, tools=None) -> LLMResponse:
        self.call_count += 1
        return LLMResponse(
            content="",
            tool_calls=[ToolCall(id=f"call_{self.call_count}", name=self.tool_name, arguments={"text": "again"})],
        )


def final(text: str) -> LLMResponse:
    return LLMResponse(content=text)


def tool_request(*calls: ToolCall, content: str = "") -> LLMResponse:
    return LLMResponse(content=content, tool_calls=list(calls))


@pytest.fixture
def memory_store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def disk_store(tmp_path) -> SessionStore:
    return SessionStore(tmp_path / "sessions")
