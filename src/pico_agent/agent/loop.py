"""
Agent loop - turns one inbound message into exactly one persisted conversation update.

For every inbound message the loop:
1. Serializes against other in-flight rounds for the same session key
2. Loads (or creates) the session and appends the user message
3. Renders the context and calls the provider
4. Runs any requested tools, appends their results in call order, and repeats
5. Appends the final answer, persists the session and emits the reply

Rounds for different session keys run concurrently.
"""

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, AsyncIterator

import structlog

from ..bus import InboundMessage, MessageBus, OutboundMessage
from ..errors import PersistenceError, ProviderError, ToolError
from ..llm.base import BaseLLM, LLMResponse, ToolDefinition
from ..session import Message, Session, SessionStore, ToolCall
from ..tools import ToolContext, ToolRegistry
from ..tools.registry import AnyTool
from .context import ContextBuilder

if TYPE_CHECKING:
    from ..config import Settings

logger = structlog.get_logger()

DEFAULT_MAX_TOOL_ITERATIONS = 10
DEFAULT_MAX_CONCURRENT_TOOLS = 4
EMPTY_TOOL_OUTPUT = "(no output)"


@dataclass
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class AgentLoop:
    """Orchestrates provider calls, tool runs and session persistence."""

    def __init__(
        self,
        provider: BaseLLM,
        session_store: SessionStore,
        tool_registry: ToolRegistry | None = None,
        bus: MessageBus | None = None,
        context_builder: ContextBuilder | None = None,
        max_tool_iterations: int = DEFAULT_MAX_TOOL_ITERATIONS,
        max_concurrent_tools: int = DEFAULT_MAX_CONCURRENT_TOOLS,
        workspace: str | None = None,
    ):
        if max_tool_iterations < 1:
            raise ValueError("max_tool_iterations must be at least 1")
        self.provider = provider
        self.sessions = session_store
        self.tools = tool_registry if tool_registry is not None else ToolRegistry()
        self.bus = bus
        self.context_builder = context_builder or ContextBuilder()
        self.max_tool_iterations = max_tool_iterations
        self.max_concurrent_tools = max_concurrent_tools
        self.workspace = workspace

        self._locks: dict[str, _KeyLock] = {}
        self._tasks: set[asyncio.Task] = set()
        self._running = False

    @classmethod
    def from_settings(
        cls,
        settings: "Settings",
        provider: BaseLLM | None = None,
        bus: MessageBus | None = None,
    ) -> "AgentLoop":
        """Wire up a loop from application settings."""
        from ..llm import create_llm
        from ..tools import create_default_registry

        return cls(
            provider=provider or create_llm(settings=settings),
            session_store=SessionStore.from_settings(settings),
            tool_registry=create_default_registry(settings),
            bus=bus,
            context_builder=ContextBuilder(
                system_prompt=settings.system_prompt,
                max_messages=settings.max_context_messages,
                max_tokens=settings.max_context_tokens,
            ),
            max_tool_iterations=settings.max_tool_iterations,
            max_concurrent_tools=settings.max_concurrent_tools,
            workspace=settings.workspace_dir,
        )

    def register_tool(self, tool: AnyTool) -> None:
        self.tools.register(tool)

    # ------------------------------------------------------------------ #
    # Per-session serialization
    # ------------------------------------------------------------------ #

    @asynccontextmanager
    async def _session_lock(self, session_key: str) -> AsyncIterator[None]:
        """Hold the session's lock; waiters are served in arrival order."""
        entry = self._locks.get(session_key)
        if entry is None:
            entry = self._locks[session_key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                self._locks.pop(session_key, None)

    def is_busy(self, session_key: str) -> bool:
        """Whether a round is running or queued for ``session_key``."""
        return session_key in self._locks

    # ------------------------------------------------------------------ #
    # Round processing
    # ------------------------------------------------------------------ #

    async def process(self, session_key: str, content: str) -> str:
        """Run one round for ``session_key`` and return the final answer.

        Raises ProviderError or PersistenceError when the round cannot
        complete. State appended since the last successful save is
        discarded in that case.
        """
        async with self._session_lock(session_key):
            return await self._run_round(session_key, content)

    async def process_message(self, inbound: InboundMessage) -> OutboundMessage:
        """Process a bus message, turning round-fatal errors into an error reply."""
        log = logger.bind(session_key=inbound.session_key)
        try:
            answer = await self.process(inbound.session_key, inbound.content)
        except ProviderError as e:
            log.error("Round failed: provider error", error=str(e))
            return OutboundMessage(
                session_key=inbound.session_key,
                content=f"The language model request failed: {e}",
                is_error=True,
            )
        except PersistenceError as e:
            log.error("Round failed: session not persisted", error=str(e))
            return OutboundMessage(
                session_key=inbound.session_key,
                content=f"The conversation could not be saved: {e}",
                is_error=True,
            )
        return OutboundMessage(session_key=inbound.session_key, content=answer)

    async def _run_round(self, session_key: str, content: str) -> str:
        log = logger.bind(session_key=session_key)
        session = await self.sessions.get_or_create(session_key)
        session.add_message(Message.user(content))
        log.info("Round started", history=len(session))

        definitions = self.tools.get_definitions()
        context = ToolContext(workspace=self.workspace, session_key=session_key)

        try:
            for iteration in range(1, self.max_tool_iterations + 1):
                log.debug("Building context", iteration=iteration)
                messages = self.context_builder.build(session)

                log.debug("Awaiting provider", iteration=iteration, messages=len(messages))
                response = await self._call_provider(messages, definitions)
                tool_calls = self._validate_tool_calls(response.tool_calls, log)

                if not tool_calls:
                    return await self._finish(session, response.content, log)

                session.add_message(Message.assistant_with_tools(response.content, tool_calls))
                log.info(
                    "Executing tools",
                    iteration=iteration,
                    tools=[tc.name for tc in tool_calls],
                )
                for result in await self._execute_tools(tool_calls, context):
                    session.add_message(result)

                await self.sessions.save(session)

            log.warning("Tool iteration limit reached", limit=self.max_tool_iterations)
            return await self._finish(
                session,
                f"I've reached the maximum number of tool iterations ({self.max_tool_iterations}) "
                "without a final answer.",
                log,
            )
        except asyncio.CancelledError:
            log.warning("Round cancelled, unsaved changes discarded")
            raise

    async def _finish(self, session: Session, answer: str, log) -> str:
        session.add_message(Message.assistant(answer))
        await self.sessions.save(session)
        log.info("Round done", history=len(session), answer_chars=len(answer))
        return answer

    async def _call_provider(
        self,
        messages: list[Message],
        definitions: list[ToolDefinition],
    ) -> LLMResponse:
        try:
            return await self.provider.generate(messages, tools=definitions or None)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"{type(e).__name__}: {e}") from e

    def _validate_tool_calls(self, tool_calls: list[ToolCall], log) -> list[ToolCall]:
        """Drop tool calls that cannot be correlated safely."""
        valid: list[ToolCall] = []
        seen: set[str] = set()
        for tc in tool_calls:
            if not tc.id or not tc.name:
                log.warning("Dropping malformed tool call", tool_call_id=tc.id, tool=tc.name)
                continue
            if tc.id in seen:
                log.warning("Dropping duplicate tool call id", tool_call_id=tc.id, tool=tc.name)
                continue
            seen.add(tc.id)
            if not isinstance(tc.arguments, dict):
                log.warning("Tool call arguments are not an object", tool_call_id=tc.id, tool=tc.name)
                tc = ToolCall(id=tc.id, name=tc.name, arguments={})
            valid.append(tc)
        return valid

    async def _execute_tools(self, tool_calls: list[ToolCall], context: ToolContext) -> list[Message]:
        """Run a batch of tool calls concurrently; results keep call order."""
        semaphore = asyncio.Semaphore(self.max_concurrent_tools) if self.max_concurrent_tools > 0 else None

        async def run_one(tc: ToolCall) -> Message:
            if semaphore is None:
                output = await self._run_tool(tc, context)
            else:
                async with semaphore:
                    output = await self._run_tool(tc, context)
            return Message.tool_result(tc.id, output)

        return list(await asyncio.gather(*(run_one(tc) for tc in tool_calls)))

    async def _run_tool(self, tc: ToolCall, context: ToolContext) -> str:
        if tc.name not in self.tools:
            logger.warning("Unknown tool requested", tool=tc.name, session_key=context.session_key)
            return f'Error: unknown tool "{tc.name}"'
        try:
            output = await self.tools.execute(tc.name, tc.arguments, context)
        except ToolError as e:
            return f"Error: {e}"
        return output or EMPTY_TOOL_OUTPUT

    # ------------------------------------------------------------------ #
    # Bus integration
    # ------------------------------------------------------------------ #

    async def _handle(self, inbound: InboundMessage) -> None:
        assert self.bus is not None
        try:
            outbound = await self.process_message(inbound)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.exception("Unexpected error processing message", session_key=inbound.session_key)
            outbound = OutboundMessage(
                session_key=inbound.session_key,
                content=f"Internal error: {e}",
                is_error=True,
            )
        await self.bus.publish_outbound(outbound)

    async def run(self) -> None:
        """Consume inbound messages from the bus until ``stop`` is called."""
        if self.bus is None:
            raise RuntimeError("AgentLoop.run requires a message bus")

        self._running = True
        logger.info("Agent loop started", tools=self.tools.list_tools())
        while self._running:
            try:
                inbound = await asyncio.wait_for(self.bus.consume_inbound(), timeout=1.0)
            except asyncio.TimeoutError:
                continue

            task = asyncio.create_task(self._handle(inbound))
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
        logger.info("Agent loop stopped")

    def stop(self) -> None:
        self._running = False

    async def shutdown(self) -> None:
        """Stop consuming and cancel rounds still in flight."""
        self.stop()
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info("Agent loop shut down", cancelled=len(tasks))
