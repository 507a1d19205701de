"""
Tool registry for managing available tools.
"""

import asyncio
from typing import TYPE_CHECKING, Any, Union

import structlog

from ..errors import ToolError, ToolExecutionError, ToolNotFoundError, ToolTimeoutError
from ..llm.base import ToolDefinition
from .base import BaseTool, Tool, ToolContext

if TYPE_CHECKING:
    from ..config import Settings

logger = structlog.get_logger()

AnyTool = Union[BaseTool, Tool]


class ToolRegistry:
    """Registry for managing tools.

    Tools are registered once at startup; lookups and schema reads are safe
    from any number of concurrent rounds.
    """

    def __init__(self, default_timeout: float | None = None):
        self._tools: dict[str, AnyTool] = {}
        self.default_timeout = default_timeout

    def register(self, tool: AnyTool) -> None:
        """Register a tool. Names must be unique."""
        if tool.name in self._tools:
            raise ValueError(f"Tool '{tool.name}' is already registered")
        self._tools[tool.name] = tool
        logger.info("Tool registered", tool_name=tool.name)

    def unregister(self, name: str) -> None:
        """Unregister a tool."""
        if name in self._tools:
            del self._tools[name]
            logger.info("Tool unregistered", tool_name=name)

    def get(self, name: str) -> AnyTool | None:
        """Get a tool by name."""
        return self._tools.get(name)

    def has(self, name: str) -> bool:
        return name in self._tools

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def list_tools(self) -> list[str]:
        """List all registered tool names."""
        return list(self._tools.keys())

    def get_definitions(self) -> list[ToolDefinition]:
        """Get all tool definitions for LLM."""
        definitions = []
        for tool in self._tools.values():
            if isinstance(tool, Tool):
                parameters = tool.get_parameters_schema()
            else:
                parameters = tool.parameters
            definitions.append(ToolDefinition(
                name=tool.name,
                description=tool.description,
                parameters=parameters,
            ))
        return definitions

    async def execute(
        self,
        name: str,
        arguments: dict[str, Any],
        context: ToolContext | None = None,
    ) -> str:
        """Execute a tool by name.

        The context timeout, or the registry default, bounds the whole call.
        Raises ToolNotFoundError, ToolTimeoutError or another ToolError.
        """
        tool = self.get(name)
        if tool is None:
            raise ToolNotFoundError(f"Tool '{name}' not found")

        context = context or ToolContext()
        timeout = context.timeout if context.timeout is not None else self.default_timeout

        logger.info("Executing tool", tool_name=name, arguments=arguments)
        try:
            if timeout:
                result = await asyncio.wait_for(tool.execute(arguments, context), timeout=timeout)
            else:
                result = await tool.execute(arguments, context)
        except ToolError as e:
            logger.warning("Tool failed", tool_name=name, error=str(e))
            raise
        except asyncio.TimeoutError as e:
            if not timeout:
                logger.error("Tool raised its own timeout", tool_name=name, error=str(e))
                raise ToolExecutionError(f"Tool '{name}' failed: {type(e).__name__}: {e}") from e
            logger.warning("Tool timed out", tool_name=name, timeout=timeout)
            raise ToolTimeoutError(f"Tool '{name}' timed out after {timeout:g}s") from e
        except Exception as e:
            logger.error("Tool execution error", tool_name=name, error=str(e))
            raise ToolExecutionError(f"Tool '{name}' failed: {e}") from e

        if not isinstance(result, str):
            logger.error("Tool returned non-text output", tool_name=name, result_type=type(result).__name__)
            raise ToolExecutionError(f"Tool '{name}' returned {type(result).__name__}, expected str")

        logger.info("Tool executed", tool_name=name, output_chars=len(result))
        return result


def create_default_registry(settings: "Settings") -> ToolRegistry:
    """Build a registry with the built-in tools enabled by settings."""
    registry = ToolRegistry(default_timeout=settings.tool_timeout_seconds or None)

    if settings.enable_shell:
        from .shell_tool import ShellTool
        registry.register(ShellTool(
            default_timeout=settings.shell_timeout_seconds,
            max_output_chars=settings.max_tool_output_chars,
        ))

    return registry
