"""
Base classes for tools.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Coroutine

from ..errors import ToolArgumentError


@dataclass(frozen=True)
class ToolContext:
    """Per-invocation settings visible to a tool. Never persisted."""

    workspace: str | None = None
    timeout: float | None = None
    session_key: str | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    def with_workspace(self, workspace: str) -> "ToolContext":
        return replace(self, workspace=workspace)

    def with_timeout(self, timeout: float) -> "ToolContext":
        return replace(self, timeout=timeout)


@dataclass
class ToolParameter:
    """Definition of a tool parameter."""

    name: str
    param_type: str  # string, integer, number, boolean, array, object
    description: str
    required: bool = True
    default: Any = None
    enum: list[str] | None = None


def require_argument(arguments: dict[str, Any], name: str, expected: type | tuple[type, ...] = str) -> Any:
    """Fetch a required argument, failing with ToolArgumentError if absent or mistyped."""
    if not isinstance(arguments, dict):
        raise ToolArgumentError("Arguments must be a JSON object")
    value = arguments.get(name)
    if value is None:
        raise ToolArgumentError(f"Missing '{name}' argument")
    if not isinstance(value, expected):
        raise ToolArgumentError(f"Argument '{name}' has the wrong type")
    return value


class BaseTool(ABC):
    """Base class for all tools."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Get the tool name."""
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        """Get the tool description."""
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        """Get the tool parameters schema (JSON Schema)."""
        pass

    @abstractmethod
    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> str:
        """Execute the tool.

        Returns the text payload for the model. Raises a ToolError subclass
        when the tool cannot run at all.
        """
        pass

    def to_definition(self) -> dict[str, Any]:
        """Convert to a tool definition for LLM."""
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.parameters,
        }


@dataclass
class Tool:
    """
    Simple tool wrapper that can be created from a function.

    This is an alternative to the class-based BaseTool for simpler tools.
    The handler receives the validated arguments as keyword arguments plus
    ``context``.
    """

    name: str
    description: str
    parameters: list[ToolParameter]
    handler: Callable[..., Coroutine[Any, Any, str]]

    def get_parameters_schema(self) -> dict[str, Any]:
        """Convert parameters to JSON Schema format."""
        properties = {}
        required = []

        for param in self.parameters:
            prop = {
                "type": param.param_type,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            if param.default is not None:
                prop["default"] = param.default

            properties[param.name] = prop

            if param.required:
                required.append(param.name)

        return {
            "type": "object",
            "properties": properties,
            "required": required,
        }

    def to_definition(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "parameters": self.get_parameters_schema(),
        }

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> str:
        """Validate arguments against the parameter list and call the handler."""
        if not isinstance(arguments, dict):
            raise ToolArgumentError("Arguments must be a JSON object")

        kwargs: dict[str, Any] = {}
        for param in self.parameters:
            if param.name in arguments:
                kwargs[param.name] = arguments[param.name]
            elif param.required:
                raise ToolArgumentError(f"Missing '{param.name}' argument")
            elif param.default is not None:
                kwargs[param.name] = param.default

        return await self.handler(context=context, **kwargs)
