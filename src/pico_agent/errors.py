"""
Exception hierarchy for pico-agent.

Round-fatal errors (provider, persistence) propagate out of the agent loop.
Tool errors are caught by the loop and fed back to the model as tool results.
"""


class AgentError(Exception):
    """Base class for all pico-agent errors."""


class ProviderError(AgentError):
    """The LLM provider could not produce a response."""


class PersistenceError(AgentError):
    """A session could not be written to or removed from durable storage."""


class SessionDataError(AgentError):
    """A persisted session document could not be decoded."""


class CorrelationError(AgentError):
    """A tool result does not match any tool call issued earlier in the session."""


class ToolError(AgentError):
    """A tool could not be run at all."""


class ToolNotFoundError(ToolError):
    """No tool with the requested name is registered."""


class ToolArgumentError(ToolError):
    """Tool arguments are missing or malformed."""


class ToolTimeoutError(ToolError):
    """A tool did not finish before its deadline."""


class ToolExecutionError(ToolError):
    """A tool failed to start or crashed while running."""
