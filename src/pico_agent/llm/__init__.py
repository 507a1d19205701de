"""
Provider adapters.

The agent loop only sees BaseLLM; each adapter translates the session's
role-tagged messages and tool definitions to one vendor SDK.
"""

from .anthropic import AnthropicLLM
from .base import BaseLLM, LLMResponse, ToolDefinition
from .factory import OPENROUTER_BASE_URL, create_llm
from .openai import OpenAILLM, parse_arguments

__all__ = [
    "AnthropicLLM",
    "BaseLLM",
    "LLMResponse",
    "OPENROUTER_BASE_URL",
    "OpenAILLM",
    "ToolDefinition",
    "create_llm",
    "parse_arguments",
]
