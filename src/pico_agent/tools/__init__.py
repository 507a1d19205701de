"""
Tool contract, registry and the built-in shell tool.

Tools report operational failures (a command exiting non-zero) inside their
text output and raise ToolError only when they cannot run at all.
"""

from .base import BaseTool, Tool, ToolContext, ToolParameter
from .registry import ToolRegistry, create_default_registry
from .shell_tool import ShellTool

__all__ = [
    "BaseTool",
    "Tool",
    "ToolContext",
    "ToolParameter",
    "ToolRegistry",
    "create_default_registry",
    "ShellTool",
]
