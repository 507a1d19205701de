"""
Agent module - the orchestration core.

Includes:
- AgentLoop: per-session serialized rounds of provider calls and tool runs
- ContextBuilder: renders session history into provider input
"""

from .context import ContextBuilder, estimate_tokens
from .loop import AgentLoop

__all__ = [
    "AgentLoop",
    "ContextBuilder",
    "estimate_tokens",
]
