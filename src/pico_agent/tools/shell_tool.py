"""
Shell Command Tool - runs a command through the system shell.

A command that exits non-zero is still a successful tool run: the exit
status is reported inside the returned text. Only failing to run the
command at all (bad arguments, spawn failure, timeout) raises.
"""

import asyncio
import os
import signal
from typing import Any

import structlog

from ..errors import ToolArgumentError, ToolExecutionError, ToolTimeoutError
from .base import BaseTool, ToolContext, require_argument

logger = structlog.get_logger()

DEFAULT_TIMEOUT_SECONDS = 60
DEFAULT_MAX_OUTPUT_CHARS = 50_000
STDERR_SEPARATOR = "\n--- stderr ---\n"


class ShellTool(BaseTool):
    """Execute a shell command and return its combined output."""

    def __init__(
        self,
        default_timeout: float = DEFAULT_TIMEOUT_SECONDS,
        max_output_chars: int = DEFAULT_MAX_OUTPUT_CHARS,
    ):
        self.default_timeout = default_timeout
        self.max_output_chars = max_output_chars

    @property
    def name(self) -> str:
        return "shell"

    @property
    def description(self) -> str:
        return "Execute a shell command and return the output (stdout, then stderr and exit code if any)."

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The shell command to execute",
                },
                "timeout": {
                    "type": "integer",
                    "description": f"Timeout in seconds (default: {self.default_timeout:g})",
                },
            },
            "required": ["command"],
        }

    def _resolve_timeout(self, arguments: dict[str, Any], context: ToolContext) -> float:
        timeout = arguments.get("timeout")
        if timeout is None:
            return context.timeout if context.timeout is not None else self.default_timeout
        if isinstance(timeout, bool) or not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ToolArgumentError("Argument 'timeout' must be a positive number of seconds")
        return timeout

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> str:
        command = require_argument(arguments, "command")
        timeout = self._resolve_timeout(arguments, context)

        try:
            process = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=context.workspace,
                start_new_session=True,
            )
        except OSError as e:
            raise ToolExecutionError(f"Failed to execute command: {e}") from e

        try:
            stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        except asyncio.TimeoutError as e:
            await self._kill(process)
            raise ToolTimeoutError(f"Command timed out after {timeout:g}s") from e
        except asyncio.CancelledError:
            await self._kill(process)
            raise

        return self._format_output(
            stdout.decode("utf-8", errors="replace"),
            stderr.decode("utf-8", errors="replace"),
            process.returncode,
        )

    async def _kill(self, process: asyncio.subprocess.Process) -> None:
        if process.returncode is not None:
            return
        # The shell runs in its own session; kill the whole group so children
        # holding the pipes open die with it.
        try:
            os.killpg(process.pid, signal.SIGKILL)
        except ProcessLookupError:
            return
        except PermissionError:
            process.kill()
        await process.wait()
        logger.info("Killed shell process", pid=process.pid)

    def _format_output(self, stdout: str, stderr: str, returncode: int | None) -> str:
        result = stdout
        if stderr:
            if result:
                result += STDERR_SEPARATOR
            result += stderr

        result = self._truncate_output(result)

        if returncode != 0:
            exit_code = returncode if returncode is not None else -1
            result += f"\n[Exit code: {exit_code}]"
        return result

    def _truncate_output(self, output: str) -> str:
        """Truncate output to the configured limit."""
        if self.max_output_chars <= 0 or len(output) <= self.max_output_chars:
            return output
        return output[:self.max_output_chars] + f"\n\n... (truncated, {len(output)} chars total)"
