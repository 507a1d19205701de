"""
Command-line interface for pico-agent.
"""

import argparse
import asyncio
import json
import logging
import sys

import structlog

from .config import Settings, get_settings

logger = structlog.get_logger()


def configure_logging(level: str = "INFO") -> None:
    """Route structlog through stdlib logging with a console renderer."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level.upper())
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pico-agent",
        description="pico-agent - conversational agent runtime",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP gateway")
    serve_parser.add_argument("--host", default=None, help="Host to bind to")
    serve_parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    serve_parser.add_argument("--reload", action="store_true", help="Enable auto-reload")

    chat_parser = subparsers.add_parser("chat", help="Chat with the agent in the terminal")
    chat_parser.add_argument("--session", default="cli:default", help="Session key to use")

    sessions_parser = subparsers.add_parser("sessions", help="Inspect stored sessions")
    sessions_subparsers = sessions_parser.add_subparsers(dest="sessions_command")
    sessions_subparsers.add_parser("list", help="List session keys")
    show_parser = sessions_subparsers.add_parser("show", help="Print a session as JSON")
    show_parser.add_argument("key", help="Session key")
    delete_parser = sessions_subparsers.add_parser("delete", help="Delete a session")
    delete_parser.add_argument("key", help="Session key")

    config_parser = subparsers.add_parser("config", help="Show configuration")
    config_parser.add_argument("--check", action="store_true", help="Check configuration validity")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    settings = get_settings()
    configure_logging("DEBUG" if settings.debug else settings.log_level)

    if args.command == "serve":
        run_server(settings, args.host, args.port, args.reload)
    elif args.command == "chat":
        asyncio.run(chat(settings, args.session))
    elif args.command == "sessions":
        if args.sessions_command is None:
            parser.parse_args(["sessions", "--help"])
        return asyncio.run(manage_sessions(settings, args.sessions_command, getattr(args, "key", None)))
    elif args.command == "config":
        return show_config(settings, args.check)
    return 0


def run_server(settings: Settings, host: str | None, port: int | None, reload: bool) -> None:
    """Run the FastAPI server."""
    import uvicorn

    host = host or settings.host
    port = port or settings.port
    logger.info("Starting pico-agent server", host=host, port=port)

    uvicorn.run(
        "pico_agent.api.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
        log_level=settings.log_level.lower(),
    )


async def chat(settings: Settings, session_key: str) -> None:
    """Interactive chat over the in-process message bus."""
    from .agent import AgentLoop
    from .bus import InboundMessage, MessageBus

    bus = MessageBus()
    agent = AgentLoop.from_settings(settings, bus=bus)
    runner = asyncio.create_task(agent.run())

    print(f"Chatting in session '{session_key}'. Type 'exit' to quit.")
    try:
        while True:
            try:
                line = await asyncio.to_thread(input, "you> ")
            except EOFError:
                break
            text = line.strip()
            if not text:
                continue
            if text in ("exit", "quit"):
                break

            await bus.publish_inbound(InboundMessage(session_key=session_key, content=text))
            reply = await bus.consume_outbound()
            prefix = "error> " if reply.is_error else "assistant> "
            print(f"{prefix}{reply.content}")
    finally:
        await agent.shutdown()
        await runner


async def manage_sessions(settings: Settings, command: str, key: str | None) -> int:
    """List, show or delete stored sessions."""
    from .session import SessionStore

    store = SessionStore.from_settings(settings)

    if command == "list":
        keys = await store.list()
        if not keys:
            print("No sessions.")
        for k in keys:
            print(k)
        return 0

    assert key is not None
    session = await store.get(key)
    if session is None:
        print(f"Session '{key}' not found.", file=sys.stderr)
        return 1

    if command == "show":
        print(json.dumps(session.to_dict(), indent=2, ensure_ascii=False))
    elif command == "delete":
        await store.delete(key)
        print(f"Deleted session '{key}'.")
    return 0


def show_config(settings: Settings, check: bool) -> int:
    """Show current configuration."""

    def mask(value: str) -> str:
        if not value:
            return "(not set)"
        return value[:4] + "..." + value[-4:] if len(value) > 10 else "****"

    llm = settings.get_llm_config()

    print("\n=== pico-agent Configuration ===\n")

    print("Server:")
    print(f"  Host: {settings.host}")
    print(f"  Port: {settings.port}")
    print(f"  Debug: {settings.debug}")

    print("\nLLM:")
    print(f"  Provider: {llm.provider}")
    print(f"  Model: {llm.model}")
    print(f"  API Key: {mask(llm.api_key)}")

    print("\nSessions:")
    print(f"  Persist: {settings.persist_sessions}")
    print(f"  Storage: {settings.storage_dir}")

    print("\nAgent:")
    print(f"  Max tool iterations: {settings.max_tool_iterations}")
    print(f"  Max concurrent tools: {settings.max_concurrent_tools or 'unbounded'}")
    print(f"  Context window: {settings.max_context_messages or 'unlimited'} messages, "
          f"{settings.max_context_tokens or 'unlimited'} tokens")
    print(f"  Workspace: {settings.workspace_dir or '(current directory)'}")
    print(f"  Shell tool: {settings.enable_shell} (timeout {settings.shell_timeout_seconds:g}s)")

    if not check:
        return 0

    print("\n=== Configuration Check ===\n")
    errors = []
    if not llm.api_key:
        errors.append(f"No API key set for provider '{llm.provider}'")

    if errors:
        for e in errors:
            print(f"  - {e}")
        print("\nConfiguration has errors - fix them before starting")
        return 1

    print("Configuration looks good!")
    return 0


if __name__ == "__main__":
    sys.exit(main())
