#!/usr/bin/env python
"""nuagent - Main Entry Point.

Usage:
    # Serve the HTTP gateway
    nuagent api --port 3001

    # One agent turn from the command line
    nuagent chat "how many files are in this directory?"

    # Run or check a script without the model
    nuagent exec "ls | length"
    nuagent validate "ls | where size > 1mb"
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys

import structlog

from nuagent.config import Settings
from nuagent.errors import ConfigurationError, NuAgentError
from nuagent.observability import configure_logging

logger = structlog.get_logger(__name__)


async def run_api_mode(host: str = "0.0.0.0", port: int = 3001) -> None:
    """Run in API server mode."""
    import uvicorn

    from nuagent.api.main import app

    logger.info("Starting API server mode", host=host, port=port)

    config = uvicorn.Config(
        app,
        host=host,
        port=port,
        log_level="info",
    )
    server = uvicorn.Server(config)
    await server.serve()


async def run_chat(settings: Settings, message: str) -> int:
    from nuagent.conversation import ConversationManager, Orchestrator
    from nuagent.execution import create_executor
    from nuagent.llm import get_provider

    executor = create_executor(settings.executor)
    orchestrator = Orchestrator(
        provider=get_provider(),
        conversations=ConversationManager(),
        executor=executor,
        config=settings.agent,
    )
    conversation_id, result = await orchestrator.start_conversation(message)
    await executor.terminate_session(conversation_id)

    print(result.response)
    if result.reasoning:
        logger.debug("Model reasoning", reasoning=result.reasoning)
    return 1 if result.iteration_limit_reached else 0


async def run_exec(settings: Settings, script: str, timeout_ms: int | None) -> int:
    from nuagent.execution import ExecutionRequest, create_executor

    executor = create_executor(settings.executor)
    result = await executor.execute(ExecutionRequest(script=script, timeout_ms=timeout_ms))

    if result.output:
        print(result.output)
    if not result.success:
        print(result.error or "Execution failed", file=sys.stderr)
        return 1
    return 0


def run_validate(script: str) -> int:
    from nuagent.scripting import try_validate_script

    result = try_validate_script(script)
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.valid else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nuagent",
        description="Nushell scripting agent",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    api = subparsers.add_parser("api", help="Serve the HTTP gateway")
    api.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    api.add_argument("--port", type=int, default=3001, help="API server port (default: 3001)")

    chat = subparsers.add_parser("chat", help="Run one agent turn and print the answer")
    chat.add_argument("message", help="User message")

    exec_parser = subparsers.add_parser("exec", help="Execute a script with the configured executor")
    exec_parser.add_argument("script", help="Nushell script")
    exec_parser.add_argument("--timeout-ms", type=int, default=None, help="Execution timeout")

    validate = subparsers.add_parser("validate", help="Validate a script and print the verdict")
    validate.add_argument("script", help="Nushell script")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    if args.command == "validate":
        return run_validate(args.script)

    try:
        settings = Settings.from_env()
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    # Configure logging FIRST so executor and provider setup is captured
    configure_logging(level=settings.log_level, json_logs=settings.log_json)

    try:
        if args.command == "api":
            asyncio.run(run_api_mode(args.host, args.port))
            return 0
        if args.command == "chat":
            return asyncio.run(run_chat(settings, args.message))
        return asyncio.run(run_exec(settings, args.script, args.timeout_ms))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
        return 130
    except NuAgentError as e:
        logger.error("Fatal error", error=str(e), error_type=type(e).__name__)
        return 1


if __name__ == "__main__":
    sys.exit(main())
