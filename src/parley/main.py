"""
main.py — Parley Entry Point

Usage:
    parley serve                      # HTTP + SSE gateway
    parley serve --port 9000
    parley chat                       # interactive streamed REPL
    parley --log-level DEBUG chat
    parley --config path/to/config.yaml serve
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from typing import Optional

from pydantic import ValidationError

from parley.config.settings import ConfigError, Settings, load_settings
from parley.observability.logger import get_logger, setup_logging


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="parley",
        description="Parley — agent orchestration engine",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $PARLEY_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override logging.level from config",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP/SSE gateway")
    serve.add_argument("--host", default=None, help="Bind address (default: server.host)")
    serve.add_argument("--port", type=int, default=None, help="Port (default: server.port)")

    sub.add_parser("chat", help="Interactive chat in the terminal")
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace) -> Settings:
    """
    Load config, validate it fully, and set up logging.

    Exits with code 1 (after printing a clear message) if config.yaml has
    invalid values or validate_all() finds cross-field problems.
    """
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) or '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\nConfig validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except OSError as exc:
        print(f"\nFailed to load config: {type(exc).__name__}: {exc}\n", file=sys.stderr)
        sys.exit(1)

    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # chat keeps the terminal for the conversation
    console = settings.logging.console_output and args.command != "chat"
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.logging.log_dir,
        json_format=settings.logging.json_format,
        console_output=console,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )
    return settings


def _serve(settings: Settings, host: Optional[str], port: Optional[int]) -> int:
    import uvicorn

    from parley.gateway.server import create_app

    uvicorn.run(
        create_app(settings),
        host=host or settings.server.host,
        port=port or settings.server.port,
        log_config=None,
    )
    return 0


async def _chat(settings: Settings) -> int:
    from parley.bootstrap import bootstrap_agent_stack
    from parley.interfaces.cli import ChatREPL

    stack = await bootstrap_agent_stack(settings)
    try:
        await ChatREPL(stack).run()
    finally:
        await stack.aclose()
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    args = parse_args(argv)
    settings = bootstrap(args)
    log = get_logger("parley.main")
    log.info(
        "parley.starting",
        command=args.command,
        provider=settings.llm.provider,
        model=settings.llm.model,
    )

    if args.command == "serve":
        return _serve(settings, args.host, args.port)
    try:
        return asyncio.run(_chat(settings))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
