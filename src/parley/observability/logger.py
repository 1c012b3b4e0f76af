"""
observability/logger.py — Parley Structured Logger

Sets up structlog with:
  - JSON output to a rotating log file
  - Human-readable output to console (dev mode) or JSON (prod mode)
  - conversation ids bound per turn via contextvars

Usage:
    from parley.observability.logger import get_logger, setup_logging

    setup_logging(level="INFO", json_format=False)   # call once at startup
    log = get_logger(__name__)
    log.info("engine.turn_start", conversation_id="conv_ab12")
"""

from __future__ import annotations

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Any, Optional

import structlog

# ─────────────────────────────────────────────────────────────────────────────
# Public API
# ─────────────────────────────────────────────────────────────────────────────


def setup_logging(
    level: str = "INFO",
    log_dir: Optional[str | Path] = "./data/logs",
    json_format: bool = True,
    console_output: bool = True,
    max_bytes: int = 100 * 1024 * 1024,   # 100 MB
    backup_count: int = 5,
) -> None:
    """
    Configure structlog and stdlib logging. Call once at application startup.

    Args:
        level:          DEBUG | INFO | WARNING | ERROR | CRITICAL
        log_dir:        Directory for the rotating log file. None disables file output.
        json_format:    If True, console also emits JSON; otherwise coloured dev output.
        console_output: Whether to emit logs to stderr at all.
        max_bytes:      Max size of the log file before rotation.
        backup_count:   Number of rotated files to keep.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    handlers: list[logging.Handler] = []

    if log_dir is not None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_path / "parley.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(numeric_level)
        handlers.append(file_handler)

    # stderr keeps stdout free for the chat REPL
    if console_output:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(numeric_level)
        handlers.append(console_handler)

    if not handlers:
        handlers.append(logging.NullHandler())

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        handlers=handlers,
        force=True,
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if json_format
        else structlog.dev.ConsoleRenderer(colors=True)
    )

    structlog.configure(
        processors=shared_processors
        + [structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=shared_processors,
    )
    for handler in handlers:
        handler.setFormatter(formatter)


def get_logger(name: str = "parley", **initial_values: Any) -> structlog.stdlib.BoundLogger:
    """
    Get a bound logger with optional initial context values.

    Example:
        log = get_logger(__name__, component="binder")
        log.info("binder.bound", handle="conv_x1")
    """
    logger = structlog.get_logger(name)
    if initial_values:
        logger = logger.bind(**initial_values)
    return logger


def bind_conversation(conversation_id: str, handle: Optional[str] = None) -> None:
    """
    Attach conversation ids to every log line emitted in this async context.

    Call at the start of a turn; structlog's contextvars integration carries
    the values into child coroutines without passing them explicitly.
    """
    values: dict[str, Any] = {"conversation_id": conversation_id}
    if handle:
        values["handle"] = handle
    structlog.contextvars.bind_contextvars(**values)


def clear_conversation() -> None:
    """Drop the per-turn conversation context."""
    structlog.contextvars.unbind_contextvars("conversation_id", "handle")
