"""Structured logging module with JSON output and batch ID support.

This module provides a centralized logging configuration using structlog for
structured JSON logging. Every event emitted while a settlement batch is being
verified carries that batch's identifier.
"""

import logging
import sys
from contextvars import ContextVar
from pathlib import Path

import structlog
from structlog.types import EventDict, WrappedLogger

# Identifier of the batch currently being validated or verified
batch_id_ctx: ContextVar[str] = ContextVar("batch_id", default="")


def get_batch_id() -> str:
    """Get the identifier of the batch being processed.

    Returns:
        Current batch ID or empty string if not set.
    """
    return batch_id_ctx.get()


def bind_batch_id(batch_id: str) -> None:
    """Set the identifier of the batch being processed.

    Args:
        batch_id: Batch ID to attach to subsequent log events.
    """
    batch_id_ctx.set(batch_id)


def add_batch_id(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add batch ID to log entries if available.

    Args:
        logger: The wrapped logger instance
        method_name: The name of the method being called
        event_dict: The event dictionary to modify

    Returns:
        Modified event dictionary with batch_id if available
    """
    batch_id = get_batch_id()
    if batch_id:
        event_dict["batch_id"] = batch_id
    return event_dict


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    json_output: bool = True,
) -> None:
    """Configure structured logging for the simulator.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional file path for log output (in addition to console)
        json_output: If True, output JSON format; if False, use human-readable format
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        level=numeric_level,
        stream=sys.stdout,
    )

    processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        add_batch_id,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter("%(message)s"))

        logging.getLogger().addHandler(file_handler)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def setup_dev_logging() -> None:
    """Setup logging for development (human-readable output)."""
    setup_logging(level="DEBUG", json_output=False)


__all__ = [
    "add_batch_id",
    "bind_batch_id",
    "get_batch_id",
    "get_logger",
    "setup_dev_logging",
    "setup_logging",
]
