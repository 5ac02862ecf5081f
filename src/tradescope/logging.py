"""Structured logging setup using structlog on top of stdlib logging."""

import logging
import os

import structlog

# Third-party loggers that are chatty at DEBUG.
_QUIET_LOGGERS = ("aiosqlite", "ccxt", "asyncio")


def setup_logging(log_level: str = "INFO") -> None:
    """Configure structlog with console or JSON rendering.

    LOG_FORMAT=json selects machine-readable output; anything else renders
    for a terminal. Context bound with bind_context() is merged into every
    event emitted from the same task (structlog.contextvars).
    """
    log_format = os.environ.get("LOG_FORMAT", "console").lower()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a bound structlog logger with the given name."""
    return structlog.get_logger(name)


def bind_context(**values: object) -> None:
    """Attach key/value context to all log events from the current task.

    Tasks copy the context they were created in, so values bound inside a
    task do not leak into its caller.
    """
    structlog.contextvars.bind_contextvars(**values)
