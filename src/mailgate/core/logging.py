"""Structured logging for mailgate.

structlog renders every record, as JSON lines for the server and as a
console view for the CLI. The trace id of the execution being handled is
bound with structlog's contextvars support, so log lines written while a
request or a watcher pass handles one action all share its ``trace_id``.

Usage:
    from mailgate.core.logging import get_logger, set_trace_id

    logger = get_logger(__name__)

    set_trace_id("exec_lx2k9a_4f8d1c2e")
    logger.info("execution_confirmed", status="confirmed")
"""

import logging
import sys

import structlog

# Chatty third-party loggers, kept at WARNING unless we run at DEBUG
NOISY_LOGGERS = ("aiosqlite", "apscheduler", "urllib3")


def set_trace_id(trace_id: str | None) -> None:
    """Bind (or with None, unbind) the trace id for the current context."""
    if trace_id is None:
        structlog.contextvars.unbind_contextvars("trace_id")
    else:
        structlog.contextvars.bind_contextvars(trace_id=trace_id)


def configure_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        json_output: If True, output JSON; if False, output human-readable format
    """
    level = getattr(logging, log_level.upper())
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)

    renderer: structlog.types.Processor
    if json_output:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structlog logger bound to ``name`` (usually ``__name__``)."""
    return structlog.get_logger(name)
