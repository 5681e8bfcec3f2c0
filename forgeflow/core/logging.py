"""Structured logging for the API process and background workflow runs.

structlog is wired through the stdlib so uvicorn/httpx records share one
format: JSON in production, ConsoleRenderer in debug. Two things are added
to every entry when available:
- correlation_id of the HTTP request (asgi-correlation-id)
- session_id/phase of the workflow run, bound with bind_workflow_context()

Workflow runs execute as background tasks after the response is sent, so
the correlation id is captured at session creation and rebound there.
"""

import logging
import logging.config
from collections.abc import Iterator
from contextlib import contextmanager

import structlog
from asgi_correlation_id.context import correlation_id

_NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "anthropic")


def add_correlation_id(logger, method, event_dict):
    """Inject correlation_id from asgi-correlation-id context into every log entry."""
    cid = correlation_id.get(None)
    if cid and "correlation_id" not in event_dict:
        event_dict["correlation_id"] = cid
    return event_dict


def configure_structlog(log_level: str = "INFO", json_logs: bool = True) -> None:
    """Configure structlog and the stdlib root logger.

    Must run before modules call structlog.get_logger() for the first time,
    since loggers cache their processor chain on first use.

    Args:
        log_level: Root log level ("DEBUG", "INFO", "WARNING", "ERROR")
        json_logs: True for JSON lines, False for ConsoleRenderer
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        add_correlation_id,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()

    logging.config.dictConfig({
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": structlog.stdlib.ProcessorFormatter,
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    renderer,
                ],
                "foreign_pre_chain": shared_processors,
            },
        },
        "handlers": {
            "stdout": {
                "class": "logging.StreamHandler",
                "formatter": "structured",
                "stream": "ext://sys.stdout",
            },
        },
        "root": {"handlers": ["stdout"], "level": log_level},
        "loggers": {name: {"level": "WARNING"} for name in _NOISY_LOGGERS},
    })

    structlog.configure(
        processors=shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def bind_workflow_context(session_id: str, **extra: str | None) -> Iterator[None]:
    """Bind session_id (and any extra keys) to every log line inside the block."""
    values = {"session_id": session_id, **{k: v for k, v in extra.items() if v}}
    with structlog.contextvars.bound_contextvars(**values):
        yield
