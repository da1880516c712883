"""
Structured logging configuration using structlog.
Outputs JSON in production, pretty-printed in development.

Two kinds of context are merged from contextvars: the request context bound
by RequestLoggingMiddleware, and the task context the sweeper and the outbox
relay bind around each tick with `task_context()`, so a line written deep in
the lifecycle manager can be traced back to the request or tick that caused it.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

from swap_engine.core.config import get_settings


def drop_unset_context(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Anonymous requests bind requester_id=None; leave such keys out of the line."""
    return {key: value for key, value in event_dict.items() if value is not None}


def setup_logging() -> None:
    settings = get_settings()

    # Shared processors for all environments
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        drop_unset_context,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.ENVIRONMENT == "production":
        # JSON output for production (machine-parseable), stamped with the build
        shared_processors.append(structlog.processors.format_exc_info)
        shared_processors.append(_static_fields(service=settings.APP_NAME, version=settings.APP_VERSION))
        renderer = structlog.processors.JSONRenderer()
    else:
        # Pretty console output for development
        renderer = structlog.dev.ConsoleRenderer(colors=True)

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
        ]
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    # The lifespan can run more than once per process (tests, reloads)
    root_logger.handlers = [
        h for h in root_logger.handlers if not isinstance(h.formatter, structlog.stdlib.ProcessorFormatter)
    ]
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))

    # Silence noisy third-party loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _static_fields(**fields: Any):
    def processor(logger: Any, method_name: str, event_dict: dict) -> dict:
        for key, value in fields.items():
            event_dict.setdefault(key, value)
        return event_dict

    return processor


@contextmanager
def task_context(task: str, **values: Any) -> Iterator[str]:
    """
    Bind a background task's name and a fresh run id for the duration of one
    tick. Yields the run id. Unbinds on exit even if the tick raised.
    """
    run_id = uuid.uuid4().hex[:8]
    with structlog.contextvars.bound_contextvars(task=task, run_id=run_id, **values):
        yield run_id


def get_logger(name: str = __name__) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
