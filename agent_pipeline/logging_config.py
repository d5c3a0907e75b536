"""
Logging Configuration

structlog over stdlib logging for the pipeline workers. Worker loops bind
their index, lane and task to the context so every line logged while a task
runs carries them without passing them around.
"""

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import EventDict, Processor


def app_context(app_name: str) -> Processor:
    """Processor stamping every event with the application name"""

    def add_app_context(logger: logging.Logger, method_name: str, event_dict: EventDict) -> EventDict:
        event_dict.setdefault("app", app_name)
        return event_dict

    return add_app_context


def setup_logging(log_level: str = "INFO", log_format: str = "json", app_name: str = "agent-pipeline") -> None:
    """
    Configure structured logging for the worker process

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Output format (json or text)
        app_name: Value of the ``app`` key on every line
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        app_context(app_name),
    ]

    if log_format == "json":
        processors.append(structlog.processors.JSONRenderer(default=str))
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty()))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


@contextmanager
def task_context(worker: int, lane: str, task_id: str, kind: str) -> Iterator[None]:
    """Bind the consuming worker and its task to every line logged inside"""
    with structlog.contextvars.bound_contextvars(worker=worker, lane=lane, task_id=task_id, kind=kind):
        yield


def get_logger(name: str = __name__) -> Any:
    """
    Get a configured logger instance

    Args:
        name: Logger name (usually __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)
