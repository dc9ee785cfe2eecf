"""
Structured logging configuration using structlog.

Operator pods log JSON by default so log collectors can index the event
fields; LOG_FORMAT=console switches to the human-readable renderer.
Every line written during a reconciliation pass carries the cluster key and
pass id through structlog contextvars.
"""
import logging
import socket
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import EventDict, Processor

from ovn_operator.config.settings import settings

_INSTANCE = socket.gethostname()


def add_operator_context(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add operator identity; several replicas may log side by side."""
    event_dict.setdefault("operator", settings.app_name)
    event_dict.setdefault("version", settings.app_version)
    event_dict.setdefault("instance", _INSTANCE)
    return event_dict


def add_severity_level(logger: Any, method_name: str, event_dict: EventDict) -> EventDict:
    """Add severity level for log collectors that expect it."""
    if "level" in event_dict:
        event_dict["severity"] = event_dict["level"].upper()
    return event_dict


def _renderer() -> Processor:
    log_format = settings.log_format
    if log_format == "auto":
        log_format = "console" if settings.environment == "development" else "json"
    if log_format == "console":
        return structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
    return structlog.processors.JSONRenderer()


def configure_logging() -> None:
    """Configure structured logging for the operator."""
    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        add_operator_context,
        add_severity_level,
        structlog.processors.format_exc_info,
        _renderer(),
    ]

    structlog.configure(
        processors=processors,  # type: ignore
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level),
    )

    # Client libraries log every request at INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("kubernetes_asyncio").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


@contextmanager
def pass_context(cluster_key: str, operation_id: str) -> Iterator[None]:
    """Bind cluster and pass id to every log line emitted inside the block."""
    with structlog.contextvars.bound_contextvars(cluster_key=cluster_key, pass_id=operation_id):
        yield


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured structlog logger.

    Args:
        name: Logger name (typically __name__ of the module)
    """
    return structlog.get_logger(name)
