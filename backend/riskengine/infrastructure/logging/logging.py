"""Logging setup using structlog.

Every risk cycle and order leaves one JSON line with a stable event name.
Context fields: component, cycle_id (bound per cycle), tradingsymbol.
"""

from __future__ import annotations

import logging
import sys
from contextlib import contextmanager
from typing import Any, Iterator

import structlog

# Per-request lines from these drown the risk audit trail
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


def configure_logging(log_level: str = "INFO", *, json_logs: bool = True) -> None:
    level = getattr(logging, log_level.upper(), logging.INFO)

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=level)
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))

    renderer = structlog.processors.JSONRenderer() if json_logs else structlog.dev.ConsoleRenderer()
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(component: str, **kwargs: Any) -> structlog.BoundLogger:
    return structlog.get_logger().bind(component=component, **kwargs)


@contextmanager
def cycle_context(cycle_id: int, **kwargs: Any) -> Iterator[None]:
    """Bind cycle_id to every log line emitted inside the block, including child tasks."""
    with structlog.contextvars.bound_contextvars(cycle_id=cycle_id, **kwargs):
        yield
