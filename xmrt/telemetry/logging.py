"""
XMRT Core — Structured Logging

All logging via structlog, rendered through one stdlib root handler so
uvicorn and library records share the same format as our own.

Every entry carries:
  - ``service``      — always "xmrt-core"
  - ``instance_id``  — bound once at startup, when configured
  - ``component``    — bound by each subsystem (``logger.bind(component=...)``);
                       records that never bound one fall back to the last
                       segment of their logger name (``xmrt.main`` → ``main``)
"""

from __future__ import annotations

import logging
import sys
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from structlog.typing import EventDict, WrappedLogger

    from xmrt.config import LoggingConfig

SERVICE_NAME = "xmrt-core"

# Loggers that go through our root handler instead of their own
_ADOPTED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")

_QUIET_LOGGERS = ("httpx", "asyncio", "uvicorn.access")


def _default_component(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    if "component" not in event_dict:
        name = event_dict.get("logger") or ""
        if name:
            event_dict["component"] = name.rsplit(".", 1)[-1]
    return event_dict


def _drop_color_message(_: WrappedLogger, __: str, event_dict: EventDict) -> EventDict:
    # uvicorn duplicates every message with ANSI codes under this key
    event_dict.pop("color_message", None)
    return event_dict


def setup_logging(config: LoggingConfig, instance_id: str = "") -> logging.Handler:
    """
    Configure structured logging for the process.

    Safe to call more than once: the root handler and the bound context are
    replaced, never stacked. Returns the installed root handler.
    """
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(service=SERVICE_NAME)
    if instance_id:
        structlog.contextvars.bind_contextvars(instance_id=instance_id)

    # Shared by our loggers and by foreign stdlib records
    pre_chain: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.ExtraAdder(),
        _drop_color_message,
        _default_component,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]

    renderer: Any
    if config.format == "json":
        renderer = structlog.processors.JSONRenderer()
        tail: list[Any] = [structlog.processors.dict_tracebacks]
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())
        tail = []

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            *pre_chain,
            structlog.processors.StackInfoRenderer(),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=pre_chain,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            *tail,
            renderer,
        ],
    ))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, config.level.upper(), logging.INFO))

    for name in _ADOPTED_LOGGERS:
        adopted = logging.getLogger(name)
        adopted.handlers.clear()
        adopted.propagate = True

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return handler
