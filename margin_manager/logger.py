"""structlog setup shared by the margin manager modules and CLI."""

from __future__ import annotations

import logging
from typing import Any, MutableMapping, Optional, TextIO

import structlog

SERVICE_NAME = "margin-manager"


def _add_service(_: Any, __: str, event_dict: MutableMapping[str, Any]) -> MutableMapping[str, Any]:
    event_dict.setdefault("service", SERVICE_NAME)
    return event_dict


def configure_logging(
    level: str = "info", *, json_output: bool = True, stream: Optional[TextIO] = None
) -> None:
    """Route structlog events to ``stream`` (stdout by default) at ``level``."""

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(level=numeric_level, format="%(message)s")
    renderer: Any = (
        structlog.processors.JSONRenderer(sort_keys=True)
        if json_output
        else structlog.dev.ConsoleRenderer(colors=False)
    )
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.PrintLoggerFactory(file=stream),
        processors=[
            structlog.contextvars.merge_contextvars,
            _add_service,
            structlog.processors.TimeStamper(fmt="iso", key="ts"),
            structlog.processors.add_log_level,
            structlog.processors.EventRenamer("message"),
            structlog.processors.format_exc_info,
            renderer,
        ],
    )


def get_logger(name: str | None = None) -> Any:
    return structlog.get_logger(name)


__all__ = ["SERVICE_NAME", "configure_logging", "get_logger"]
