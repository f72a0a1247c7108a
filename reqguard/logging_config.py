"""structlog setup: every log entry is rendered as one sanitized line."""

from __future__ import annotations

import logging
import sys
from typing import TextIO

import structlog

from reqguard.security.log_sanitizer import sanitize_event_dict

# Third-party loggers that are too chatty below WARNING
_QUIET_LOGGERS = ("uvicorn.access", "httpx")


def _logger_name_as_module(logger: logging.Logger, method_name: str, event_dict: dict) -> dict:
    name = event_dict.pop("logger", None)
    if name is not None:
        event_dict["module"] = name
    return event_dict


def _level(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _pre_render_chain() -> list[structlog.types.Processor]:
    """Processors applied to structlog entries and stdlib records alike.

    ``sanitize_event_dict`` comes after ``format_exc_info`` so tracebacks are
    flattened like any other field.
    """
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        _logger_name_as_module,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        sanitize_event_dict,
    ]


def setup_logging(log_level: str = "info", json_format: bool = True, stream: TextIO | None = None) -> None:
    """Route structlog and stdlib logging (uvicorn included) through one handler."""
    chain = _pre_render_chain()
    renderer: structlog.types.Processor
    if json_format:
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=False)

    structlog.configure(
        processors=[*chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(_level(log_level))

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
