"""Ordered chain of request/response security checks."""

from __future__ import annotations

import abc
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, TypeVar
from uuid import uuid4

import structlog
from starlette.requests import Request
from starlette.responses import Response

from reqguard.errors import PipelineFailure

logger = structlog.get_logger()

M = TypeVar("M", bound="Middleware")


def _short_id() -> str:
    return uuid4().hex[:8]


@dataclass
class RequestContext:
    """Per-request state shared by every middleware in the chain.

    ``extra`` carries values one middleware hands to a later one or to the
    route: rate-limit counters, the raw and rewritten body, the resolved
    file path.
    """

    request_id: str = field(default_factory=_short_id)
    client_id: str = "unknown"
    session_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)


class Middleware(abc.ABC):
    """One security check. Subclasses implement ``process_request``."""

    @property
    def name(self) -> str:
        return type(self).__name__

    @abc.abstractmethod
    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        """Return a Response to reject the request, or None to let it continue."""

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        return response


@dataclass
class _Slot:
    middleware: Middleware
    enabled: bool = True


class MiddlewarePipeline:
    """Runs request hooks in registration order and response hooks in reverse.

    A request hook that raises rejects the request with a 500, since a check
    that could not run must not wave the request through. A response hook
    that raises is logged and skipped; the remaining hooks still run.
    """

    def __init__(self) -> None:
        self._slots: list[_Slot] = []

    def __iter__(self) -> Iterator[Middleware]:
        return (slot.middleware for slot in self._slots)

    def __len__(self) -> int:
        return len(self._slots)

    def add(self, middleware: Middleware, enabled: bool = True) -> None:
        self._slots.append(_Slot(middleware, enabled))
        logger.info("middleware_registered", name=middleware.name, enabled=enabled)

    def set_enabled(self, name: str, enabled: bool) -> None:
        """Toggle the middleware registered as ``name``. Unknown names are ignored."""
        for slot in self._slots:
            if slot.middleware.name == name:
                slot.enabled = enabled

    def get_middleware(self, cls: type[M]) -> M | None:
        return next((mw for mw in self if isinstance(mw, cls)), None)

    def _active(self, *, reverse: bool = False) -> list[Middleware]:
        slots = reversed(self._slots) if reverse else self._slots
        return [slot.middleware for slot in slots if slot.enabled]

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        for mw in self._active():
            try:
                rejection = await mw.process_request(request, context)
            except Exception:
                logger.exception("middleware_request_error", middleware=mw.name)
                return PipelineFailure().to_response()
            if rejection is not None:
                logger.info("middleware_short_circuit", middleware=mw.name, status=rejection.status_code)
                return rejection
        return None

    async def process_response(self, response: Response, context: RequestContext) -> Response:
        for mw in self._active(reverse=True):
            try:
                response = await mw.process_response(response, context)
            except Exception:
                logger.exception("middleware_response_error", middleware=mw.name)
        return response
