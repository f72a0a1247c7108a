"""FastAPI application with the security pipeline in front of the API routes."""

from __future__ import annotations

from collections.abc import Iterable
from contextlib import asynccontextmanager

import structlog
from fastapi import APIRouter, FastAPI, Request
from starlette.responses import Response
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from reqguard.api.csrf_routes import router as csrf_router
from reqguard.config.loader import GuardSettings, load_settings, register_reload_handler
from reqguard.errors import SecurityError
from reqguard.health import router as health_router
from reqguard.logging_config import setup_logging
from reqguard.middleware.context_injector import ContextInjector
from reqguard.middleware.csrf_protection import CSRFProtection
from reqguard.middleware.https_enforcer import HTTPSEnforcer, InsecureTransportMonitor
from reqguard.middleware.path_guard import PathTraversalGuard
from reqguard.middleware.pipeline import MiddlewarePipeline, RequestContext
from reqguard.middleware.rate_limiter import RateLimiter
from reqguard.middleware.request_sanitizer import RequestSanitizer
from reqguard.security.url_validator import URLValidator
from reqguard.store.csrf_tokens import CSRFTokenStore
from reqguard.store.rate_window import RateWindowStore

logger = structlog.get_logger()


def _build_pipeline(
    settings: GuardSettings,
    rate_store: RateWindowStore,
    csrf_store: CSRFTokenStore,
) -> MiddlewarePipeline:
    """Build the ordered middleware pipeline.

    ContextInjector runs first so every later check (and log entry) sees
    the request id, client identifier and session identifier.
    """
    pipeline = MiddlewarePipeline()
    pipeline.add(ContextInjector(                       # 0: request id, client id, session id
        trust_proxy=settings.trust_proxy,
        session_cookie_name=settings.session_cookie_name,
    ))
    pipeline.add(HTTPSEnforcer(                         # 1: redirect plain HTTP, HSTS
        enabled=settings.https_enforcement_enabled,
        trust_proxy=settings.trust_proxy,
        exclude_paths=settings.https_excluded_paths,
    ))
    pipeline.add(InsecureTransportMonitor(              # 2: advisory only
        settings.https_sensitive_paths,
        trust_proxy=settings.trust_proxy,
    ))
    pipeline.add(RateLimiter(                           # 3
        rate_store,
        settings.rate_limit_rules,
        skip_paths=settings.rate_limit_skip_paths,
    ))
    pipeline.add(RequestSanitizer(max_body_bytes=settings.max_body_bytes))  # 4: escape body strings
    pipeline.add(                                       # 5: state-changing methods only
        CSRFProtection(
            csrf_store,
            exempt_paths=settings.csrf_exempt_paths,
            header_name=settings.csrf_header_name,
        ),
        enabled=settings.csrf_enabled,
    )
    pipeline.add(PathTraversalGuard(settings.path_mounts))  # 6: file-serving prefixes
    return pipeline


def _replay_body(body: bytes, receive: Receive) -> Receive:
    """Hand ``body`` to the application once, then defer to the real channel."""
    sent = False

    async def _receive() -> Message:
        nonlocal sent
        if not sent:
            sent = True
            return {"type": "http.request", "body": body, "more_body": False}
        return await receive()

    return _receive


def _with_content_length(scope: Scope, length: int) -> Scope:
    headers = [
        (name, value)
        for name, value in scope.get("headers", [])
        if name.lower() != b"content-length"
    ]
    headers.append((b"content-length", str(length).encode("latin-1")))
    return {**scope, "headers": headers}


class SecurityPipelineMiddleware:
    """ASGI adapter running the ``MiddlewarePipeline`` around the application.

    - Short-circuit responses still pass through the response pipeline
    - A body rewritten by the sanitizer replaces the original for the app
    - Response handlers only see headers; bodies stream through untouched
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        owner = scope.get("app")
        pipeline: MiddlewarePipeline | None = getattr(owner.state, "pipeline", None) if owner else None
        if pipeline is None:
            await self.app(scope, receive, send)
            return

        request = Request(scope, receive)
        context = RequestContext()
        scope.setdefault("state", {})["security_context"] = context

        short_circuit = await pipeline.process_request(request, context)
        if short_circuit is not None:
            response = await pipeline.process_response(short_circuit, context)
            await response(scope, receive, send)
            return

        if "modified_body" in context.extra:
            body = context.extra["modified_body"]
            receive = _replay_body(body, receive)
            scope = _with_content_length(scope, len(body))
        elif "raw_body" in context.extra:
            # The pipeline consumed the stream; give the app the same bytes.
            receive = _replay_body(context.extra["raw_body"], receive)

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                headers_only = Response(status_code=message["status"])
                headers_only.raw_headers = list(message.get("headers", []))
                processed = await pipeline.process_response(headers_only, context)
                message = {**message, "headers": processed.raw_headers}
            await send(message)

        await self.app(scope, receive, send_wrapper)


async def _security_error_handler(request: Request, exc: SecurityError) -> Response:
    """Render security errors raised by route code as structured JSON."""
    log = logger.warning if exc.security_event else logger.info
    log(
        "security_error",
        code=exc.code,
        detail=exc.detail,
        path=request.url.path,
        security_event=exc.security_event,
    )
    return exc.to_response()


def create_app(
    settings: GuardSettings | None = None,
    *,
    routers: Iterable[APIRouter] = (),
    rate_store: RateWindowStore | None = None,
    csrf_store: CSRFTokenStore | None = None,
) -> FastAPI:
    """Create the application.

    Stores can be injected (tests, or a shared backing store later);
    otherwise fresh in-process stores are created at startup.
    """

    def _apply(app: FastAPI, active: GuardSettings) -> None:
        app.state.settings = active
        app.state.url_validator = URLValidator(
            active.allowed_domains,
            resolve_hostnames=active.url_resolve_hostnames,
        )
        app.state.pipeline = _build_pipeline(active, app.state.rate_store, app.state.csrf_store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        active = settings or load_settings()
        setup_logging(log_level=active.log_level, json_format=active.log_json)

        app.state.rate_store = rate_store or RateWindowStore(
            sweep_probability=active.rate_limit_sweep_probability,
        )
        app.state.csrf_store = csrf_store or CSRFTokenStore(
            ttl_seconds=active.csrf_token_ttl_seconds,
        )
        _apply(app, active)

        def on_reload(reloaded: GuardSettings) -> None:
            # Counters and issued CSRF tokens survive a reload.
            setup_logging(log_level=reloaded.log_level, json_format=reloaded.log_json)
            _apply(app, reloaded)
            logger.info("pipeline_rebuilt", middleware=[mw.name for mw in app.state.pipeline])

        register_reload_handler(on_reload)

        logger.info(
            "reqguard_started",
            middleware=[mw.name for mw in app.state.pipeline],
            https_enforcement=active.https_enforcement_enabled,
        )

        yield

        app.state.pipeline = None
        logger.info("reqguard_stopped")

    app = FastAPI(title="reqguard", lifespan=lifespan)
    app.add_middleware(SecurityPipelineMiddleware)
    app.add_exception_handler(SecurityError, _security_error_handler)

    app.include_router(health_router)
    app.include_router(csrf_router)
    for router in routers:
        app.include_router(router)
    return app


app = create_app()
