"""Path traversal guard for routes that map URL segments onto files."""

from __future__ import annotations

from collections.abc import Mapping
from urllib.parse import unquote

import structlog
from starlette.requests import Request
from starlette.responses import Response

from reqguard.errors import PathTraversalDetected
from reqguard.middleware.pipeline import Middleware, RequestContext
from reqguard.security.path_validator import validate_path

logger = structlog.get_logger()


class PathTraversalGuard(Middleware):
    """Validate the file part of mounted URL prefixes against their base directory.

    ``mounts`` maps a URL prefix (e.g. ``/api/objects/avatar/``) to the
    directory that serves it. The remainder of the path must resolve inside
    that directory, both as received and after one more round of
    percent-decoding. The resolved file path is left in
    ``context.extra["resolved_path"]`` for the route to use.
    """

    def __init__(self, mounts: Mapping[str, str]) -> None:
        # Longest prefix first so nested mounts win over their parents.
        self.mounts = sorted(mounts.items(), key=lambda item: len(item[0]), reverse=True)

    async def process_request(self, request: Request, context: RequestContext) -> Response | None:
        path = request.url.path
        for prefix, base_dir in self.mounts:
            if path.startswith(prefix):
                return self._check(path[len(prefix):], base_dir, context)
        return None

    def _check(self, candidate: str, base_dir: str, context: RequestContext) -> Response | None:
        if not candidate:
            return None

        resolved = validate_path(candidate, base_dir)
        decoded = unquote(candidate)
        if resolved is not None and decoded != candidate:
            if validate_path(decoded, base_dir) is None:
                resolved = None

        if resolved is None:
            logger.warning(
                "path_traversal_detected",
                candidate=candidate,
                security_event=True,
            )
            return PathTraversalDetected().to_response()

        context.extra["resolved_path"] = resolved
        return None
