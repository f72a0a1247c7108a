"""CSRF token issuance endpoint."""

from __future__ import annotations

from fastapi import APIRouter, Request

from reqguard.errors import SessionRequired

router = APIRouter()


@router.get("/api/csrf-token")
async def csrf_token(request: Request) -> dict[str, str]:
    """Issue a fresh CSRF token for the caller's session.

    Replaces any token previously issued to the same session.
    """
    context = getattr(request.state, "security_context", None)
    session_id = context.session_id if context is not None else ""
    if not session_id:
        raise SessionRequired()

    token = request.app.state.csrf_store.issue(session_id)
    return {"csrfToken": token}
