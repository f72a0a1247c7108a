"""Escaping sanitizer for request bodies and user-supplied links.

This is the *escaping* role: output is safe to echo back as plain text.
Code paths that later render raw HTML need ``xss_protection`` as well.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlsplit

from reqguard.security.ip_blocklist import is_blocked_host

_HTML_ENTITIES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}

# An ampersand that already opens one of our own entities is left alone,
# which keeps sanitize_text idempotent.
_HTML_SPECIAL_RE = re.compile(r"&(?!(?:amp|lt|gt|quot|#x27|#x2F);)|[<>\"'/]")

_LOG_WHITESPACE_RE = re.compile(r"[\r\n\t]")
_LOG_CONTROL_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")
_LOG_MAX_LENGTH = 200

# Objects nested deeper than this are replaced with None
MAX_DEPTH = 64

_URL_REJECT_RE = re.compile(r"[\x00-\x20\x7f\\]")
_ALLOWED_SCHEMES = {"http", "https"}


def sanitize_html(value: Any) -> str:
    """Escape the HTML-significant characters ``& < > " ' /``."""
    if not value or not isinstance(value, str):
        return ""
    return _HTML_SPECIAL_RE.sub(lambda m: _HTML_ENTITIES[m.group(0)], value)


def sanitize_text(value: Any) -> str:
    """Sanitize plain text for storage and display."""
    return sanitize_html(value)


def _sanitize_list(items: list, depth: int) -> list:
    # One level only: strings and objects inside the list are handled,
    # nested lists are passed through as-is.
    result = []
    for item in items:
        if isinstance(item, str):
            result.append(sanitize_text(item))
        elif isinstance(item, dict):
            result.append(_sanitize_dict(item, depth + 1))
        else:
            result.append(item)
    return result


def _sanitize_dict(obj: dict, depth: int) -> dict | None:
    if depth > MAX_DEPTH:
        return None
    sanitized: dict[Any, Any] = {}
    for key, value in obj.items():
        if isinstance(value, str):
            sanitized[key] = sanitize_text(value)
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_dict(value, depth + 1)
        elif isinstance(value, list):
            sanitized[key] = _sanitize_list(value, depth)
        else:
            sanitized[key] = value
    return sanitized


def sanitize_object(obj: Any) -> Any:
    """Escape every string leaf of a decoded request body.

    Objects nested deeper than ``MAX_DEPTH`` are replaced with None.
    """
    if isinstance(obj, str):
        return sanitize_text(obj)
    if isinstance(obj, list):
        return _sanitize_list(obj, 0)
    if isinstance(obj, dict):
        return _sanitize_dict(obj, 0)
    return obj


def sanitize_for_log(value: Any) -> str:
    """Flatten a value to a short single-line string for request logging."""
    if value is None:
        return ""
    text = _LOG_WHITESPACE_RE.sub(" ", str(value))
    return _LOG_CONTROL_RE.sub("", text)[:_LOG_MAX_LENGTH]


def sanitize_path(value: Any) -> str:
    """Strip traversal sequences and separators from a path token.

    Best-effort pre-filter only; ``path_validator.validate_path`` is the
    authoritative containment check.
    """
    if not value or not isinstance(value, str):
        return ""
    result = value
    while True:
        cleaned = result.replace("..", "").replace("/", "_").replace("\\", "_")
        if cleaned == result:
            return cleaned
        result = cleaned


def sanitize_url(value: Any) -> str | None:
    """Validate a user-supplied link. Returns the normalized URL or None to reject."""
    if not value or not isinstance(value, str):
        return None
    if _URL_REJECT_RE.search(value):
        return None
    try:
        parsed = urlsplit(value)
        hostname = parsed.hostname
        _ = parsed.port  # raises ValueError on a malformed port
    except ValueError:
        return None
    if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
        return None
    if not hostname or is_blocked_host(hostname):
        return None
    return parsed.geturl()
