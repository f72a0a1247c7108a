"""Stripping sanitizer for content that is later rendered as rich text.

Unlike ``input_sanitizer`` (which escapes), this module *removes* script
blocks, inline event handlers and script-capable URI schemes. Both layers
are applied on purpose; do not collapse one into the other.
"""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import urlsplit

_ESCAPE_MAP = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}
_ESCAPE_RE = re.compile(r"[&<>\"'/]")

_SCRIPT_BLOCK_RE = re.compile(r"<script\b[^>]*>.*?</script\s*>", re.IGNORECASE | re.DOTALL)
_QUOTED_HANDLER_RE = re.compile(r"\s*\bon\w+\s*=\s*(?:\"[^\"]*\"|'[^']*')", re.IGNORECASE)
_UNQUOTED_HANDLER_RE = re.compile(r"\s*\bon\w+\s*=\s*[^\s>]*", re.IGNORECASE)
_JAVASCRIPT_URI_RE = re.compile(r"javascript\s*:", re.IGNORECASE)
_DATA_HTML_URI_RE = re.compile(r"data\s*:\s*text/html", re.IGNORECASE)

_STRIP_PATTERNS = (
    _SCRIPT_BLOCK_RE,
    _QUOTED_HANDLER_RE,
    _UNQUOTED_HANDLER_RE,
    _JAVASCRIPT_URI_RE,
    _DATA_HTML_URI_RE,
)

_ATTRIBUTE_NAME_RE = re.compile(r"[^a-zA-Z0-9-]")

MAX_DEPTH = 64


def escape_html(value: Any) -> str:
    """Output-encode a value for embedding in HTML text or a quoted attribute."""
    if value is None:
        return ""
    return _ESCAPE_RE.sub(lambda m: _ESCAPE_MAP[m.group(0)], str(value))


def _strip_once(text: str) -> str:
    for pattern in _STRIP_PATTERNS:
        text = pattern.sub("", text)
    return text


def sanitize_input(value: Any) -> str:
    """Remove script blocks, event handlers and dangerous URI prefixes."""
    if not isinstance(value, str):
        return ""
    # Removing one construct can splice together another
    # ("<scr<script></script>ipt>"), so run to a fixed point.
    current = value
    while True:
        stripped = _strip_once(current)
        if stripped == current:
            return stripped
        current = stripped


def _walk(obj: Any, depth: int) -> Any:
    if isinstance(obj, str):
        return sanitize_input(obj)
    if not isinstance(obj, (list, dict)):
        return obj
    if depth > MAX_DEPTH:
        return None
    if isinstance(obj, list):
        return [_walk(item, depth + 1) for item in obj]
    return {key: _walk(value, depth + 1) for key, value in obj.items()}


def sanitize_object(obj: Any) -> Any:
    """Apply ``sanitize_input`` to every string in a nested structure.

    Containers nested deeper than ``MAX_DEPTH`` are replaced with None.
    """
    return _walk(obj, 0)


def sanitize_url(value: Any) -> str:
    """Return an http(s) URL normalized for rendering, or ``""``."""
    if not isinstance(value, str) or not value:
        return ""
    try:
        parsed = urlsplit(value.strip())
    except ValueError:
        return ""
    if parsed.scheme.lower() not in ("http", "https") or not parsed.netloc:
        return ""
    return parsed.geturl()


def create_safe_attributes(attrs: dict[str, Any]) -> str:
    """Render a mapping as ``key="value"`` HTML attributes."""
    parts = []
    for key, value in attrs.items():
        safe_key = _ATTRIBUTE_NAME_RE.sub("", str(key))
        # Event handler attributes are never emitted.
        if not safe_key or safe_key.lower().startswith("on"):
            continue
        parts.append(f'{safe_key}="{escape_html(value)}"')
    return " ".join(parts)
