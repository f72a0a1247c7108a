"""Log sanitization: keeps attacker-controlled values from splitting or forging log lines."""

from __future__ import annotations

import re
from typing import Any

# Line breaks and tabs are escaped into visible two-character sequences
# instead of being removed, so the original content stays readable.
_VISIBLE_ESCAPES = {
    "\n": "\\n",
    "\r": "\\r",
    "\t": "\\t",
}
_VISIBLE_ESCAPE_RE = re.compile(r"[\n\r\t]")

# C0 controls (\x00-\x1f), DEL (\x7f), C1 controls (\x80-\x9f),
# Unicode line/paragraph separators (\u2028-\u2029),
# bidi overrides (\u200b-\u200f, \u202a-\u202e, \u2066-\u2069),
# zero-width no-break space / BOM (\ufeff).
CONTROL_CHARS_RE = re.compile(
    r"[\x00-\x1f\x7f-\x9f\u2028\u2029\u200b-\u200f\u202a-\u202e\u2066-\u2069\ufeff]"
)

# Fields added by our own processors, not by callers.
_TRUSTED_EVENT_KEYS = frozenset({"timestamp", "level", "module"})

_PASSTHROUGH_TYPES = (bool, int, float)

MAX_DEPTH = 32
DEPTH_PLACEHOLDER = "[nested too deep]"


def strip_control_chars(value: str) -> str:
    """Strip all control characters from a string."""
    return CONTROL_CHARS_RE.sub("", value)


def sanitize(value: Any) -> str:
    """Render any value as a single, control-character-free log token."""
    text = str(value)
    text = _VISIBLE_ESCAPE_RE.sub(lambda m: _VISIBLE_ESCAPES[m.group(0)], text)
    return strip_control_chars(text).strip()


def _walk(value: Any, depth: int) -> Any:
    if isinstance(value, str):
        return sanitize(value)
    if not isinstance(value, (dict, list, tuple)):
        return value
    if depth > MAX_DEPTH:
        return DEPTH_PLACEHOLDER
    if isinstance(value, dict):
        return {sanitize(k): _walk(v, depth + 1) for k, v in value.items()}
    return [_walk(item, depth + 1) for item in value]


def sanitize_object(value: Any) -> Any:
    """Recursively sanitize strings inside dicts, lists and tuples.

    Dict keys are sanitized as well as values. Non-string scalars
    (numbers, booleans, None) are returned unchanged. Containers nested
    deeper than ``MAX_DEPTH`` are logged as ``DEPTH_PLACEHOLDER``.
    """
    return _walk(value, 0)


def _sanitize_field(value: Any) -> Any:
    if value is None or isinstance(value, _PASSTHROUGH_TYPES):
        return value
    if isinstance(value, (str, dict, list, tuple)):
        return sanitize_object(value)
    # Arbitrary objects get rendered with str() by the renderer; do it here.
    return sanitize(value)


def sanitize_event_dict(logger: Any, method_name: str, event_dict: dict) -> dict:
    """structlog processor: sanitize every caller-supplied field of a log entry."""
    for key in list(event_dict):
        if key in _TRUSTED_EVENT_KEYS:
            continue
        value = event_dict.pop(key)
        event_dict[sanitize(key)] = _sanitize_field(value)
    return event_dict


class SafeLogger:
    """Wrap a logger so that every argument is sanitized before reaching the sink.

    Works with stdlib loggers and structlog bound loggers alike::

        log = SafeLogger(structlog.get_logger())
        log.info("upload_received", filename=user_supplied_name)
    """

    _METHODS = frozenset({"debug", "info", "warning", "error", "exception", "critical"})

    def __init__(self, logger: Any) -> None:
        self._logger = logger

    def __getattr__(self, name: str) -> Any:
        if name not in self._METHODS:
            raise AttributeError(name)
        target = getattr(self._logger, name)

        def _log(*args: Any, **kwargs: Any) -> Any:
            clean_args = [sanitize_object(arg) for arg in args]
            clean_kwargs = {k: sanitize_object(v) for k, v in kwargs.items()}
            return target(*clean_args, **clean_kwargs)

        return _log
