"""Filesystem path containment checks.

``validate_path`` is the authoritative boundary check for any user-supplied
path; ``input_sanitizer.sanitize_path`` is only a pre-filter.
"""

from __future__ import annotations

import os
import re
from pathlib import Path

from reqguard.errors import PathTraversalDetected

_UNSAFE_FILENAME_CHARS_RE = re.compile(r"[^a-zA-Z0-9._-]")
_DOT_RUN_RE = re.compile(r"\.{2,}")
_MAX_FILENAME_LENGTH = 255


def _resolve(base_dir: str | os.PathLike[str], *parts: str) -> tuple[Path, Path]:
    base = Path(base_dir).resolve()
    return base, base.joinpath(*parts).resolve()


def validate_path(candidate: str, base_dir: str | os.PathLike[str]) -> str | None:
    """Resolve ``candidate`` under ``base_dir``.

    Returns the absolute path when it lies strictly inside ``base_dir``
    (after following symlinks), otherwise None. Absolute candidates are
    allowed only if they still land inside the base directory.
    """
    if not candidate or not isinstance(candidate, str) or "\x00" in candidate:
        return None
    try:
        base, resolved = _resolve(base_dir, os.path.normpath(candidate))
    except (OSError, RuntimeError, ValueError):
        return None
    if base not in resolved.parents:
        return None
    return str(resolved)


def is_path_safe(path: str | os.PathLike[str], base_dir: str | os.PathLike[str]) -> bool:
    """Check that ``path`` resolves to ``base_dir`` or somewhere beneath it."""
    try:
        base = Path(base_dir).resolve()
        resolved = Path(path).resolve()
    except (OSError, RuntimeError, ValueError):
        return False
    return resolved == base or base in resolved.parents


def sanitize_filename(filename: str) -> str:
    """Reduce a client-supplied filename to a safe single path component."""
    name = _UNSAFE_FILENAME_CHARS_RE.sub("_", filename)
    name = _DOT_RUN_RE.sub("_", name)
    return name.lstrip(".")[:_MAX_FILENAME_LENGTH]


def safe_join(base_dir: str | os.PathLike[str], *parts: str) -> str:
    """Join ``parts`` onto ``base_dir``, raising if the result escapes it."""
    if any("\x00" in part for part in parts):
        raise PathTraversalDetected(detail="null byte in path component")
    joined = os.path.join(os.fspath(base_dir), *parts)
    if not is_path_safe(joined, base_dir):
        raise PathTraversalDetected(detail=f"path escapes base directory: {joined}")
    return joined


def validate_file_access(path: str | os.PathLike[str], base_dir: str | os.PathLike[str]) -> bool:
    """True if ``path`` is inside ``base_dir`` and readable."""
    if not is_path_safe(path, base_dir):
        return False
    return os.access(path, os.R_OK)


def get_safe_storage_path(
    filename: str,
    subdir: str | None = None,
    *,
    storage_root: str | os.PathLike[str] = "storage",
) -> str:
    """Build an upload path under ``storage_root`` from untrusted name parts."""
    parts = []
    if subdir:
        parts.append(sanitize_filename(subdir))
    parts.append(sanitize_filename(filename))
    if not all(parts):
        raise PathTraversalDetected(detail="filename is empty after sanitization")
    return safe_join(os.path.abspath(storage_root), *parts)
