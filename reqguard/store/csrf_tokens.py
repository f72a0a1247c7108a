"""In-process CSRF token store: one live token per session."""

from __future__ import annotations

import hmac
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

import structlog

logger = structlog.get_logger()

# Token length in bytes (32 bytes = 256 bits = 64 hex chars)
_TOKEN_BYTES = 32

DEFAULT_TTL_SECONDS = 3600


@dataclass(frozen=True)
class CSRFTokenRecord:
    token: str
    expires_at: float


class CSRFTokenStore:
    """Issue and verify per-session CSRF tokens with expiry.

    Expired records are deleted lazily when a verification attempt finds
    them. Session ids come from the external session mechanism.
    """

    def __init__(
        self,
        *,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._records: dict[str, CSRFTokenRecord] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._records)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._records

    def issue(self, session_id: str) -> str:
        """Generate a fresh token for ``session_id``, replacing any previous one."""
        if not session_id:
            raise ValueError("session_id is required to issue a CSRF token")
        token = secrets.token_hex(_TOKEN_BYTES)
        record = CSRFTokenRecord(token=token, expires_at=self._clock() + self.ttl_seconds)
        with self._lock:
            self._records[session_id] = record
        return token

    def verify(self, session_id: str, token: str) -> bool:
        """Constant-time check of ``token`` against the live token for ``session_id``."""
        if not session_id or not token or not isinstance(token, str):
            return False
        now = self._clock()
        with self._lock:
            record = self._records.get(session_id)
            if record is None:
                return False
            if now >= record.expires_at:
                del self._records[session_id]
                logger.debug("csrf_token_expired")
                return False
        return hmac.compare_digest(record.token.encode(), token.encode())

    def revoke(self, session_id: str) -> bool:
        """Drop the token for a session that has ended."""
        with self._lock:
            return self._records.pop(session_id, None) is not None
