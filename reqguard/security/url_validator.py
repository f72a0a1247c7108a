"""Outbound URL validation to prevent SSRF attacks.

Allowlist based: used before any request the server itself makes. Inbound
user-supplied links go through ``input_sanitizer.sanitize_url`` instead.

Hostname checks are textual unless ``resolve_hostnames`` is enabled. A
textual check cannot see DNS rebinding (an allowlisted name that resolves to
a private address at fetch time).
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from urllib.parse import SplitResult, urlsplit

import structlog

from reqguard.errors import SSRFBlocked
from reqguard.security.ip_blocklist import is_blocked_host, normalize_hostname, resolves_to_blocked

logger = structlog.get_logger()

_ALLOWED_SCHEMES = {"http", "https"}
_DOMAIN_RE = re.compile(r"^[a-z0-9-]+(\.[a-z0-9-]+)*$")


def _parse(url: str) -> SplitResult | None:
    """Parse and structurally check a URL, returning None when unusable."""
    if not isinstance(url, str) or not url:
        return None
    # Null bytes and backslashes are read differently by different URL parsers.
    if "\x00" in url or "%00" in url.lower() or "\\" in url:
        return None
    try:
        parsed = urlsplit(url)
        _ = parsed.port
    except ValueError:
        return None
    if not parsed.hostname:
        return None
    return parsed


class URLValidator:
    """Validate URLs against a domain allowlist and the private-address blocklist."""

    def __init__(self, allowed_domains: Iterable[str] = (), *, resolve_hostnames: bool = False) -> None:
        self._allowed: set[str] = set()
        self.resolve_hostnames = resolve_hostnames
        for domain in allowed_domains:
            self.add_allowed_domain(domain)

    @property
    def allowed_domains(self) -> frozenset[str]:
        return frozenset(self._allowed)

    def add_allowed_domain(self, domain: str) -> None:
        """Add a domain suffix to the allowlist (administrative operation)."""
        normalized = domain.strip().lower().strip(".")
        if not _DOMAIN_RE.match(normalized):
            raise ValueError(f"Invalid domain for allowlist: {domain!r}")
        if normalized not in self._allowed:
            self._allowed.add(normalized)
            logger.info("allowed_domain_added", domain=normalized)

    def _is_allowlisted(self, hostname: str) -> bool:
        return any(
            hostname == domain or hostname.endswith(f".{domain}")
            for domain in self._allowed
        )

    def check(self, url: str) -> str | None:
        """Return a rejection reason for ``url``, or None if it is safe."""
        parsed = _parse(url)
        if parsed is None:
            return "unparseable URL"
        if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
            return f"scheme '{parsed.scheme}' not allowed"
        if "@" in parsed.netloc:
            return "userinfo in URL authority"

        hostname = normalize_hostname(parsed.hostname)
        if not self._is_allowlisted(hostname):
            return f"host '{hostname}' not in allowlist"
        # Private targets are rejected even when allowlisted.
        if is_blocked_host(hostname):
            return f"host '{hostname}' is a private or loopback address"
        if self.resolve_hostnames and resolves_to_blocked(hostname):
            return f"host '{hostname}' resolves to a blocked address"
        return None

    def is_url_safe(self, url: str) -> bool:
        return self.check(url) is None

    def validate_url(self, url: str) -> str:
        """Return the normalized URL, raising ``SSRFBlocked`` if it is unsafe."""
        reason = self.check(url)
        if reason is not None:
            logger.warning("ssrf_blocked", reason=reason, security_event=True)
            raise SSRFBlocked(detail=reason)
        return urlsplit(url).geturl()

    def is_internal_url(self, url: str) -> bool:
        """True if ``url`` targets a private/loopback host. Unparseable URLs count as internal."""
        parsed = _parse(url)
        if parsed is None:
            return True
        return is_blocked_host(parsed.hostname)
