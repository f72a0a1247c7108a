"""Private, loopback and link-local address detection shared by the URL checks."""

from __future__ import annotations

import ipaddress
import re
import socket
import unicodedata

# Textual patterns matched against the lower-cased hostname. These catch
# names that never reach ipaddress parsing (localhost, partial literals).
BLOCKED_HOST_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"^localhost$"),
    re.compile(r"\.localhost$"),
    re.compile(r"^127\."),
    re.compile(r"^10\."),
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[0-1])\."),
    re.compile(r"^192\.168\."),
    re.compile(r"^169\.254\."),
    re.compile(r"^0\."),
    re.compile(r"^::1$"),
    re.compile(r"^::$"),
    re.compile(r"^fe80:"),
    re.compile(r"^f[cd][0-9a-f]{0,2}:"),
)

# Private/reserved networks checked against literal addresses
_BLOCKED_NETWORKS = [
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
    ipaddress.ip_network("127.0.0.0/8"),
    ipaddress.ip_network("169.254.0.0/16"),  # link-local, cloud metadata
    ipaddress.ip_network("0.0.0.0/8"),
    ipaddress.ip_network("::1/128"),
    ipaddress.ip_network("::/128"),
    ipaddress.ip_network("fc00::/7"),  # IPv6 unique local
    ipaddress.ip_network("fe80::/10"),  # IPv6 link-local
    ipaddress.ip_network("2002::/16"),  # 6to4, embeds IPv4
    ipaddress.ip_network("64:ff9b::/96"),  # NAT64
]

# Decimal (2130706433), hex (0x7f000001), octal (0177.0.0.1), short (127.1)
_ALT_IPV4_RE = re.compile(r"^[0-9a-fx.]+$")

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address


def normalize_hostname(hostname: str) -> str:
    """Lower-case, NFKC-normalize and strip brackets, zone ids and the trailing dot."""
    host = unicodedata.normalize("NFKC", hostname).strip().lower()
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if "%" in host:
        host = host.split("%", 1)[0]
    return host.rstrip(".")


def _normalize_ip(addr: IPAddress) -> IPAddress:
    """Map ::ffff:127.0.0.1 to 127.0.0.1 so IPv4 networks apply."""
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped:
        return addr.ipv4_mapped
    return addr


def parse_literal_address(host: str) -> IPAddress | None:
    """Parse ``host`` as an IP literal in standard or alternative notation."""
    try:
        return ipaddress.ip_address(host)
    except ValueError:
        pass
    if not _ALT_IPV4_RE.match(host):
        return None
    try:
        return ipaddress.IPv4Address(socket.inet_aton(host))
    except OSError:
        return None


def is_blocked_address(addr: IPAddress) -> bool:
    """Check if an IP address falls within any blocked network."""
    normalized = _normalize_ip(addr)
    return any(normalized in net for net in _BLOCKED_NETWORKS)


def is_blocked_host(hostname: str) -> bool:
    """Return True if the hostname textually denotes a private/loopback/link-local target."""
    host = normalize_hostname(hostname)
    if not host:
        return True
    if any(pattern.search(host) for pattern in BLOCKED_HOST_PATTERNS):
        return True
    addr = parse_literal_address(host)
    return addr is not None and is_blocked_address(addr)


def resolves_to_blocked(hostname: str) -> bool:
    """Resolve ``hostname`` and check every returned address.

    Resolution failure counts as blocked.
    """
    host = normalize_hostname(hostname)
    try:
        infos = socket.getaddrinfo(host, None, socket.AF_UNSPEC, socket.SOCK_STREAM)
    except (socket.gaierror, UnicodeError):
        return True
    for info in infos:
        addr = ipaddress.ip_address(info[4][0].split("%", 1)[0])
        if is_blocked_address(addr):
            return True
    return False
