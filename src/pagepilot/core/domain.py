"""Base-domain classification for hostnames and URLs.

The multi-part suffix list is a short curated set of second-level ccTLDs,
not the public suffix list.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit

__all__ = [
    "MULTI_PART_SUFFIXES",
    "base_domain",
    "get_base_domain",
    "is_ipv4",
    "is_ipv6",
    "parse_base_domain_from_url",
]

MULTI_PART_SUFFIXES: frozenset[str] = frozenset(
    {
        "co.uk", "org.uk", "gov.uk", "ac.uk", "net.uk", "me.uk",
        "com.au", "net.au", "org.au", "edu.au",
        "co.jp", "ne.jp", "or.jp", "ac.jp",
        "com.br", "net.br", "org.br", "gov.br",
        "com.ar", "net.ar", "org.ar",
    }
)
_IPV4_RE = re.compile(r"^(\d{1,3})\.(\d{1,3})\.(\d{1,3})\.(\d{1,3})$")
_SCHEME_PREFIXES: tuple[tuple[str, str], ...] = (
    ("chrome://", "chrome"),
    ("edge://", "edge"),
    ("about:", "about"),
)


def is_ipv4(host: str | None) -> bool:
    match = _IPV4_RE.match(str(host or ""))
    if match is None:
        return False
    return all(0 <= int(octet) <= 255 for octet in match.groups())


def is_ipv6(host: str | None) -> bool:
    return isinstance(host, str) and ":" in host


def get_base_domain(hostname: str | None) -> str:
    """Return the registrable domain for ``hostname``."""

    host = str(hostname or "").lower()
    if not host or host == "localhost":
        return host
    if is_ipv4(host) or is_ipv6(host):
        return host

    parts = [part for part in host.split(".") if part]
    if len(parts) <= 2:
        return ".".join(parts)
    last_two = ".".join(parts[-2:])
    last_three = ".".join(parts[-3:])
    if last_two in MULTI_PART_SUFFIXES:
        return ".".join(parts[-3:])
    if last_three in MULTI_PART_SUFFIXES:
        return ".".join(parts[-4:])
    return last_two


def parse_base_domain_from_url(url: str | None) -> str | None:
    """Return the base domain of ``url``, its scheme for host-less URLs, or ``None``."""

    if not isinstance(url, str) or not url:
        return None
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError:
        return _scheme_fallback(url)
    if not parts.scheme:
        return _scheme_fallback(url)
    if hostname:
        return get_base_domain(hostname)
    return parts.scheme or None


def base_domain(hostname_or_url: str | None) -> str | None:
    """Classify a hostname or a full URL into its conversation partition key."""

    value = str(hostname_or_url or "").strip()
    if not value:
        return None
    if _looks_like_url(value):
        return parse_base_domain_from_url(value)
    return get_base_domain(value) or None


def _looks_like_url(value: str) -> bool:
    if "://" in value:
        return True
    scheme, sep, _ = value.partition(":")
    return bool(sep) and scheme.lower() in {"about", "view-source", "data", "file", "mailto"}


def _scheme_fallback(url: str) -> str | None:
    for prefix, name in _SCHEME_PREFIXES:
        if url.startswith(prefix):
            return name
    return None
