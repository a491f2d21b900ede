"""Syntactic validation and canonicalization of user-supplied addresses."""

from __future__ import annotations

import ipaddress
import re
from urllib.parse import SplitResult, urlsplit, urlunsplit

from websnap.errors import InvalidInputError

__all__ = ["normalize_url", "hostname_of"]

_DISALLOWED_CHARS = re.compile(r'[<>"{}|\\^`\[\]]')
_HTTP_SCHEME = re.compile(r"^https?://", re.IGNORECASE)
_ANY_SCHEME = re.compile(r"^([^/?#]*)://")
_LABEL = re.compile(r"^(?!-)[a-z0-9-]{1,63}(?<!-)$")
_MIN_HOST_LENGTH = 3


def normalize_url(raw: object) -> str:
    """Return a canonical absolute http(s) URL or raise ``InvalidInputError``.

    No network access happens here. ``example.com`` becomes
    ``https://example.com/``; normalizing an already normalized URL returns it
    unchanged.
    """

    if raw is None or not isinstance(raw, str):
        raise InvalidInputError("URL must be a non-empty string")

    cleaned = _DISALLOWED_CHARS.sub("", raw).strip()
    if not cleaned:
        raise InvalidInputError("URL must be a non-empty string")

    if not _HTTP_SCHEME.match(cleaned):
        if _ANY_SCHEME.match(cleaned):
            raise InvalidInputError(f"Unsupported URL scheme in {raw!r}")
        cleaned = "https://" + cleaned

    normalized = _parse(cleaned)
    if normalized is None and cleaned.lower().startswith("https://"):
        normalized = _parse("http://" + cleaned[len("https://"):])
    if normalized is None:
        raise InvalidInputError(f"Invalid URL: {raw!r}")
    return normalized


def hostname_of(url: str) -> str:
    """Return the lower-cased hostname of an already normalized URL."""

    return (urlsplit(url).hostname or "").lower()


def _parse(candidate: str) -> str | None:
    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        return None

    if parts.scheme.lower() not in ("http", "https"):
        return None
    if parts.username is not None or parts.password is not None:
        return None
    if parts.netloc.endswith(":"):
        return None

    host = _canonical_host(parts)
    if host is None:
        return None

    netloc = host if port is None else f"{host}:{port}"
    return urlunsplit((parts.scheme.lower(), netloc, parts.path or "/", parts.query, parts.fragment))


def _canonical_host(parts: SplitResult) -> str | None:
    hostname = parts.hostname
    # Brackets are stripped before parsing, so IPv6 literals never reach here.
    if not hostname or any(ch.isspace() for ch in hostname):
        return None

    try:
        ascii_host = hostname.rstrip(".").encode("idna").decode("ascii").lower()
    except UnicodeError:
        return None

    if len(ascii_host) < _MIN_HOST_LENGTH or len(ascii_host) > 253:
        return None
    if all(label.isdigit() for label in ascii_host.split(".")):
        try:
            return str(ipaddress.IPv4Address(ascii_host))
        except ValueError:
            return None
    if not all(_LABEL.match(label) for label in ascii_host.split(".")):
        return None
    return ascii_host
