"""
URL normalization for stable page identity keys.

Two URLs that differ only in tracking parameters, parameter order or fragment
normalize to the same string:
- Query parameters in the ignore set (case-insensitive) are dropped
- Parameters with an empty value are dropped
- Remaining parameters are sorted by key, then value, and re-encoded
- The fragment is stripped unless ``strip_hash=False``
- ``.`` and ``..`` path segments are resolved and the host is IDNA-encoded

Normalization fails open: input that cannot be parsed as an absolute URL is
returned unchanged, never raised.
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Tuple
from urllib.parse import parse_qsl, quote, urljoin, urlsplit

import structlog

from pageidentity.protocols import DEFAULT_QUERY_PARAM_IGNORES

logger = structlog.get_logger(__name__)

_DEFAULT_PORTS = {"http": 80, "https": 443, "ws": 80, "wss": 443, "ftp": 21}

# Characters left bare by encodeURIComponent, so browser and server agree.
_COMPONENT_SAFE = "-_.!~*'()"
_PATH_SAFE = "/%:@!$&'()*+,;=-._~"


class _MalformedUrl(ValueError):
    pass


def normalize_url(
    raw_url: str,
    *,
    ignore_query_params: Optional[Iterable[str]] = None,
    strip_hash: bool = True,
    base_url: Optional[str] = None,
) -> str:
    """
    Canonicalize a URL for stable comparison.

    Args:
        raw_url: URL to normalize, absolute or relative to ``base_url``
        ignore_query_params: Parameter names to drop, defaults to common trackers
        strip_hash: Drop the fragment
        base_url: Base for resolving relative input

    Returns:
        ``origin + pathname + (?query)? + (#fragment)?``, or ``raw_url``
        unchanged when it cannot be parsed
    """
    try:
        origin, path, query, fragment = _split(raw_url, base_url)
    except _MalformedUrl as e:
        logger.debug("URL normalization skipped", url=raw_url, error=str(e))
        return raw_url

    ignores = DEFAULT_QUERY_PARAM_IGNORES if ignore_query_params is None else ignore_query_params
    ignore_set = {param.lower() for param in ignores}

    retained: List[Tuple[str, str]] = [
        (key, value)
        for key, value in parse_qsl(query, keep_blank_values=True)
        if key.lower() not in ignore_set and value != ""
    ]
    retained.sort()

    search = "&".join(
        f"{quote(key, safe=_COMPONENT_SAFE)}={quote(value, safe=_COMPONENT_SAFE)}" for key, value in retained
    )

    normalized = f"{origin}{path}"
    if search:
        normalized += f"?{search}"
    if not strip_hash and fragment:
        normalized += f"#{fragment}"
    return normalized


def _split(raw_url: str, base_url: Optional[str]) -> Tuple[str, str, str, str]:
    """Parse into (origin, pathname, raw query, fragment) or raise _MalformedUrl."""
    if not isinstance(raw_url, str):
        raise _MalformedUrl("URL must be a string")

    candidate = raw_url.strip()
    if base_url:
        candidate = urljoin(base_url.strip(), candidate)

    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as e:
        raise _MalformedUrl(str(e)) from e

    hostname = parts.hostname
    if not parts.scheme or not parts.netloc or not hostname:
        raise _MalformedUrl("URL is not absolute")

    scheme = parts.scheme.lower()
    host = f"[{hostname}]" if ":" in hostname else _ascii_host(hostname)
    if port is not None and port != _DEFAULT_PORTS.get(scheme):
        host = f"{host}:{port}"

    path = quote(_remove_dot_segments(parts.path), safe=_PATH_SAFE) or "/"
    return f"{scheme}://{host}", path, parts.query, parts.fragment


def _ascii_host(hostname: str) -> str:
    """Lowercased host in its IDNA (punycode) form, as a browser origin shows it."""
    host = hostname.lower()
    try:
        return host.encode("idna").decode("ascii")
    except UnicodeError:
        return host


def _remove_dot_segments(path: str) -> str:
    """Resolve ``.`` and ``..`` segments (RFC 3986 section 5.2.4), percent-encoded dots included."""
    segments = path.split("/")
    resolved: List[str] = []
    for segment in segments:
        marker = segment.lower().replace("%2e", ".")
        if marker == "..":
            if len(resolved) > 1:
                resolved.pop()
        elif marker != ".":
            resolved.append(segment)

    # A trailing dot segment names a directory
    if len(segments) > 1 and segments[-1].lower().replace("%2e", ".") in (".", ".."):
        resolved.append("")
    return "/".join(resolved)
