"""URL validation and canonicalization applied before any evidence request."""

from __future__ import annotations

import fnmatch
import ipaddress
from typing import Iterable, Optional, Tuple
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse


_LOCAL_SUFFIXES = (".localhost", ".local", ".internal", ".localdomain")
_LOCAL_NAMES = {"localhost", "localhost.localdomain", "ip6-localhost", "ip6-loopback"}
_TRACKING_PREFIXES = ("utm_",)
_TRACKING_KEYS = {"fbclid", "gclid", "mc_cid", "mc_eid"}


def _is_local_host(host: str) -> bool:
    value = str(host or "").strip().lower().rstrip(".")
    if not value:
        return False
    if value in _LOCAL_NAMES:
        return True
    return value.endswith(_LOCAL_SUFFIXES)


def _is_private_address(host: str) -> bool:
    value = str(host or "").strip().strip("[]")
    try:
        address = ipaddress.ip_address(value)
    except ValueError:
        return False
    return (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_multicast
        or address.is_unspecified
    )


def _host_allowed(host: str, allowed_hosts: Iterable[str]) -> bool:
    patterns = [str(p or "").strip().lower() for p in allowed_hosts if str(p or "").strip()]
    if not patterns:
        return True
    return any(fnmatch.fnmatch(host, pattern) for pattern in patterns)


def check_url(url: str, *, allowed_hosts: Iterable[str] = ()) -> Tuple[bool, str]:
    """Return ``(ok, reason)``; reason is empty when the URL may be fetched."""
    value = str(url or "").strip()
    if not value:
        return False, "empty url"
    if any(ch.isspace() for ch in value):
        return False, "url contains whitespace"
    if len(value) > 2048:
        return False, "url too long"
    try:
        parsed = urlparse(value)
        port = parsed.port
    except ValueError:
        return False, "malformed url"
    scheme = str(parsed.scheme or "").lower()
    if scheme not in {"http", "https"}:
        return False, f"unsupported scheme: {scheme or 'none'}"
    host = str(parsed.hostname or "").lower()
    if not host:
        return False, "missing host"
    if parsed.username or parsed.password:
        return False, "credentials in url"
    if _is_local_host(host):
        return False, f"local host: {host}"
    if _is_private_address(host):
        return False, f"private address: {host}"
    if "." not in host and ":" not in host:
        return False, f"unqualified host: {host}"
    if port is not None and not (0 < port < 65536):
        return False, "invalid port"
    if not _host_allowed(host, allowed_hosts):
        return False, f"host not allowed: {host}"
    return True, ""


def canonicalize_url(url: str) -> str:
    """Lower-case scheme/host, drop fragment and tracking params."""
    value = str(url or "").strip()
    try:
        parsed = urlparse(value)
    except ValueError:
        return value
    if str(parsed.scheme or "").lower() not in {"http", "https"}:
        return value

    netloc = str(parsed.netloc or "").lower()
    query_pairs = [
        (key, val)
        for key, val in parse_qsl(str(parsed.query or ""), keep_blank_values=True)
        if not key.lower().startswith(_TRACKING_PREFIXES) and key.lower() not in _TRACKING_KEYS
    ]
    path = parsed.path or "/"
    return urlunparse((parsed.scheme.lower(), netloc, path, parsed.params, urlencode(query_pairs), ""))


def hostname(url: str) -> Optional[str]:
    try:
        host = urlparse(str(url or "")).hostname
    except ValueError:
        return None
    return host.lower() if host else None
