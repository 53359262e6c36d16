"""Base-URL normalisation and SSRF guard for configurable tool endpoints.

Security requirements:
- Allowed URL schemes: https:// and http:// only.
- Hosts that are loopback, private, link-local, reserved or ``*.local``
  are rejected before any connection is made.
- Query strings and fragments are dropped from base URLs.
"""

from __future__ import annotations

import ipaddress
import re
import urllib.parse

_ALLOWED_SCHEMES = {"https", "http"}


class SsrfError(ValueError):
    """Raised when a URL points at a private or reserved address."""


def is_private_host(hostname: str) -> bool:
    """True for localhost, ``*.local`` and private/reserved IP literals."""
    host = hostname.lower().strip("[]")
    if host in ("localhost", "") or host.endswith((".local", ".localhost", ".internal")):
        return True
    try:
        ip = ipaddress.ip_address(host)
    except ValueError:
        return False
    return (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_reserved
        or ip.is_multicast
        or ip.is_unspecified
    )


def normalize_base_url(raw: str, strip_suffix: str | None = None) -> str:
    """Drop query/fragment, an optional trailing path *strip_suffix*, and trailing slashes.

    Example:
        normalize_base_url("https://s.example/search/?q=x", "/search") -> "https://s.example"
    """
    value = (raw or "").strip()
    if not value:
        return ""
    parsed = urllib.parse.urlparse(value)
    path = parsed.path
    if strip_suffix:
        path = re.sub(re.escape(strip_suffix.rstrip("/")) + r"/?$", "", path)
    return urllib.parse.urlunparse(
        (parsed.scheme, parsed.netloc, path.rstrip("/"), "", "", "")
    )


def validate_public_url(url: str) -> str:
    """Return *url* unchanged if it is an http(s) URL on a public host.

    Raises:
        ValueError: Bad scheme or no hostname.
        SsrfError: Host is private or reserved.
    """
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in _ALLOWED_SCHEMES:
        raise ValueError(
            f"Unsupported URL scheme '{parsed.scheme}'. Only https:// and http:// are allowed."
        )
    if not parsed.hostname:
        raise ValueError(f"URL has no hostname: {url}")
    if is_private_host(parsed.hostname):
        raise SsrfError(
            f"URL points at a private address ({parsed.hostname}). "
            "Access to internal network addresses is not allowed."
        )
    return url
