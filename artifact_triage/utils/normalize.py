from __future__ import annotations

import ipaddress
import re
from urllib.parse import urlsplit, urlunsplit

DOMAIN_RE = re.compile(r"^(?!-)[A-Za-z0-9.-]{1,253}(?<!-)$")
SCHEME_RE = re.compile(r"^[a-zA-Z][a-zA-Z0-9+.-]*://")
DEFAULT_SCHEME = "https"


class InvalidInputError(ValueError):
    pass


def normalize_url(raw: str) -> str:
    """Prefix a default scheme when missing and validate the result."""
    value = (raw or "").strip()
    if not value:
        raise InvalidInputError("URL is required")
    if any(ch.isspace() for ch in value):
        raise InvalidInputError(f"URL contains whitespace: {value!r}")
    if not SCHEME_RE.match(value):
        value = f"{DEFAULT_SCHEME}://{value}"

    try:
        parts = urlsplit(value)
        parts.port
    except ValueError as exc:
        raise InvalidInputError(f"malformed URL: {exc}") from exc

    scheme = parts.scheme.lower()
    if scheme not in ("http", "https"):
        raise InvalidInputError(f"unsupported URL scheme: {scheme}")
    host = parts.hostname
    if not host:
        raise InvalidInputError("URL has no host")
    if not is_ip_literal(host) and (not DOMAIN_RE.match(host) or ".." in host):
        raise InvalidInputError(f"invalid host: {host}")

    userinfo, _, hostport = parts.netloc.rpartition("@")
    netloc = f"{userinfo}@{hostport.lower()}" if userinfo else hostport.lower()
    path = parts.path or "/"
    return urlunsplit((scheme, netloc, path, parts.query, parts.fragment))


def host_of(url: str) -> str:
    try:
        return (urlsplit(url).hostname or "").lower()
    except ValueError:
        return ""


def normalize_domain(domain: str) -> str:
    value = domain.strip().lower()
    value = value.rstrip(".")
    if value.startswith("www."):
        value = value[4:]
    return value


def is_ip_literal(host: str) -> bool:
    try:
        ipaddress.ip_address(host.strip("[]"))
    except ValueError:
        return False
    return True


def sanitize_headers(headers: dict) -> dict:
    sanitized = {}
    for k, v in headers.items():
        key = k.lower()
        if key in {"authorization", "cookie", "set-cookie"}:
            sanitized[key] = "[redacted]"
        else:
            sanitized[key] = v
    return sanitized
