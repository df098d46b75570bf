from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urljoin

import tldextract

from ..signatures.url_rules import (
    ESTABLISHED_DOMAIN_AGE_DAYS,
    FREE_TLD_DOMAIN_AGE_DAYS,
    FREE_TLDS,
    KNOWN_OLD_DOMAINS,
    NUMERIC_DOMAIN_AGE_DAYS,
    SUSPICIOUS_URL_PATTERNS,
    URL_SHORTENERS,
)
from ..utils.http import HttpClient
from ..utils.normalize import host_of, is_ip_literal, normalize_domain

logger = logging.getLogger(__name__)

RDAP_ENDPOINT = "https://rdap.org/domain/"
DIGIT_RUN_RE = re.compile(r"[0-9]{5,}")
# Bundled public suffix snapshot; no list download at runtime.
_SUFFIXES = tldextract.TLDExtract(suffix_list_urls=(), cache_dir=None)


def _matches_domain(host: str, domains: frozenset[str]) -> bool:
    host = normalize_domain(host)
    return any(host == d or host.endswith("." + d) for d in domains)


def is_shortener(host: str) -> bool:
    return _matches_domain(host, URL_SHORTENERS)


def find_suspicious_patterns(url: str, page_title: Optional[str] = None) -> list[str]:
    text = url if not page_title else f"{url} {page_title}"
    text = text.lower()
    return [p.name for p in SUSPICIOUS_URL_PATTERNS if p.pattern.search(text)]


async def check_ssl(url: str, http: HttpClient) -> bool:
    if not url.lower().startswith("https://"):
        return False
    try:
        resp = await http.head(url)
    except Exception as exc:
        logger.debug("ssl probe failed", extra={"url": url, "error": str(exc)})
        return False
    return resp.status_code < 500


def estimate_domain_age(host: str) -> Optional[int]:
    """Rough age guess from the host name alone; ``None`` when nothing is known."""
    host = normalize_domain(host)
    if not host or is_ip_literal(host):
        return None
    if _matches_domain(host, KNOWN_OLD_DOMAINS):
        return ESTABLISHED_DOMAIN_AGE_DAYS
    if host.endswith(FREE_TLDS):
        return FREE_TLD_DOMAIN_AGE_DAYS
    if DIGIT_RUN_RE.search(host):
        return NUMERIC_DOMAIN_AGE_DAYS
    return None


def _registrable_domain(host: str) -> str:
    parts = _SUFFIXES(normalize_domain(host))
    if not parts.domain or not parts.suffix:
        return ""
    return f"{parts.domain}.{parts.suffix}"


def _parse_registration_date(payload: dict) -> Optional[datetime]:
    for event in payload.get("events", []) or []:
        if event.get("eventAction") != "registration":
            continue
        raw = event.get("eventDate")
        if not raw:
            continue
        try:
            parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
        except ValueError:
            return None
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    return None


async def lookup_rdap_age(host: str, http: HttpClient, now: Optional[datetime] = None) -> Optional[int]:
    domain = _registrable_domain(host)
    if not domain or is_ip_literal(host):
        return None
    try:
        resp = await http.get(f"{RDAP_ENDPOINT}{domain}", headers={"Accept": "application/rdap+json"})
        if resp.status_code != 200:
            return None
        registered = _parse_registration_date(resp.json())
    except Exception as exc:
        logger.debug("rdap lookup failed", extra={"domain": domain, "error": str(exc)})
        return None
    if registered is None:
        return None
    now = now or datetime.now(timezone.utc)
    return max((now - registered).days, 0)


async def domain_age(url: str, http: HttpClient, enable_rdap: bool = False) -> Optional[int]:
    host = host_of(url)
    if enable_rdap:
        age = await lookup_rdap_age(host, http)
        if age is not None:
            return age
    return estimate_domain_age(host)


async def resolve_short_url(url: str, http: HttpClient) -> Optional[str]:
    if not is_shortener(host_of(url)):
        return None
    try:
        resp = await http.head(url)
    except Exception as exc:
        logger.debug("shortener probe failed", extra={"url": url, "error": str(exc)})
        return None
    location = resp.headers.get("location")
    if 300 <= resp.status_code < 400 and location:
        return urljoin(url, location)
    return None
