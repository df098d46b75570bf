from __future__ import annotations

import html
import logging
import re
import time
from typing import Optional
from urllib.parse import urljoin

from ..models.results import ResolvedURL
from ..utils.http import HttpClient
from ..utils.normalize import sanitize_headers

logger = logging.getLogger(__name__)

TITLE_RE = re.compile(r"<title[^>]*>(.*?)</title>", re.IGNORECASE | re.DOTALL)
MAX_TITLE_CHARS = 300


def extract_title(body: bytes) -> Optional[str]:
    text = body.decode("utf-8", errors="replace")
    match = TITLE_RE.search(text)
    if not match:
        return None
    title = " ".join(html.unescape(match.group(1)).split())
    return title[:MAX_TITLE_CHARS] or None


async def _fetch_title(url: str, http: HttpClient, max_bytes: int) -> Optional[str]:
    try:
        resp = await http.get(url, max_bytes=max_bytes)
    except Exception as exc:
        logger.debug("title fetch failed", extra={"url": url, "error": str(exc)})
        return None
    return extract_title(resp.content)


async def resolve(url: str, http: HttpClient, max_fetches: int = 5, max_title_bytes: int = 262_144) -> ResolvedURL:
    """Walk the redirect chain with HEAD requests, then grab the page title."""
    start = time.monotonic()
    chain: list[str] = []
    current = url
    status_code: Optional[int] = None
    headers: dict[str, str] = {}

    for attempt in range(max_fetches):
        try:
            resp = await http.head(current)
        except Exception as exc:
            logger.debug("resolve stopped", extra={"url": current, "attempt": attempt, "error": str(exc)})
            # status and headers describe final_url, which never answered.
            status_code = None
            headers = {}
            break
        status_code = resp.status_code
        headers = sanitize_headers(dict(resp.headers))
        location = resp.headers.get("location")
        if 300 <= resp.status_code < 400 and location and attempt + 1 < max_fetches:
            chain.append(current)
            current = urljoin(current, location)
            continue
        break

    content_type = headers.get("content-type")
    page_title = None
    if status_code is not None and content_type and "text/html" in content_type.lower():
        page_title = await _fetch_title(current, http, max_title_bytes)

    return ResolvedURL(
        original=url,
        final_url=current,
        redirect_chain=chain,
        status_code=status_code,
        response_headers=headers,
        content_type=content_type,
        page_title=page_title,
        elapsed_ms=int((time.monotonic() - start) * 1000),
    )
