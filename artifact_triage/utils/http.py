from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

import httpx

logger = logging.getLogger(__name__)


class ResponseTooLargeError(RuntimeError):
    pass


class HttpClient:
    def __init__(
        self,
        timeout_seconds: float = 10.0,
        retries: int = 0,
        user_agent: Optional[str] = None,
        max_response_bytes: int = 5 * 1024 * 1024,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.timeout = httpx.Timeout(timeout_seconds)
        self.retries = retries
        self.max_response_bytes = max_response_bytes
        self.follow_redirects = False
        headers = {"User-Agent": user_agent} if user_agent else None
        self._client = httpx.AsyncClient(
            timeout=self.timeout,
            follow_redirects=self.follow_redirects,
            headers=headers,
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    async def get(self, url: str, headers: Optional[dict] = None, max_bytes: Optional[int] = None) -> httpx.Response:
        return await self.request("GET", url, headers=headers, max_bytes=max_bytes)

    async def head(self, url: str, headers: Optional[dict] = None) -> httpx.Response:
        return await self.request("HEAD", url, headers=headers)

    async def post(self, url: str, json: Optional[dict] = None, headers: Optional[dict] = None) -> httpx.Response:
        return await self.request("POST", url, json=json, headers=headers)

    async def _buffer(self, resp: httpx.Response, max_bytes: Optional[int]) -> bytes:
        body = bytearray()
        async for chunk in resp.aiter_bytes():
            body.extend(chunk)
            if max_bytes is not None and len(body) >= max_bytes:
                return bytes(body[:max_bytes])
            if len(body) > self.max_response_bytes:
                raise ResponseTooLargeError(f"response from {resp.request.url} exceeds {self.max_response_bytes} bytes")
        return bytes(body)

    async def request(
        self,
        method: str,
        url: str,
        headers: Optional[dict] = None,
        json: Optional[dict] = None,
        max_bytes: Optional[int] = None,
    ) -> httpx.Response:
        """Send one request and buffer the body.

        ``max_bytes`` truncates the body silently; the client-wide
        ``max_response_bytes`` cap raises ``ResponseTooLargeError`` instead.
        """
        method = method.upper()
        failure: Optional[Exception] = None
        for attempt in range(self.retries + 1):
            started = time.monotonic()
            try:
                async with self._client.stream(method, url, headers=headers, json=json) as resp:
                    body = await self._buffer(resp, max_bytes)
                # The body is already decoded and possibly truncated.
                kept = httpx.Headers(
                    [(k, v) for k, v in resp.headers.multi_items() if k.lower() not in ("content-encoding", "content-length")]
                )
                logger.debug(
                    "http response",
                    extra={
                        "url": url,
                        "method": method,
                        "status": resp.status_code,
                        "bytes_in": len(body),
                        "duration_ms": int((time.monotonic() - started) * 1000),
                    },
                )
                return httpx.Response(resp.status_code, headers=kept, content=body, request=resp.request)
            except ResponseTooLargeError:
                raise
            except Exception as exc:  # pragma: no cover - best-effort network
                failure = exc
                logger.debug("http error", extra={"url": url, "method": method, "error": str(exc), "attempt": attempt})
                if attempt < self.retries:
                    await asyncio.sleep(0.2 * (attempt + 1))
        if failure:
            raise failure
        raise RuntimeError("http request failed")
