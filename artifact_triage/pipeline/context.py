from __future__ import annotations

from dataclasses import dataclass

from ..models.config import ScanConfig
from ..modules.file_scanner import ScanSession
from ..utils.cache import CacheBase, build_cache
from ..utils.http import HttpClient


@dataclass
class RequestContext:
    config: ScanConfig
    http_client: HttpClient
    cache: CacheBase | None

    @classmethod
    def build(cls, config: ScanConfig) -> "RequestContext":
        http = HttpClient(
            timeout_seconds=config.timeout_seconds,
            retries=config.retries,
            user_agent=config.user_agent,
        )
        cache = build_cache(config.cache.value, config.cache_dir, config.cache_ttl_seconds)
        return cls(config=config, http_client=http, cache=cache)

    def new_session(self) -> ScanSession:
        return ScanSession(self.config)

    async def close(self) -> None:
        await self.http_client.close()
