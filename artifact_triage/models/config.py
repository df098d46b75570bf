from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class CacheMode(str, Enum):
    sqlite = "sqlite"
    files = "files"
    none = "none"


DEFAULT_USER_AGENT = "Mozilla/5.0 (compatible; artifact-triage/0.1; +https://example.invalid/bot)"


class ScanConfig(BaseModel):
    timeout_seconds: float = 10.0
    probe_timeout_seconds: float = 15.0
    retries: int = 0
    user_agent: str = DEFAULT_USER_AGENT
    max_fetches: int = 5
    max_title_bytes: int = 262_144
    max_archive_depth: int = 3
    max_archive_entries: int = 500
    max_entry_bytes: int = 50 * 1024 * 1024
    max_compression_ratio: int = 100
    bomb_min_entry_bytes: int = 1_000_000
    archive_concurrency: int = Field(default=4, ge=1)
    marker_scan_bytes: int = 65_536
    max_workbook_cells: int = 200_000
    legacy_filename_encodings: list[str] = Field(default_factory=lambda: ["cp949", "euc-kr", "shift_jis", "gb18030"])
    cache: CacheMode = CacheMode.none
    cache_dir: str = "./.artifact-triage"
    cache_ttl_seconds: Optional[float] = Field(default=86_400.0, gt=0)
    virustotal_api_key: Optional[str] = None
    safe_browsing_api_key: Optional[str] = None
    enable_rdap: bool = False

    def redacted(self) -> dict:
        data = self.model_dump(mode="json")
        for secret in ("virustotal_api_key", "safe_browsing_api_key"):
            if data.get(secret):
                data[secret] = "***"
        return data
