from __future__ import annotations

import base64
import logging
from dataclasses import dataclass
from typing import Optional

from ..utils.http import HttpClient

logger = logging.getLogger(__name__)

VIRUSTOTAL_URL = "https://www.virustotal.com/api/v3/urls/"
SAFE_BROWSING_URL = "https://safebrowsing.googleapis.com/v4/threatMatches:find"
SAFE_BROWSING_THREAT_TYPES = ["MALWARE", "SOCIAL_ENGINEERING", "UNWANTED_SOFTWARE"]
PHISHING_SUSPICIOUS_THRESHOLD = 2


@dataclass(frozen=True)
class IntelVerdict:
    malware: bool = False
    phishing: bool = False


def virustotal_url_id(url: str) -> str:
    return base64.urlsafe_b64encode(url.encode("utf-8")).decode("ascii").rstrip("=")


async def check_virustotal(url: str, api_key: Optional[str], http: HttpClient) -> IntelVerdict:
    if not api_key:
        return IntelVerdict()
    try:
        resp = await http.get(f"{VIRUSTOTAL_URL}{virustotal_url_id(url)}", headers={"x-apikey": api_key})
        if resp.status_code != 200:
            logger.debug("virustotal non-200", extra={"status": resp.status_code})
            return IntelVerdict()
        stats = resp.json().get("data", {}).get("attributes", {}).get("last_analysis_stats", {}) or {}
        return IntelVerdict(
            malware=int(stats.get("malicious", 0) or 0) > 0,
            phishing=int(stats.get("suspicious", 0) or 0) > PHISHING_SUSPICIOUS_THRESHOLD,
        )
    except Exception as exc:
        logger.warning("virustotal lookup failed", extra={"error": str(exc)})
        return IntelVerdict()


async def check_safe_browsing(url: str, api_key: Optional[str], http: HttpClient) -> bool:
    if not api_key:
        return False
    body = {
        "client": {"clientId": "artifact-triage", "clientVersion": "0.1"},
        "threatInfo": {
            "threatTypes": SAFE_BROWSING_THREAT_TYPES,
            "platformTypes": ["ANY_PLATFORM"],
            "threatEntryTypes": ["URL"],
            "threatEntries": [{"url": url}],
        },
    }
    try:
        resp = await http.post(f"{SAFE_BROWSING_URL}?key={api_key}", json=body)
        if resp.status_code != 200:
            logger.debug("safe browsing non-200", extra={"status": resp.status_code})
            return False
        return len(resp.json().get("matches", []) or []) > 0
    except Exception as exc:
        logger.warning("safe browsing lookup failed", extra={"error": str(exc)})
        return False
