from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Callable


@dataclass(frozen=True)
class UrlPattern:
    name: str
    pattern: re.Pattern


@dataclass(frozen=True)
class UrlScoringRule:
    id: str
    label: str
    points: Callable[[Any], int]


SUSPICIOUS_URL_PATTERNS: tuple[UrlPattern, ...] = (
    UrlPattern("URL shortener service", re.compile(r"bit\.ly|tinyurl|goo\.gl|t\.co|short\.link|ow\.ly|is\.gd")),
    UrlPattern("Direct IP address", re.compile(r"[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}\.[0-9]{1,3}")),
    UrlPattern("Long random-looking domain", re.compile(r"[a-z0-9]{15,}\.com")),
    UrlPattern("Excessive digits", re.compile(r"[0-9]{5,}")),
    UrlPattern("Brand impersonation keyword", re.compile(r"secure-|bank-|paypal-|amazon-|apple-|microsoft-")),
    UrlPattern("Free domain TLD", re.compile(r"\.(tk|ml|ga|cf|pw)(?=[/:?#]|$)")),
    UrlPattern("Phishing-related path keyword", re.compile(r"login|signin|verify|update|suspended|limited")),
    UrlPattern("Auto-generated domain pattern", re.compile(r"[a-z]+-[0-9]+\.")),
    UrlPattern("Dashed IP address variant", re.compile(r"\d{1,3}-\d{1,3}-\d{1,3}-\d{1,3}")),
)

URL_SHORTENERS = frozenset(
    {
        "bit.ly",
        "tinyurl.com",
        "goo.gl",
        "t.co",
        "short.link",
        "ow.ly",
        "is.gd",
        "buff.ly",
        "rebrand.ly",
        "tiny.cc",
        "tr.im",
        "snurl.com",
        "x.co",
        "smarturl.it",
        "cutt.ly",
    }
)

KNOWN_OLD_DOMAINS = frozenset(
    {
        "google.com",
        "naver.com",
        "youtube.com",
        "facebook.com",
        "twitter.com",
        "amazon.com",
        "microsoft.com",
        "apple.com",
        "wikipedia.org",
        "github.com",
    }
)

FREE_TLDS = (".tk", ".ml", ".ga", ".cf", ".pw")

# Domain-age estimates, in days, used when no registry data is available.
ESTABLISHED_DOMAIN_AGE_DAYS = 5000
FREE_TLD_DOMAIN_AGE_DAYS = 14
NUMERIC_DOMAIN_AGE_DAYS = 45


def _domain_age_points(signals: Any) -> int:
    age = signals.domain_age_days
    if age is None:
        return 0
    if age < 30:
        return 3
    if age < 90:
        return 1
    return 0


URL_SCORING_RULES: tuple[UrlScoringRule, ...] = (
    UrlScoringRule("url.no_ssl", "Site does not use HTTPS", lambda s: 3 if not s.ssl else 0),
    UrlScoringRule("url.ip_literal", "Host is a raw IP address", lambda s: 4 if s.ip_address else 0),
    UrlScoringRule("url.shortener", "Host is a URL shortener", lambda s: 2 if s.url_shortener else 0),
    UrlScoringRule(
        "url.suspicious_patterns",
        "Suspicious URL patterns matched",
        lambda s: len(s.suspicious_patterns),
    ),
    UrlScoringRule("url.young_domain", "Recently registered domain", _domain_age_points),
    UrlScoringRule("url.malware", "Malware verdict from threat intelligence", lambda s: 5 if s.malware_detected else 0),
    UrlScoringRule("url.phishing", "Phishing verdict from threat intelligence", lambda s: 5 if s.phishing_detected else 0),
    UrlScoringRule("url.redirects", "Excessive redirects", lambda s: 2 if s.redirect_count > 2 else 0),
    UrlScoringRule("url.slow_response", "Very slow response", lambda s: 1 if s.response_ms > 5000 else 0),
)

URL_SCORE_CAP = 10
