from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, Optional

from ..models.results import RiskAssessment, RiskLevel
from ..signatures.file_rules import DOCUMENT_SCORE_CAP
from ..signatures.url_rules import URL_SCORE_CAP, URL_SCORING_RULES

# Lowest document score that maps onto each level.
DOCUMENT_LEVEL_FLOORS = {
    RiskLevel.critical: 15,
    RiskLevel.high: 10,
    RiskLevel.medium: 5,
    RiskLevel.low: 0,
}


@dataclass(frozen=True)
class UrlSignals:
    ssl: bool = True
    ip_address: bool = False
    url_shortener: bool = False
    suspicious_patterns: tuple[str, ...] = field(default_factory=tuple)
    domain_age_days: Optional[int] = None
    malware_detected: bool = False
    phishing_detected: bool = False
    redirect_count: int = 0
    response_ms: int = 0


def level_for_url_score(score: int) -> RiskLevel:
    if score >= 7:
        return RiskLevel.high
    if score >= 3:
        return RiskLevel.medium
    return RiskLevel.low


def level_for_document_score(score: int) -> RiskLevel:
    for level, floor in DOCUMENT_LEVEL_FLOORS.items():
        if score >= floor:
            return level
    return RiskLevel.low


def assess_url_risk(signals: UrlSignals) -> RiskAssessment:
    score = 0
    factors: list[str] = []
    for rule in URL_SCORING_RULES:
        points = int(rule.points(signals))
        if points > 0:
            score += points
            factors.append(f"{rule.label} (+{points})")
    score = min(score, URL_SCORE_CAP)
    return RiskAssessment(score=score, level=level_for_url_score(score), contributing_factors=factors)


def assess_document_risk(weights: Iterable[int], factors: Iterable[str], floor: int = 0) -> RiskAssessment:
    """Sum finding weights, raise to ``floor`` and clamp to the document ceiling."""
    score = max(sum(max(w, 0) for w in weights), floor, 0)
    score = min(score, DOCUMENT_SCORE_CAP)
    return RiskAssessment(score=score, level=level_for_document_score(score), contributing_factors=list(factors))
