from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class RiskLevel(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"


class RiskAssessment(BaseModel):
    model_config = ConfigDict(frozen=True)

    score: int = Field(ge=0)
    level: RiskLevel
    contributing_factors: list[str] = Field(default_factory=list)


class ResolvedURL(BaseModel):
    model_config = ConfigDict(frozen=True)

    original: str
    final_url: str
    redirect_chain: list[str] = Field(default_factory=list)
    status_code: Optional[int] = None
    response_headers: dict[str, str] = Field(default_factory=dict)
    content_type: Optional[str] = None
    page_title: Optional[str] = None
    elapsed_ms: int = 0


class URLAnalysis(BaseModel):
    url: str
    resolved: ResolvedURL
    ssl: bool
    ip_address: bool
    url_shortener: bool
    shortened_url_resolved: Optional[str] = None
    suspicious_patterns: list[str] = Field(default_factory=list)
    domain_age_days: Optional[int] = None
    malware_detected: bool = False
    phishing_detected: bool = False
    assessment: RiskAssessment
    recommendations: list[str] = Field(default_factory=list)
    probe_errors: dict[str, str] = Field(default_factory=dict)


class DigestSet(BaseModel):
    md5: str
    sha1: str
    sha256: str


class FileFinding(BaseModel):
    rule_id: str
    category: str
    severity: str
    weight: int
    description: str


class SpreadsheetFinding(BaseModel):
    category: str
    severity: str
    description: str
    location: Optional[str] = None
    detail: Optional[str] = None
    excerpt: Optional[str] = None


class SpreadsheetScanResult(BaseModel):
    sheet_count: int = 0
    formula_count: int = 0
    has_macros: bool = False
    has_hidden_sheets: bool = False
    has_hidden_cell_ranges: bool = False
    has_external_links: bool = False
    external_link_count: int = 0
    has_embedded_objects: bool = False
    has_formula_injection: bool = False
    has_shell_command_pattern: bool = False
    findings: list[SpreadsheetFinding] = Field(default_factory=list)
    risk_score: int = 0
    risk_level: RiskLevel = RiskLevel.low
    parse_error: Optional[str] = None


class FileScanResult(BaseModel):
    filename: str
    size_bytes: int
    declared_extension: str
    mime_type: str
    sniffed_type: str
    digests: DigestSet
    suspicious_patterns: list[str] = Field(default_factory=list)
    findings: list[FileFinding] = Field(default_factory=list)
    malware_detected: bool = False
    malware_indicators: list[str] = Field(default_factory=list)
    is_archive: bool = False
    archive_entries: Optional[list[FileScanResult]] = None
    spreadsheet_findings: Optional[SpreadsheetScanResult] = None
    assessment: RiskAssessment
    recommendations: list[str] = Field(default_factory=list)
    scan_ms: int = 0


class FileBatchResult(BaseModel):
    results: list[FileScanResult]


class FilePayload(BaseModel):
    filename: str
    content: bytes
