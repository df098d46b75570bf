from __future__ import annotations

import asyncio
import logging
import posixpath
import time
from dataclasses import dataclass, field
from typing import Callable, Iterator, Optional

from ..models.config import ScanConfig
from ..models.results import DigestSet, FileFinding, FileScanResult, SpreadsheetFinding, SpreadsheetScanResult
from ..signatures.file_rules import (
    ARCHIVE_EXTENSIONS,
    CONTENT_MARKERS,
    DANGEROUS_EXTENSIONS,
    DECEPTIVE_FILENAME_PATTERNS,
    DECOY_EXTENSIONS,
    EXTRACTABLE_ARCHIVES,
    FILE_RULES,
    LEGACY_SPREADSHEET_EXTENSIONS,
    MALWARE_BONUS,
    OOXML_SPREADSHEET_EXTENSIONS,
    PE_MAGIC,
    SCANNABLE_SPREADSHEET_EXTENSIONS,
    STRONG_MALWARE_INDICATORS,
    VALID_EXTENSION_RE,
)
from ..utils.digests import compute_digests
from ..utils.sniff import describe_format, extension_of, guess_mime_type, matches_archive_signature, sniff_type
from .archive import ARCHIVE_ERRORS, ArchiveMember, ArchiveReader, EntryBudget, open_archive
from .recommendations import file_recommendations
from .risk import DOCUMENT_LEVEL_FLOORS, assess_document_risk
from .spreadsheet import scan_spreadsheet

logger = logging.getLogger(__name__)

# Rule id -> malware indicator it raises.
INDICATOR_RULES = {
    "file.pe_spoofed_extension": "disguised_as_document",
    "file.pe_decoy_extension": "disguised_as_document",
    "file.pe_in_archive": "archive_spoofed_as_executable",
    "file.deceptive_filename": "deceptive_filename",
    "file.double_extension": "double_extension_executable",
    "file.executable_in_archive": "executable_in_container",
}


def finding(rule_id: str, **params) -> FileFinding:
    rule = FILE_RULES[rule_id]
    return FileFinding(
        rule_id=rule.id,
        category=rule.category,
        severity=rule.severity,
        weight=rule.weight,
        description=rule.template.format(**params),
    )


@dataclass
class Subject:
    filename: str
    data: bytes
    marker_scan_bytes: int = 65_536
    basename: str = field(init=False)
    ext: str = field(init=False)
    kind: str = field(init=False)

    def __post_init__(self) -> None:
        self.basename = posixpath.basename(self.filename.replace("\\", "/"))
        self.ext = extension_of(self.filename)
        self.kind = sniff_type(self.data)

    @property
    def dangerous(self) -> bool:
        return bool(VALID_EXTENSION_RE.match(self.ext)) and self.ext in DANGEROUS_EXTENSIONS

    @property
    def decoy(self) -> Optional[str]:
        parts = self.basename.lower().split(".")
        if len(parts) >= 3 and parts[-2] in DECOY_EXTENSIONS:
            return parts[-2]
        return None


def check_dangerous_extension(subject: Subject) -> Iterator[FileFinding]:
    if subject.ext in DANGEROUS_EXTENSIONS:
        yield finding("file.dangerous_extension", ext=subject.ext, description=DANGEROUS_EXTENSIONS[subject.ext])


def check_deceptive_filename(subject: Subject) -> Iterator[FileFinding]:
    if not subject.dangerous:
        return
    if any(p.search(subject.basename) for p in DECEPTIVE_FILENAME_PATTERNS):
        yield finding("file.deceptive_filename")


def check_double_extension(subject: Subject) -> Iterator[FileFinding]:
    if subject.dangerous and subject.decoy:
        yield finding("file.double_extension", decoy=subject.decoy, ext=subject.ext)


def check_magic_bytes(subject: Subject) -> Iterator[FileFinding]:
    if not subject.data.startswith(PE_MAGIC):
        return
    if subject.ext in ARCHIVE_EXTENSIONS:
        yield finding("file.pe_in_archive", ext=subject.ext)
    elif subject.ext not in DANGEROUS_EXTENSIONS:
        yield finding("file.pe_spoofed_extension", ext=subject.ext or "(none)")
    elif subject.decoy:
        yield finding("file.pe_decoy_extension", decoy=subject.decoy)
    else:
        yield finding("file.pe_confirmed")


def check_archive_signature(subject: Subject) -> Iterator[FileFinding]:
    if subject.ext not in ARCHIVE_EXTENSIONS or matches_archive_signature(subject.ext, subject.data):
        return
    if not subject.data:
        detail = "file is empty"
    elif subject.kind == "unknown":
        detail = "leading bytes match no known format; the file may be corrupt"
    else:
        detail = f"content looks like a {describe_format(subject.kind)}"
    yield finding("file.archive_signature", ext=subject.ext, detail=detail)


def check_spreadsheet_signature(subject: Subject) -> Iterator[FileFinding]:
    if subject.ext in OOXML_SPREADSHEET_EXTENSIONS:
        expected = "zip"
    elif subject.ext in LEGACY_SPREADSHEET_EXTENSIONS:
        expected = "ole"
    else:
        return
    if subject.kind != expected:
        yield finding(
            "file.spreadsheet_signature",
            ext=subject.ext,
            expected=describe_format(expected),
            actual=describe_format(subject.kind),
        )


def check_embedded_markers(subject: Subject) -> Iterator[FileFinding]:
    window = subject.data[: subject.marker_scan_bytes]
    for marker in CONTENT_MARKERS:
        if marker.token in window:
            yield finding(marker.rule_id, label=marker.label)


FILE_CHECKS: tuple[Callable[[Subject], Iterator[FileFinding]], ...] = (
    check_dangerous_extension,
    check_deceptive_filename,
    check_double_extension,
    check_magic_bytes,
    check_archive_signature,
    check_spreadsheet_signature,
    check_embedded_markers,
)


@dataclass
class Inspection:
    ext: str
    mime_type: str
    sniffed_type: str
    digests: DigestSet
    findings: list[FileFinding]
    spreadsheet: Optional[SpreadsheetScanResult] = None


def inspect_file(filename: str, data: bytes, config: ScanConfig) -> Inspection:
    """CPU-bound part of a scan: digests, sniffing, heuristics, workbook parsing."""
    subject = Subject(filename, data, config.marker_scan_bytes)
    findings = [f for check in FILE_CHECKS for f in check(subject)]
    spreadsheet = None
    if subject.ext in SCANNABLE_SPREADSHEET_EXTENSIONS:
        spreadsheet = scan_spreadsheet(data, filename, max_cells=config.max_workbook_cells)
    return Inspection(
        ext=subject.ext,
        mime_type=guess_mime_type(filename),
        sniffed_type=subject.kind,
        digests=compute_digests(data),
        findings=findings,
        spreadsheet=spreadsheet,
    )


def malware_indicators(findings: list[FileFinding]) -> list[str]:
    indicators = []
    for f in findings:
        indicator = INDICATOR_RULES.get(f.rule_id)
        if indicator and indicator not in indicators:
            indicators.append(indicator)
    return indicators


def is_malware(indicators: list[str]) -> bool:
    return any(i in STRONG_MALWARE_INDICATORS for i in indicators) or len(indicators) >= 2


def format_spreadsheet_finding(item: SpreadsheetFinding) -> str:
    where = f" @ {item.location}" if item.location else ""
    return f"[{item.severity}] {item.category}{where}: {item.description}"


class ScanSession:
    """Request-wide limits shared by every file and nested archive entry."""

    def __init__(self, config: Optional[ScanConfig] = None) -> None:
        self.config = config or ScanConfig()
        self.limiter = asyncio.Semaphore(self.config.archive_concurrency)
        self.budget = EntryBudget(self.config.max_archive_entries)


async def _read_member(reader: ArchiveReader, member: ArchiveMember, lock: asyncio.Lock, limit: int) -> bytes:
    async with lock:
        return await asyncio.to_thread(reader.read, member, limit)


async def _scan_archive(
    filename: str, ext: str, data: bytes, session: ScanSession, depth: int
) -> tuple[Optional[list[FileScanResult]], list[FileFinding]]:
    config = session.config
    if ext not in EXTRACTABLE_ARCHIVES:
        return None, [finding("file.archive_error", detail=f".{ext} extraction is not supported")]
    if depth >= config.max_archive_depth:
        return None, [finding("file.archive_limit", detail=f"nesting depth {depth} reached the limit of {config.max_archive_depth}")]

    try:
        reader = await asyncio.to_thread(
            open_archive, ext, data, filename, config.legacy_filename_encodings
        )
        members = await asyncio.to_thread(reader.members)
    except ARCHIVE_ERRORS as exc:
        logger.warning("archive open failed", extra={"file": filename, "error": str(exc)})
        return None, [finding("file.archive_error", detail=str(exc) or type(exc).__name__)]

    findings: list[FileFinding] = []
    selected: list[ArchiveMember] = []
    for member in members:
        if member.size > config.max_entry_bytes:
            findings.append(
                finding("file.archive_limit", detail=f"{member.name} is {member.size} bytes (limit {config.max_entry_bytes})")
            )
            continue
        ratio = member.compression_ratio
        # Only entries of at least bomb_min_entry_bytes can count as bombs.
        if ratio is not None and ratio > config.max_compression_ratio and member.size >= config.bomb_min_entry_bytes:
            findings.append(finding("file.archive_bomb", detail=f"{member.name} expands {ratio:.0f}x"))
            continue
        if not session.budget.take():
            findings.append(
                finding("file.archive_limit", detail=f"entry limit of {config.max_archive_entries} reached; remaining entries skipped")
            )
            break
        selected.append(member)

    lock = asyncio.Lock()
    gate = asyncio.Semaphore(config.archive_concurrency)

    async def _entry(member: ArchiveMember) -> tuple[Optional[FileScanResult], Optional[FileFinding]]:
        async with gate:
            try:
                content = await _read_member(reader, member, lock, config.max_entry_bytes)
            except ARCHIVE_ERRORS as exc:
                logger.warning("archive entry skipped", extra={"file": filename, "entry": member.name, "error": str(exc)})
                return None, finding("file.archive_error", detail=f"{member.name}: {exc}")
            if len(content) > config.max_entry_bytes:
                return None, finding("file.archive_limit", detail=f"{member.name} exceeds {config.max_entry_bytes} bytes")
            return await scan_file(member.name, content, session=session, depth=depth + 1), None

    try:
        outcomes = await asyncio.gather(*(_entry(m) for m in selected))
    finally:
        reader.close()

    entries = []
    for child, problem in outcomes:
        if problem is not None:
            findings.append(problem)
        if child is not None:
            entries.append(child)
    for child in entries:
        if child.declared_extension in DANGEROUS_EXTENSIONS:
            findings.append(finding("file.executable_in_archive", name=child.filename))
    return entries, findings


async def scan_file(
    filename: str,
    data: bytes,
    config: Optional[ScanConfig] = None,
    session: Optional[ScanSession] = None,
    depth: int = 0,
) -> FileScanResult:
    session = session or ScanSession(config)
    start = time.monotonic()
    async with session.limiter:
        inspection = await asyncio.to_thread(inspect_file, filename, data, session.config)

    findings = list(inspection.findings)
    is_archive = inspection.ext in ARCHIVE_EXTENSIONS
    entries = None
    if is_archive:
        entries, archive_findings = await _scan_archive(filename, inspection.ext, data, session, depth)
        findings.extend(archive_findings)

    indicators = malware_indicators(findings)
    malware = is_malware(indicators)
    patterns = [f.description for f in findings]
    floor = 0
    if inspection.spreadsheet is not None:
        patterns.extend(format_spreadsheet_finding(item) for item in inspection.spreadsheet.findings)
        floor = max(inspection.spreadsheet.risk_score, DOCUMENT_LEVEL_FLOORS[inspection.spreadsheet.risk_level])
    factors = list(patterns)
    if malware:
        factors.append(f"Malware indicators: {', '.join(indicators)}")
    weights = [f.weight for f in findings] + ([MALWARE_BONUS] if malware else [])

    result = FileScanResult(
        filename=filename,
        size_bytes=len(data),
        declared_extension=inspection.ext,
        mime_type=inspection.mime_type,
        sniffed_type=inspection.sniffed_type,
        digests=inspection.digests,
        suspicious_patterns=patterns,
        findings=findings,
        malware_detected=malware,
        malware_indicators=indicators,
        is_archive=is_archive,
        archive_entries=entries,
        spreadsheet_findings=inspection.spreadsheet,
        assessment=assess_document_risk(weights, factors, floor=floor),
        scan_ms=int((time.monotonic() - start) * 1000),
    )
    result.recommendations = file_recommendations(result)
    logger.info(
        "file scanned",
        extra={
            "file": filename,
            "depth": depth,
            "score": result.assessment.score,
            "level": result.assessment.level.value,
            "malware": malware,
        },
    )
    return result
