"""Workbook threat scanner.

Formulas are read as text and never evaluated. OOXML workbooks are loaded
through openpyxl (once for formulas, once for cached values) and their zip
package parts are inspected directly; legacy BIFF workbooks go through
:mod:`workbook_legacy`.
"""

from __future__ import annotations

import io
import logging
import struct
import zipfile
from typing import Iterable, Optional
from xml.etree import ElementTree

from openpyxl import load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ..models.results import SpreadsheetFinding, SpreadsheetScanResult
from ..signatures.file_rules import LEGACY_SPREADSHEET_EXTENSIONS, OOXML_SPREADSHEET_EXTENSIONS
from ..signatures.workbook_rules import (
    AUTO_EXEC_NAME_WEIGHT,
    AUTO_EXEC_NAMES,
    CELL_RULES,
    DANGEROUS_FUNCTIONS,
    DDE_RULE,
    EMBEDDED_OBJECT_WEIGHT,
    EXCERPT_CHARS,
    EXTERNAL_REFERENCE_MARKERS,
    HIDDEN_RANGE_WEIGHT,
    HIDDEN_SHEET_WEIGHT,
    LOCAL_LINK_WEIGHT,
    LOCAL_PROTOCOLS,
    MACRO_WEIGHT,
    OOXML_EMBED_PREFIXES,
    OOXML_EXTERNAL_LINK_PREFIX,
    OOXML_MACRO_SHEET_PREFIXES,
    OOXML_VBA_PART,
    PARSE_FAILURE_SCORE,
    REMOTE_LINK_WEIGHT,
    SHELL_COMMAND_RULE,
    SPREADSHEET_SCORE_CAP,
    SUSPICIOUS_PROTOCOLS,
)
from ..utils.sniff import extension_of, sniff_type
from .risk import level_for_document_score
from .workbook_legacy import LegacyWorkbookError, read_legacy_workbook

logger = logging.getLogger(__name__)

PARSE_ERRORS = (
    zipfile.BadZipFile,
    InvalidFileException,
    LegacyWorkbookError,
    ElementTree.ParseError,
    struct.error,
    KeyError,
    ValueError,
    TypeError,
    OSError,
)

_RULE_FLAGS = {
    DDE_RULE.id: "has_formula_injection",
    SHELL_COMMAND_RULE.id: "has_shell_command_pattern",
}

_RELS_NS = "{http://schemas.openxmlformats.org/package/2006/relationships}Relationship"


class _Scan:
    """Accumulates flags, findings and the additive score for one workbook."""

    def __init__(self, max_cells: int) -> None:
        self.result = SpreadsheetScanResult()
        self.score = 0
        self.max_cells = max_cells
        self.cells_seen = 0
        self.truncated = False

    def add(
        self,
        category: str,
        severity: str,
        weight: int,
        description: str,
        location: Optional[str] = None,
        detail: Optional[str] = None,
        excerpt: Optional[str] = None,
    ) -> None:
        self.result.findings.append(
            SpreadsheetFinding(
                category=category,
                severity=severity,
                location=location,
                description=description,
                detail=detail,
                excerpt=excerpt[:EXCERPT_CHARS] if excerpt else None,
            )
        )
        self.score += weight

    def take_cell(self) -> bool:
        if self.cells_seen >= self.max_cells:
            if not self.truncated:
                self.truncated = True
                self.add(
                    "scan_limit",
                    "low",
                    0,
                    f"Cell scan stopped after {self.max_cells} cells",
                )
            return False
        self.cells_seen += 1
        return True

    def finish(self) -> SpreadsheetScanResult:
        score = min(self.score, SPREADSHEET_SCORE_CAP)
        self.result.risk_score = score
        self.result.risk_level = level_for_document_score(score)
        return self.result


def suspicious_protocol(text: str) -> Optional[str]:
    lowered = text.lower()
    for protocol in SUSPICIOUS_PROTOCOLS:
        if protocol in lowered:
            return protocol
    return None


def _protocol_weight(protocol: str) -> tuple[str, int]:
    if protocol in LOCAL_PROTOCOLS:
        return "critical", LOCAL_LINK_WEIGHT
    return "high", REMOTE_LINK_WEIGHT


def _dedupe(candidates: Iterable[object]) -> list[str]:
    seen: list[str] = []
    for value in candidates:
        if not isinstance(value, str):
            continue
        if value.strip() and value not in seen:
            seen.append(value)
    return seen


def check_cell(scan: _Scan, location: str, candidates: Iterable[object]) -> None:
    """Match one cell's texts against the cell rules; each rule fires once per cell."""
    texts = _dedupe(candidates)
    fired: set[str] = set()
    for text in texts:
        for rule in CELL_RULES:
            if rule.id in fired:
                continue
            if any(p.search(text) for p in rule.patterns):
                fired.add(rule.id)
                setattr(scan.result, _RULE_FLAGS[rule.id], True)
                scan.add(rule.category, rule.severity, rule.weight, rule.description, location, excerpt=text)

        if "function" not in fired:
            for func in DANGEROUS_FUNCTIONS:
                if func.pattern.search(text):
                    fired.add("function")
                    scan.add(
                        "malicious_formula",
                        func.severity,
                        func.weight,
                        f"Dangerous function used: {func.name}",
                        location,
                        detail="Function can reach external code or system calls",
                        excerpt=text,
                    )
                    break

        if any(marker in text for marker in EXTERNAL_REFERENCE_MARKERS):
            if "reference" not in fired:
                fired.add("reference")
                scan.result.has_external_links = True
                scan.result.external_link_count += 1
            protocol = suspicious_protocol(text)
            if protocol and "protocol" not in fired:
                fired.add("protocol")
                severity, weight = _protocol_weight(protocol)
                scan.add(
                    "external_link",
                    severity,
                    weight,
                    f"Suspicious external link: {protocol}",
                    location,
                    detail="May reach local files or network resources",
                    excerpt=text,
                )


def check_hyperlink(scan: _Scan, location: str, target: str) -> None:
    scan.result.has_external_links = True
    scan.result.external_link_count += 1
    protocol = suspicious_protocol(target)
    if protocol:
        severity, weight = _protocol_weight(protocol)
        scan.add(
            "external_link",
            severity,
            weight,
            f"Suspicious hyperlink target: {protocol}",
            location,
            detail=f"Link target: {target[:50]}",
            excerpt=target,
        )


def check_defined_names(scan: _Scan, names: Iterable[str]) -> None:
    category, severity, weight = AUTO_EXEC_NAME_WEIGHT
    for name in dict.fromkeys(names):
        upper = name.upper()
        if any(trigger.upper() in upper for trigger in AUTO_EXEC_NAMES):
            scan.add(
                category,
                severity,
                weight,
                f"Auto-execution defined name: {name}",
                detail="Code may run automatically when the workbook opens",
            )


def _hidden_sheet(scan: _Scan, name: str, state: str) -> None:
    category, severity, weight = HIDDEN_SHEET_WEIGHT
    scan.result.has_hidden_sheets = True
    scan.add(category, severity, weight, f"Hidden sheet: {name} ({state})", location=name)


def _hidden_ranges(scan: _Scan, name: str) -> None:
    category, severity, weight = HIDDEN_RANGE_WEIGHT
    scan.result.has_hidden_cell_ranges = True
    scan.add(category, severity, weight, "Hidden rows or columns present", location=name)


def _macro(scan: _Scan, description: str, location: Optional[str] = None) -> None:
    category, severity, weight = MACRO_WEIGHT
    scan.result.has_macros = True
    scan.add(category, severity, weight, description, location=location)


def _embedded(scan: _Scan, detail: str) -> None:
    category, severity, weight = EMBEDDED_OBJECT_WEIGHT
    scan.result.has_embedded_objects = True
    scan.add(category, severity, weight, "Embedded OLE/ActiveX objects present", detail=detail)


def _relationship_targets(archive: zipfile.ZipFile, part: str) -> list[str]:
    root = ElementTree.fromstring(archive.read(part))
    return [rel.get("Target", "") for rel in root.iter(_RELS_NS)]


def _inspect_package(scan: _Scan, data: bytes) -> None:
    with zipfile.ZipFile(io.BytesIO(data)) as archive:
        names = archive.namelist()
        lowered = {name.lower(): name for name in names}

        if OOXML_VBA_PART in lowered:
            _macro(scan, "VBA macro project embedded in the workbook", location=lowered[OOXML_VBA_PART])
        macro_sheets = sorted(n for n in lowered if n.startswith(OOXML_MACRO_SHEET_PREFIXES) and n.endswith(".xml"))
        if macro_sheets:
            _macro(scan, f"Excel 4.0 (XLM) macro sheets present: {len(macro_sheets)}", location=lowered[macro_sheets[0]])

        embedded = sorted(n for n in lowered if n.startswith(OOXML_EMBED_PREFIXES) and not n.endswith("/"))
        if embedded:
            _embedded(scan, ", ".join(lowered[n] for n in embedded[:10]))

        link_parts = sorted(
            n for n in lowered if n.startswith(OOXML_EXTERNAL_LINK_PREFIX) and n.endswith(".xml") and "/_rels/" not in n
        )
        if link_parts:
            scan.result.has_external_links = True
            scan.result.external_link_count += len(link_parts)
        rels = [n for n in lowered if n.startswith(OOXML_EXTERNAL_LINK_PREFIX + "_rels/")]
        for rel_part in sorted(rels):
            for target in _relationship_targets(archive, lowered[rel_part]):
                protocol = suspicious_protocol(target)
                if not protocol:
                    continue
                severity, weight = _protocol_weight(protocol)
                scan.add(
                    "external_link",
                    severity,
                    weight,
                    f"External workbook link: {protocol}",
                    location=lowered[rel_part],
                    detail=f"Link target: {target[:50]}",
                    excerpt=target,
                )


def _formula_text(value: object) -> Optional[str]:
    if isinstance(value, str):
        return value
    # ArrayFormula keeps its formula in ``text``.
    text = getattr(value, "text", None)
    return text if isinstance(text, str) else None


def _scan_sheet_cells(scan: _Scan, ws, cached_ws) -> bool:
    for row in ws.iter_rows():
        for cell in row:
            if cell.value is None and cell.hyperlink is None:
                continue
            if not scan.take_cell():
                return False
            location = f"{ws.title}!{cell.coordinate}"
            candidates: list[object] = []
            if cell.data_type == "f":
                scan.result.formula_count += 1
                candidates.append(_formula_text(cell.value))
                if cached_ws is not None:
                    candidates.append(cached_ws.cell(row=cell.row, column=cell.column).value)
            elif isinstance(cell.value, str):
                if cell.value.startswith("="):
                    scan.result.formula_count += 1
                candidates.append(cell.value)
            check_cell(scan, location, candidates)
            if cell.hyperlink is not None and cell.hyperlink.target:
                check_hyperlink(scan, location, cell.hyperlink.target)
    return True


def _scan_ooxml(scan: _Scan, data: bytes) -> None:
    _inspect_package(scan, data)
    wb = load_workbook(io.BytesIO(data), data_only=False)
    cached = load_workbook(io.BytesIO(data), data_only=True)
    try:
        scan.result.sheet_count = len(wb.sheetnames)
        for sheet in wb.worksheets + wb.chartsheets:
            if sheet.sheet_state != "visible":
                _hidden_sheet(scan, sheet.title, sheet.sheet_state)

        names: list[str] = list(wb.defined_names)
        cells_open = True
        for ws in wb.worksheets:
            names.extend(ws.defined_names)
            if any(dim.hidden for dim in ws.row_dimensions.values()) or any(
                dim.hidden for dim in ws.column_dimensions.values()
            ):
                _hidden_ranges(scan, ws.title)
            if cells_open:
                cached_ws = cached[ws.title] if ws.title in cached.sheetnames else None
                cells_open = _scan_sheet_cells(scan, ws, cached_ws)
        check_defined_names(scan, names)
    finally:
        wb.close()
        cached.close()


def _scan_legacy(scan: _Scan, data: bytes) -> None:
    book = read_legacy_workbook(data, max_strings=scan.max_cells)
    scan.result.sheet_count = len(book.sheets)
    scan.result.formula_count = book.formula_count

    if book.has_vba:
        _macro(scan, "VBA macro storage present in the workbook")
    macro_sheets = [s for s in book.sheets if s.kind == "macrosheet"]
    if macro_sheets:
        _macro(scan, f"Excel 4.0 (XLM) macro sheets present: {len(macro_sheets)}", location=macro_sheets[0].name)
    elif book.has_xlm_macros:
        _macro(scan, "Excel 4.0 (XLM) macros present in the workbook")
    if book.has_embedded_objects:
        _embedded(scan, "MBD/ObjectPool storage")

    for sheet in book.sheets:
        if sheet.state != "visible":
            _hidden_sheet(scan, sheet.name, sheet.state)
        if sheet.hidden_rows or sheet.hidden_columns:
            _hidden_ranges(scan, sheet.name)

    for offset, text in book.strings:
        if not scan.take_cell():
            break
        check_cell(scan, f"Workbook+0x{offset:x}", [text])
    check_defined_names(scan, book.defined_names)


def parse_failure_result(error: str) -> SpreadsheetScanResult:
    return SpreadsheetScanResult(
        findings=[
            SpreadsheetFinding(
                category="suspicious_pattern",
                severity="medium",
                description="Workbook container is corrupt or in an unknown format",
                detail=error,
            )
        ],
        risk_score=PARSE_FAILURE_SCORE,
        risk_level=level_for_document_score(PARSE_FAILURE_SCORE),
        parse_error=error,
    )


def scan_spreadsheet(data: bytes, filename: str, max_cells: int = 200_000) -> SpreadsheetScanResult:
    ext = extension_of(filename)
    kind = sniff_type(data)
    scan = _Scan(max_cells)
    try:
        if kind == "zip" and ext not in LEGACY_SPREADSHEET_EXTENSIONS:
            _scan_ooxml(scan, data)
        elif kind == "ole" and ext not in OOXML_SPREADSHEET_EXTENSIONS:
            _scan_legacy(scan, data)
        else:
            raise ValueError(f"{kind} content does not match a .{ext or '?'} workbook")
    except PARSE_ERRORS as exc:
        logger.warning("workbook parse failed", extra={"file": filename, "error": str(exc)})
        return parse_failure_result(f"{type(exc).__name__}: {exc}")
    result = scan.finish()
    logger.debug(
        "workbook scanned",
        extra={"file": filename, "score": result.risk_score, "findings": len(result.findings)},
    )
    return result
