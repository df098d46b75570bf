"""Structural reader for legacy BIFF8 workbooks (.xls/.xlt).

Only record headers and a handful of record bodies are decoded: sheet
directory, built-in names, hidden row/column flags and formula counts. Cell
text is approximated by the printable string runs of the ``Workbook`` stream.
Macro and ObjectPool flags come from ``oletools.oleid``.
"""

from __future__ import annotations

import bisect
import io
import logging
import re
import struct
from dataclasses import dataclass, field

import olefile
from oletools.oleid import OleID

from ..signatures.workbook_rules import OLE_EMBED_PREFIXES, OLEID_OBJECT_POOL_ID, OLEID_VBA_IDS, OLEID_XLM_IDS

logger = logging.getLogger(__name__)

RT_FORMULA = 0x0006
RT_NAME = 0x0018
RT_COLINFO = 0x007D
RT_BOUNDSHEET = 0x0085
RT_ROW = 0x0208

SHEET_STATES = {0: "visible", 1: "hidden", 2: "veryHidden"}
SHEET_TYPES = {0: "worksheet", 1: "macrosheet", 2: "chart", 6: "vbamodule"}

BUILTIN_NAMES = {
    0x00: "Consolidate_Area",
    0x01: "Auto_Open",
    0x02: "Auto_Close",
    0x03: "Extract",
    0x04: "Database",
    0x05: "Criteria",
    0x06: "Print_Area",
    0x07: "Print_Titles",
    0x08: "Recorder",
    0x09: "Data_Form",
    0x0A: "Auto_Activate",
    0x0B: "Auto_Deactivate",
    0x0C: "Sheet_Title",
    0x0D: "_FilterDatabase",
}

ASCII_RUN_RE = re.compile(rb"[\x20-\x7e]{6,}")
UTF16_RUN_RE = re.compile(rb"(?:[\x20-\x7e]\x00){6,}")


class LegacyWorkbookError(ValueError):
    pass


@dataclass
class LegacySheet:
    name: str
    state: str
    kind: str
    offset: int
    hidden_rows: bool = False
    hidden_columns: bool = False


@dataclass
class LegacyWorkbook:
    sheets: list[LegacySheet] = field(default_factory=list)
    defined_names: list[str] = field(default_factory=list)
    formula_count: int = 0
    has_vba: bool = False
    has_xlm_macros: bool = False
    has_embedded_objects: bool = False
    # (stream offset, text)
    strings: list[tuple[int, str]] = field(default_factory=list)


def _short_string(body: bytes, pos: int, cch: int) -> str:
    high_byte = body[pos] & 0x01
    raw = body[pos + 1 :]
    if high_byte:
        return raw[: cch * 2].decode("utf-16-le", errors="replace")
    return raw[:cch].decode("latin-1")


def _iter_records(stream: bytes):
    offset = 0
    size = len(stream)
    while offset + 4 <= size:
        rtype, length = struct.unpack_from("<HH", stream, offset)
        body = stream[offset + 4 : offset + 4 + length]
        yield offset, rtype, body
        offset += 4 + length


def _parse_boundsheet(offset: int, body: bytes) -> LegacySheet:
    ply_pos, state, kind, cch = struct.unpack_from("<IBBB", body, 0)
    return LegacySheet(
        name=_short_string(body, 7, cch),
        state=SHEET_STATES.get(state & 0x03, "visible"),
        kind=SHEET_TYPES.get(kind, "unknown"),
        offset=ply_pos,
    )


def _parse_name(body: bytes) -> str:
    grbit, _key, cch = struct.unpack_from("<HBB", body, 0)
    if grbit & 0x0020:
        return BUILTIN_NAMES.get(body[15], f"Builtin_{body[15]:#04x}")
    return _short_string(body, 14, cch)


def extract_strings(stream: bytes, limit: int) -> list[tuple[int, str]]:
    found: dict[int, str] = {}
    starts: list[int] = []
    ends: list[int] = []
    for match in ASCII_RUN_RE.finditer(stream):
        found[match.start()] = match.group().decode("ascii")
        starts.append(match.start())
        ends.append(match.end())
    min_len = 2 * 6
    for match in UTF16_RUN_RE.finditer(stream):
        start, end = match.span()
        # A UTF-16 run can borrow the last byte of the ASCII run before it.
        while start < end:
            idx = bisect.bisect_right(starts, start) - 1
            if idx < 0 or start >= ends[idx]:
                break
            start += 2
        if end - start >= min_len:
            found.setdefault(start, stream[start:end].decode("utf-16-le"))
    return sorted(found.items())[:limit]


def _flagged(value) -> bool:
    # oleid reports booleans in old releases and "No"/"Yes"/"Yes, suspicious" strings in newer ones.
    if isinstance(value, str):
        return value.lower().startswith("yes")
    return bool(value)


def read_ole_indicators(data: bytes, book: LegacyWorkbook) -> None:
    try:
        indicators = OleID(data=data).check()
    except Exception as exc:
        raise LegacyWorkbookError(f"OLE indicator scan failed: {exc}") from exc
    for indicator in indicators:
        ind_id = getattr(indicator, "id", "")
        if not _flagged(getattr(indicator, "value", None)):
            continue
        if ind_id in OLEID_VBA_IDS:
            book.has_vba = True
        elif ind_id in OLEID_XLM_IDS:
            book.has_xlm_macros = True
        elif ind_id == OLEID_OBJECT_POOL_ID:
            book.has_embedded_objects = True


def _read_embedding_storages(ole: olefile.OleFileIO, book: LegacyWorkbook) -> None:
    for path in ole.listdir(streams=False, storages=True):
        if any(p.lower().startswith(OLE_EMBED_PREFIXES) for p in path):
            book.has_embedded_objects = True
            return


def _read_workbook_stream(stream: bytes, book: LegacyWorkbook) -> None:
    row_records: list[tuple[int, int, bytes]] = []
    for offset, rtype, body in _iter_records(stream):
        try:
            if rtype == RT_BOUNDSHEET:
                book.sheets.append(_parse_boundsheet(offset, body))
            elif rtype == RT_NAME:
                book.defined_names.append(_parse_name(body))
            elif rtype == RT_FORMULA:
                book.formula_count += 1
            elif rtype in (RT_ROW, RT_COLINFO):
                row_records.append((offset, rtype, body))
        except (struct.error, IndexError):
            logger.debug("skipping truncated record", extra={"record": hex(rtype), "offset": offset})

    if not book.sheets:
        return
    ordered = sorted(book.sheets, key=lambda s: s.offset)
    starts = [s.offset for s in ordered]
    for offset, rtype, body in row_records:
        idx = bisect.bisect_right(starts, offset) - 1
        if idx < 0:
            continue
        sheet = ordered[idx]
        if rtype == RT_ROW and len(body) >= 14 and struct.unpack_from("<H", body, 12)[0] & 0x0020:
            sheet.hidden_rows = True
        elif rtype == RT_COLINFO and len(body) >= 10 and struct.unpack_from("<H", body, 8)[0] & 0x0001:
            sheet.hidden_columns = True


def read_legacy_workbook(data: bytes, max_strings: int = 200_000) -> LegacyWorkbook:
    if not olefile.isOleFile(io.BytesIO(data)):
        raise LegacyWorkbookError("not an OLE compound file")
    book = LegacyWorkbook()
    read_ole_indicators(data, book)
    ole = olefile.OleFileIO(io.BytesIO(data))
    try:
        _read_embedding_storages(ole, book)
        stream_name = next((n for n in ("Workbook", "Book") if ole.exists(n)), None)
        if stream_name is None:
            raise LegacyWorkbookError("no Workbook stream")
        stream = ole.openstream(stream_name).read()
        _read_workbook_stream(stream, book)
        book.strings = extract_strings(stream, max_strings)
        return book
    finally:
        ole.close()
