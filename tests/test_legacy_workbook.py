import struct

import pytest

from artifact_triage.models.results import RiskLevel
from artifact_triage.modules import spreadsheet, workbook_legacy
from artifact_triage.modules.workbook_legacy import (
    RT_BOUNDSHEET,
    RT_COLINFO,
    RT_FORMULA,
    RT_NAME,
    RT_ROW,
    LegacySheet,
    LegacyWorkbook,
    LegacyWorkbookError,
    _read_workbook_stream,
    extract_strings,
    read_legacy_workbook,
    read_ole_indicators,
)
from artifact_triage.utils.sniff import OLE_MAGIC


def _rec(rtype, body):
    return struct.pack("<HH", rtype, len(body)) + body


def _boundsheet(offset, state, kind, name):
    return _rec(RT_BOUNDSHEET, struct.pack("<IBBB", offset, state, kind, len(name)) + b"\x00" + name.encode("latin-1"))


def _name(label=None, builtin=None):
    if builtin is not None:
        return _rec(RT_NAME, struct.pack("<HBBHHH4x", 0x20, 0, 1, 0, 0, 0) + b"\x00" + bytes([builtin]))
    return _rec(RT_NAME, struct.pack("<HBBHHH4x", 0, 0, len(label), 0, 0, 0) + b"\x00" + label.encode("latin-1"))


def _stream():
    data_sheet = _rec(RT_FORMULA, b"\x00" * 20) + _rec(RT_COLINFO, b"\x00" * 8 + struct.pack("<H", 0x1) + b"\x00\x00")
    macro_sheet = _rec(RT_ROW, b"\x00" * 12 + struct.pack("<H", 0x20) + b"\x00\x00") + _rec(RT_FORMULA, b"\x00" * 20)

    def globals_for(first, second):
        return (
            _boundsheet(first, 0, 0, "Data")
            + _boundsheet(second, 1, 1, "Macro1")
            + _name(builtin=0x01)
            + _name(label="Totals")
        )

    size = len(globals_for(0, 0))
    return globals_for(size, size + len(data_sheet)) + data_sheet + macro_sheet


def test_workbook_stream_records_are_decoded():
    book = LegacyWorkbook()
    _read_workbook_stream(_stream(), book)
    assert [(s.name, s.state, s.kind) for s in book.sheets] == [
        ("Data", "visible", "worksheet"),
        ("Macro1", "hidden", "macrosheet"),
    ]
    assert book.sheets[0].hidden_columns is True
    assert book.sheets[0].hidden_rows is False
    assert book.sheets[1].hidden_rows is True
    assert book.defined_names == ["Auto_Open", "Totals"]
    assert book.formula_count == 2


def test_truncated_records_are_skipped():
    book = LegacyWorkbook()
    _read_workbook_stream(_rec(RT_BOUNDSHEET, b"\x00\x00") + _rec(RT_FORMULA, b""), book)
    assert book.sheets == []
    assert book.formula_count == 1


def test_extract_strings_finds_ascii_and_utf16_runs():
    stream = b"\x00\x01Hello World\x00" + "Unicode!".encode("utf-16-le") + b"short\x00"
    assert extract_strings(stream, limit=10) == [(2, "Hello World"), (14, "Unicode!")]
    assert extract_strings(stream, limit=1) == [(2, "Hello World")]


def test_non_ole_data_is_rejected():
    with pytest.raises(LegacyWorkbookError):
        read_legacy_workbook(b"not an ole file" * 100)


def test_legacy_workbook_findings(monkeypatch):
    book = LegacyWorkbook(
        sheets=[
            LegacySheet(name="Data", state="visible", kind="worksheet", offset=100),
            LegacySheet(name="Macro1", state="veryHidden", kind="macrosheet", offset=200, hidden_rows=True),
        ],
        defined_names=["Auto_Open"],
        formula_count=3,
        has_vba=True,
        strings=[(0x40, "=cmd|'/c calc'!A1"), (0x80, "ordinary label")],
    )
    monkeypatch.setattr(spreadsheet, "read_legacy_workbook", lambda data, max_strings: book)

    result = spreadsheet.scan_spreadsheet(OLE_MAGIC + b"\x00" * 504, "legacy.xls")
    assert result.sheet_count == 2
    assert result.formula_count == 3
    assert result.has_macros is True
    assert result.has_hidden_sheets is True
    assert result.has_hidden_cell_ranges is True
    assert result.has_formula_injection is True
    dde = [f for f in result.findings if f.category == "dde_attack"]
    assert dde[0].location == "Workbook+0x40"
    assert "Auto-execution defined name: Auto_Open" in [f.description for f in result.findings]
    assert result.risk_level == RiskLevel.critical


def test_legacy_parse_failure_is_degraded(monkeypatch):
    def broken(data, max_strings):
        raise LegacyWorkbookError("no Workbook stream")

    monkeypatch.setattr(spreadsheet, "read_legacy_workbook", broken)
    result = spreadsheet.scan_spreadsheet(OLE_MAGIC + b"\x00" * 504, "legacy.xls")
    assert result.parse_error == "LegacyWorkbookError: no Workbook stream"
    assert result.risk_score == 5


class _Indicator:
    def __init__(self, ind_id, value):
        self.id = ind_id
        self.value = value


def _fake_oleid(indicators):
    class FakeOleID:
        def __init__(self, data=None):
            self.data = data

        def check(self):
            return indicators

    return FakeOleID


def test_ole_indicators_set_macro_and_object_flags(monkeypatch):
    monkeypatch.setattr(
        workbook_legacy,
        "OleID",
        _fake_oleid([_Indicator("vba", "Yes, suspicious"), _Indicator("xlm", "Yes"), _Indicator("ObjectPool", True)]),
    )
    book = LegacyWorkbook()
    read_ole_indicators(b"ole bytes", book)
    assert book.has_vba is True
    assert book.has_xlm_macros is True
    assert book.has_embedded_objects is True


def test_ole_indicators_ignore_negative_values(monkeypatch):
    monkeypatch.setattr(
        workbook_legacy,
        "OleID",
        _fake_oleid([_Indicator("vba", "No"), _Indicator("xlm_macros", False), _Indicator("ObjectPool", False)]),
    )
    book = LegacyWorkbook()
    read_ole_indicators(b"ole bytes", book)
    assert (book.has_vba, book.has_xlm_macros, book.has_embedded_objects) == (False, False, False)


def test_ole_indicator_failure_is_a_workbook_error(monkeypatch):
    class Exploding:
        def __init__(self, data=None):
            raise RuntimeError("bad sector")

    monkeypatch.setattr(workbook_legacy, "OleID", Exploding)
    with pytest.raises(LegacyWorkbookError, match="bad sector"):
        read_ole_indicators(b"ole bytes", LegacyWorkbook())


def test_xlm_flag_without_macro_sheet_is_reported(monkeypatch):
    book = LegacyWorkbook(sheets=[LegacySheet(name="Data", state="visible", kind="worksheet", offset=100)], has_xlm_macros=True)
    monkeypatch.setattr(spreadsheet, "read_legacy_workbook", lambda data, max_strings: book)

    result = spreadsheet.scan_spreadsheet(OLE_MAGIC + b"\x00" * 504, "legacy.xls")
    assert result.has_macros is True
    assert "Excel 4.0 (XLM) macros present in the workbook" in [f.description for f in result.findings]
