import asyncio
import gzip
import io
import tarfile
import zipfile

from artifact_triage.models.config import ScanConfig
from artifact_triage.models.results import RiskLevel
from artifact_triage.modules.archive import EntryBudget, GzipReader, recover_zip_name
from artifact_triage.modules.file_scanner import ScanSession, scan_file

PE_HEADER = b"MZ" + b"\x00" * 62


def _zip(entries, compression=zipfile.ZIP_STORED):
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=compression) as zf:
        for name, data in entries:
            zf.writestr(name, data)
    return buf.getvalue()


def _scan(filename, data, **config):
    return asyncio.run(scan_file(filename, data, ScanConfig(**config)))


def test_zip_entries_are_scanned_recursively():
    data = _zip([("readme.txt", b"read me first"), ("setup.exe", PE_HEADER)])
    result = _scan("bundle.zip", data)
    assert result.is_archive is True
    assert [e.filename for e in result.archive_entries] == ["readme.txt", "setup.exe"]
    flagged = [e for e in result.archive_entries if e.assessment.level != RiskLevel.low]
    assert [e.filename for e in flagged] == ["setup.exe"]
    assert [f.rule_id for f in result.findings] == ["file.executable_in_archive"]
    assert result.malware_indicators == ["executable_in_container"]
    assert result.malware_detected is False
    assert result.assessment.level == RiskLevel.medium
    assert any("contains executables" in r for r in result.recommendations)


def test_nested_archives_stop_at_depth_limit():
    inner = _zip([("deep.txt", b"deep")])
    outer = _zip([("inner.zip", inner)])
    result = _scan("outer.zip", outer, max_archive_depth=1)
    (child,) = result.archive_entries
    assert child.filename == "inner.zip"
    assert child.archive_entries is None
    assert [f.rule_id for f in child.findings] == ["file.archive_limit"]


def test_nested_archives_within_limit_are_expanded():
    inner = _zip([("deep.txt", b"deep")])
    outer = _zip([("inner.zip", inner)])
    result = _scan("outer.zip", outer)
    (child,) = result.archive_entries
    assert [e.filename for e in child.archive_entries] == ["deep.txt"]


def test_entry_budget_is_shared_across_the_request():
    data = _zip([(f"file{i}.txt", b"x") for i in range(3)])
    result = _scan("many.zip", data, max_archive_entries=2)
    assert len(result.archive_entries) == 2
    assert [f.rule_id for f in result.findings] == ["file.archive_limit"]

    session = ScanSession(ScanConfig(max_archive_entries=3))

    async def main():
        return await asyncio.gather(scan_file("a.zip", data, session=session), scan_file("b.zip", data, session=session))

    first, second = asyncio.run(main())
    assert len(first.archive_entries) + len(second.archive_entries) == 3
    assert session.budget.exhausted


def test_compression_bomb_is_not_extracted():
    data = _zip([("zeros.bin", b"\x00" * 1_000_000)], compression=zipfile.ZIP_DEFLATED)
    result = _scan("bomb.zip", data)
    assert result.archive_entries == []
    assert [f.rule_id for f in result.findings] == ["file.archive_bomb"]
    assert result.assessment.score == 8


def test_oversized_entry_is_skipped():
    data = _zip([("big.txt", b"a" * 2048)])
    result = _scan("big.zip", data, max_entry_bytes=1024)
    assert result.archive_entries == []
    assert [f.rule_id for f in result.findings] == ["file.archive_limit"]


def test_tgz_members_are_scanned():
    buf = io.BytesIO()
    payload = b'CreateObject("WScript.Shell").Run "calc"'
    with tarfile.open(fileobj=buf, mode="w:gz") as tf:
        info = tarfile.TarInfo("scripts/payload.vbs")
        info.size = len(payload)
        tf.addfile(info, io.BytesIO(payload))
    result = _scan("drop.tgz", buf.getvalue())
    (child,) = result.archive_entries
    assert child.filename == "scripts/payload.vbs"
    assert child.declared_extension == "vbs"
    assert "file.dangerous_extension" in [f.rule_id for f in child.findings]
    assert "file.executable_in_archive" in [f.rule_id for f in result.findings]


def test_bare_gzip_yields_single_member():
    data = gzip.compress(b"hello world")
    result = _scan("notes.txt.gz", data)
    (child,) = result.archive_entries
    assert child.filename == "notes.txt"
    assert child.size_bytes == 11
    assert child.findings == []
    assert GzipReader(data, "notes.txt.gz").members()[0].size == 11


def test_corrupt_zip_entry_reports_error_without_entries():
    result = _scan("broken.zip", b"PK\x03\x04" + b"\x00" * 40)
    assert result.archive_entries is None
    assert [f.rule_id for f in result.findings] == ["file.archive_error"]


def test_legacy_code_page_names_are_recovered():
    korean = "보고서.txt".encode("cp949")
    assert len(korean) == len(b"abcdef.txt")
    data = _zip([("abcdef.txt", b"content")]).replace(b"abcdef.txt", korean)
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        info = zf.infolist()[0]
        assert recover_zip_name(info, ["cp949"]) == "보고서.txt"
    result = _scan("reports.zip", data)
    assert [e.filename for e in result.archive_entries] == ["보고서.txt"]


def test_unflagged_utf8_names_are_recovered():
    raw = "한글.txt".encode("utf-8")
    assert len(raw) == len(b"abcdef.txt")
    data = _zip([("abcdef.txt", b"content")]).replace(b"abcdef.txt", raw)
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        assert recover_zip_name(zf.infolist()[0], ["cp949"]) == "한글.txt"


def test_entry_budget_counts_down():
    budget = EntryBudget(2)
    assert budget.take() and budget.take()
    assert not budget.take()
    assert budget.exhausted


def test_small_compressible_entry_is_not_a_bomb():
    data = _zip([("blank.csv", b"0," * 10_000), ("tool.exe", PE_HEADER)], compression=zipfile.ZIP_DEFLATED)
    result = _scan("tools.zip", data)
    assert [e.filename for e in result.archive_entries] == ["blank.csv", "tool.exe"]
    assert [f.rule_id for f in result.findings] == ["file.executable_in_archive"]
    assert result.assessment.level == RiskLevel.medium


def test_corrupt_workbook_entry_keeps_its_siblings(caplog):
    data = _zip([("readme.txt", b"read me first"), ("book.xlsx", b"garbage")])
    result = _scan("bundle.zip", data)
    assert [e.filename for e in result.archive_entries] == ["readme.txt", "book.xlsx"]
    book = result.archive_entries[1]
    assert book.spreadsheet_findings.parse_error
    assert book.assessment.score == 5
    failures = [r for r in caplog.records if r.getMessage() == "workbook parse failed"]
    assert [r.file for r in failures] == ["book.xlsx"]
