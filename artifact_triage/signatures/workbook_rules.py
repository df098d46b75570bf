from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class CellRule:
    id: str
    category: str
    severity: str
    weight: int
    description: str
    patterns: tuple[re.Pattern, ...]


@dataclass(frozen=True)
class DangerousFunction:
    name: str
    severity: str
    weight: int
    pattern: re.Pattern


def _compile(*sources: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(src, re.IGNORECASE) for src in sources)


# Classic DDE forms, auto-executing DDE, and application-piped forms. The
# anchored variants catch producers that store the payload as a plain string.
DDE_RULE = CellRule(
    id="workbook.dde",
    category="dde_attack",
    severity="critical",
    weight=15,
    description="DDE / formula injection pattern detected",
    patterns=_compile(
        r"=DDE\(",
        r"=DDEAUTO\(",
        r"=cmd\|",
        r"=msexcel\|",
        r"=excel\|",
        r"@SUM\(.*cmd",
        r"=.*\|'.*!",
        r"^cmd\|",
        r"^msexcel\|",
        r"^excel\|",
        r"^winword\|",
        r"^powershell\|",
        r"^[a-zA-Z]+\|.*![A-Z0-9]+$",
        r"cmd.*/c",
        r"powershell.*exe",
        r"system32.*exe",
        r"calc\.exe",
        r"notepad\.exe",
        r"cmd\.exe",
        r"DDEAUTO.*cmd",
        r"DDEAUTO.*powershell",
        r"DDEAUTO.*system32",
    ),
)

SHELL_COMMAND_RULE = CellRule(
    id="workbook.shell_command",
    category="command_injection",
    severity="critical",
    weight=12,
    description="Shell command pattern detected",
    patterns=_compile(
        r"/c\s+",
        r"/k\s+",
        r"-c\s+",
        r"-e\s+",
        r"\\system32\\",
        r"\\windows\\",
        r"\.exe\b",
        r"\.bat\b",
        r"\.cmd\b",
        r"\.ps1\b",
        r"calc\b",
        r"notepad\b",
        r"taskkill",
        r"net\s+user",
    ),
)

CELL_RULES: tuple[CellRule, ...] = (DDE_RULE, SHELL_COMMAND_RULE)

_CRITICAL_FUNCTIONS = frozenset({"CALL", "REGISTER", "EXEC", "SHELL"})

DANGEROUS_FUNCTIONS: tuple[DangerousFunction, ...] = tuple(
    DangerousFunction(
        name=name,
        severity="critical" if name in _CRITICAL_FUNCTIONS else "high",
        weight=10 if name in _CRITICAL_FUNCTIONS else 6,
        pattern=re.compile(rf"\b{name}\s*\(", re.IGNORECASE),
    )
    for name in (
        "HYPERLINK",
        "WEBSERVICE",
        "FILTERXML",
        "RTD",
        "CUBEVALUE",
        "CUBEMEMBER",
        "CUBERANKEDMEMBER",
        "CUBESET",
        "CUBESETCOUNT",
        "CUBEKPIMEMBER",
        "CALL",
        "REGISTER",
        "EVALUATE",
        "EXEC",
        "SHELL",
    )
)

SUSPICIOUS_PROTOCOLS: tuple[str, ...] = (
    "file://",
    "ftp://",
    "http://",
    "https://",
    "ldap://",
    "mailto:",
    "news:",
    "nntp:",
    "telnet:",
    "gopher:",
    "wais:",
    "smb://",
    "unc://",
    "\\\\",
)
LOCAL_PROTOCOLS = frozenset({"file://", "\\\\"})

EXTERNAL_REFERENCE_MARKERS: tuple[str, ...] = ("[", "!", "://")

AUTO_EXEC_NAMES: tuple[str, ...] = (
    "Auto_Open",
    "Auto_Close",
    "Auto_Exec",
    "AutoOpen",
    "AutoClose",
    "AutoExec",
    "Workbook_Open",
    "Workbook_Close",
    "Workbook_Activate",
    "Workbook_Deactivate",
)

# (category, severity, weight) for workbook-level checks.
MACRO_WEIGHT = ("macro", "critical", 10)
HIDDEN_SHEET_WEIGHT = ("hidden_content", "high", 5)
HIDDEN_RANGE_WEIGHT = ("hidden_content", "medium", 3)
EMBEDDED_OBJECT_WEIGHT = ("embedded_object", "critical", 8)
AUTO_EXEC_NAME_WEIGHT = ("suspicious_pattern", "critical", 10)
LOCAL_LINK_WEIGHT = 8
REMOTE_LINK_WEIGHT = 6

OOXML_VBA_PART = "xl/vbaproject.bin"
OOXML_MACRO_SHEET_PREFIXES = ("xl/macrosheets/", "xl/intlmacrosheets/")
OOXML_EMBED_PREFIXES = ("xl/embeddings/", "xl/activex/")
OOXML_EXTERNAL_LINK_PREFIX = "xl/externallinks/"

# oletools.oleid indicator ids; older releases use the *_macros spelling.
OLEID_VBA_IDS = frozenset({"vba", "vba_macros"})
OLEID_XLM_IDS = frozenset({"xlm", "xlm_macros"})
OLEID_OBJECT_POOL_ID = "ObjectPool"
# Excel keeps embedded OLE objects in MBD<hex> storages, which oleid does not report.
OLE_EMBED_PREFIXES = ("mbd",)

SPREADSHEET_SCORE_CAP = 20
PARSE_FAILURE_SCORE = 5
EXCERPT_CHARS = 100
