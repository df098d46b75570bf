from __future__ import annotations

import re
from dataclasses import dataclass


@dataclass(frozen=True)
class FileRule:
    id: str
    category: str
    severity: str
    weight: int
    template: str


@dataclass(frozen=True)
class ContentMarker:
    token: bytes
    rule_id: str
    label: str


# Executable and script extensions. Generic archive extensions are absent; jar is both.
DANGEROUS_EXTENSIONS: dict[str, str] = {
    "exe": "Windows executable",
    "scr": "Screen saver (executable)",
    "vbs": "Visual Basic script",
    "pif": "MS-DOS program information file",
    "cmd": "Windows command script",
    "bat": "Windows batch file",
    "com": "MS-DOS executable",
    "jar": "Java executable archive",
    "reg": "Windows registry file",
    "vbe": "Encoded Visual Basic script",
    "js": "JavaScript file",
    "jse": "Encoded JavaScript file",
    "lnk": "Windows shortcut",
    "dll": "Windows dynamic library",
    "sys": "Windows system driver",
    "ps1": "PowerShell script",
    "psm1": "PowerShell module",
    "ps1xml": "PowerShell format file",
    "ps2": "PowerShell script",
    "ps2xml": "PowerShell format file",
    "psc1": "PowerShell console file",
    "psc2": "PowerShell console file",
    "msh": "Monad shell script",
    "msh1": "Monad shell script",
    "msh2": "Monad shell script",
    "mshxml": "Monad shell format file",
    "msh1xml": "Monad shell format file",
    "msh2xml": "Monad shell format file",
    "scf": "Windows Explorer command file",
    "inf": "Setup information file",
    "app": "Application bundle",
    "msi": "Windows installer",
    "hta": "HTML application",
}

ARCHIVE_EXTENSIONS = frozenset({"zip", "jar", "rar", "7z", "tar", "gz", "tgz"})
EXTRACTABLE_ARCHIVES = frozenset({"zip", "jar", "tar", "gz", "tgz"})

OOXML_SPREADSHEET_EXTENSIONS = frozenset({"xlsx", "xlsm", "xltx", "xltm", "xlsb"})
LEGACY_SPREADSHEET_EXTENSIONS = frozenset({"xls", "xlt"})
SPREADSHEET_EXTENSIONS = OOXML_SPREADSHEET_EXTENSIONS | LEGACY_SPREADSHEET_EXTENSIONS
# xlsb is binary inside the zip; openpyxl cannot read it, so only the container is checked.
SCANNABLE_SPREADSHEET_EXTENSIONS = SPREADSHEET_EXTENSIONS - {"xlsb"}

MIME_TYPES: dict[str, str] = {
    "txt": "text/plain",
    "html": "text/html",
    "htm": "text/html",
    "css": "text/css",
    "js": "application/javascript",
    "json": "application/json",
    "pdf": "application/pdf",
    "doc": "application/msword",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xls": "application/vnd.ms-excel",
    "xlt": "application/vnd.ms-excel",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "xlsm": "application/vnd.ms-excel.sheet.macroEnabled.12",
    "xltx": "application/vnd.openxmlformats-officedocument.spreadsheetml.template",
    "xltm": "application/vnd.ms-excel.template.macroEnabled.12",
    "xlsb": "application/vnd.ms-excel.sheet.binary.macroEnabled.12",
    "zip": "application/zip",
    "rar": "application/x-rar-compressed",
    "7z": "application/x-7z-compressed",
    "tar": "application/x-tar",
    "gz": "application/gzip",
    "tgz": "application/gzip",
    "exe": "application/x-msdownload",
    "dll": "application/x-msdownload",
    "msi": "application/x-msi",
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
}
DEFAULT_MIME_TYPE = "application/octet-stream"

DECOY_EXTENSIONS = frozenset(
    {"jpg", "jpeg", "png", "gif", "bmp", "doc", "docx", "pdf", "txt", "xls", "xlsx", "ppt", "pptx", "mp3", "mp4"}
)

# Innocuous-looking prefixes, decoy extensions before an executable suffix, and
# hidden dot-files with an executable suffix.
DECEPTIVE_FILENAME_PATTERNS: tuple[re.Pattern, ...] = (
    re.compile(r"^invoice.*\.(exe|scr|bat|cmd|com|pif|vbs|js)$", re.IGNORECASE),
    re.compile(r"^receipt.*\.(exe|scr|bat|cmd|com|pif|vbs|js)$", re.IGNORECASE),
    re.compile(r"^document.*\.(exe|scr|bat|cmd|com|pif|vbs|js)$", re.IGNORECASE),
    re.compile(r"^photo.*\.(exe|scr|bat|cmd|com|pif|vbs|js)$", re.IGNORECASE),
    re.compile(r"^scan.*\.(exe|scr|bat|cmd|com|pif|vbs|js)$", re.IGNORECASE),
    re.compile(r"\.(jpe?g|png|gif|docx?|pdf|txt|xlsx?)\.(exe|scr|bat|cmd|com|pif|vbs|js)$", re.IGNORECASE),
    re.compile(r"^\..*\.(exe|scr|bat|cmd|com|pif|vbs|js)$", re.IGNORECASE),
)

VALID_EXTENSION_RE = re.compile(r"^[a-z0-9]{1,4}$")

PE_MAGIC = b"MZ"
DOS_STUB = b"This program cannot be run in DOS mode"

ARCHIVE_SIGNATURES: dict[str, tuple[tuple[int, bytes], ...]] = {
    "zip": ((0, b"PK\x03\x04"), (0, b"PK\x05\x06"), (0, b"PK\x07\x08")),
    "jar": ((0, b"PK\x03\x04"), (0, b"PK\x05\x06"), (0, b"PK\x07\x08")),
    "rar": ((0, b"Rar!\x1a\x07\x00"), (0, b"Rar!\x1a\x07\x01\x00")),
    "7z": ((0, b"7z\xbc\xaf\x27\x1c"),),
    "gz": ((0, b"\x1f\x8b"),),
    "tgz": ((0, b"\x1f\x8b"),),
    "tar": ((257, b"ustar"),),
}

CONTENT_MARKERS: tuple[ContentMarker, ...] = (
    ContentMarker(DOS_STUB, "file.dos_stub", "DOS stub message"),
    ContentMarker(b"LoadLibraryA", "file.loader_api", "LoadLibraryA"),
    ContentMarker(b"GetProcAddress", "file.loader_api", "GetProcAddress"),
    ContentMarker(b"VirtualAlloc", "file.loader_api", "VirtualAlloc"),
    ContentMarker(b"CreateRemoteThread", "file.loader_api", "CreateRemoteThread"),
    ContentMarker(b"WinExec", "file.loader_api", "WinExec"),
    ContentMarker(b"ShellExecute", "file.loader_api", "ShellExecute"),
    ContentMarker(b"cmd.exe", "file.interpreter_token", "cmd.exe"),
    ContentMarker(b"powershell", "file.interpreter_token", "powershell"),
    ContentMarker(b"WScript.Shell", "file.interpreter_token", "WScript.Shell"),
    ContentMarker(b"/bin/sh -c", "file.interpreter_token", "/bin/sh -c"),
)

FILE_RULES: dict[str, FileRule] = {
    rule.id: rule
    for rule in (
        FileRule(
            "file.dangerous_extension",
            "dangerous_extension",
            "medium",
            5,
            "Dangerous extension (.{ext}): {description}",
        ),
        FileRule(
            "file.deceptive_filename",
            "deceptive_filename",
            "high",
            4,
            "Deceptive filename pattern: executable posing as an ordinary document",
        ),
        FileRule(
            "file.double_extension",
            "double_extension",
            "high",
            6,
            "Double extension (.{decoy}.{ext}): attempt to hide the real file type",
        ),
        FileRule(
            "file.pe_in_archive",
            "disguised_executable",
            "critical",
            8,
            "Disguised executable: Windows executable header found instead of a .{ext} archive header",
        ),
        FileRule(
            "file.pe_spoofed_extension",
            "extension_spoofing",
            "critical",
            8,
            "Extension spoofing: Windows executable structure disguised as .{ext}",
        ),
        FileRule(
            "file.pe_decoy_extension",
            "disguised_executable",
            "critical",
            8,
            "Disguised executable: Windows executable posing as a .{decoy} file",
        ),
        FileRule(
            "file.pe_confirmed",
            "executable_structure",
            "info",
            2,
            "Confirmed executable structure: Windows PE header present",
        ),
        FileRule(
            "file.archive_signature",
            "archive_signature",
            "high",
            4,
            "Invalid .{ext} archive structure: {detail}",
        ),
        FileRule(
            "file.spreadsheet_signature",
            "spreadsheet_signature",
            "high",
            4,
            "Invalid .{ext} spreadsheet container: expected {expected}, found {actual}",
        ),
        FileRule(
            "file.dos_stub",
            "embedded_marker",
            "high",
            8,
            "DOS stub message found: characteristic of Windows executables",
        ),
        FileRule(
            "file.loader_api",
            "embedded_marker",
            "low",
            2,
            "Executable loader API reference: {label}",
        ),
        FileRule(
            "file.interpreter_token",
            "embedded_marker",
            "low",
            2,
            "Command interpreter token: {label}",
        ),
        FileRule(
            "file.executable_in_archive",
            "executable_in_archive",
            "high",
            7,
            "Executable hidden inside an archive: {name}",
        ),
        FileRule(
            "file.archive_error",
            "archive_error",
            "medium",
            2,
            "Archive scan failed: {detail}",
        ),
        FileRule(
            "file.archive_limit",
            "archive_limit",
            "medium",
            2,
            "Archive limit reached: {detail}",
        ),
        FileRule(
            "file.archive_bomb",
            "archive_bomb",
            "critical",
            8,
            "Potential decompression bomb: {detail}",
        ),
    )
}

# Indicators counted towards the malware decision.
STRONG_MALWARE_INDICATORS = frozenset({"disguised_as_document", "archive_spoofed_as_executable"})
MALWARE_BONUS = 10
DOCUMENT_SCORE_CAP = 20
