"""Extension and content-type helpers."""

from __future__ import annotations

import posixpath

import filetype

from ..signatures.file_rules import (
    ARCHIVE_SIGNATURES,
    DEFAULT_MIME_TYPE,
    MIME_TYPES,
)

OLE_MAGIC = b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1"

# filetype extension -> container kind the rules compare against.
FILETYPE_KINDS = {
    "exe": "pe",
    "dll": "pe",
    "docx": "zip",
    "xlsx": "zip",
    "pptx": "zip",
    "odt": "zip",
    "ods": "zip",
    "odp": "zip",
    "epub": "zip",
    "doc": "ole",
    "xls": "ole",
    "ppt": "ole",
    "gz": "gzip",
    "jpg": "jpeg",
}

FORMAT_DESCRIPTIONS = {
    "pe": "Windows executable",
    "elf": "ELF executable",
    "zip": "ZIP archive",
    "ole": "OLE compound document",
    "pdf": "PDF document",
    "rar": "RAR archive",
    "7z": "7-Zip archive",
    "gzip": "gzip stream",
    "tar": "tar archive",
    "png": "PNG image",
    "jpeg": "JPEG image",
    "gif": "GIF image",
    "html": "HTML document",
    "unknown": "unknown format",
}


def extension_of(filename: str) -> str:
    base = posixpath.basename(filename.replace("\\", "/"))
    if "." not in base.strip("."):
        return ""
    return base.rsplit(".", 1)[1].lower()


def guess_mime_type(filename: str) -> str:
    return MIME_TYPES.get(extension_of(filename), DEFAULT_MIME_TYPE)


def sniff_type(data: bytes) -> str:
    if not data:
        return "unknown"
    guess = filetype.guess(data)
    if guess is not None:
        return FILETYPE_KINDS.get(guess.extension, guess.extension)
    # filetype only names OLE files it can tie to a specific Office format.
    if data.startswith(OLE_MAGIC):
        return "ole"
    head = data[:64].lstrip().lower()
    if head.startswith((b"<!doctype html", b"<html")):
        return "html"
    return "unknown"


def matches_archive_signature(ext: str, data: bytes) -> bool:
    for offset, magic in ARCHIVE_SIGNATURES.get(ext, ()):
        if data[offset : offset + len(magic)] == magic:
            return True
    return False


def describe_format(kind: str) -> str:
    return FORMAT_DESCRIPTIONS.get(kind, f"{kind.upper()} file")
