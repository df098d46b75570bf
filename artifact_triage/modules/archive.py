from __future__ import annotations

import gzip
import io
import logging
import posixpath
import struct
import tarfile
import zipfile
from dataclasses import dataclass
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

ZIP_UTF8_FLAG = 0x800
ZIP_ENCRYPTED_FLAG = 0x1

# Errors raised while opening or reading a container.
ARCHIVE_ERRORS = (
    zipfile.BadZipFile,
    zipfile.LargeZipFile,
    tarfile.TarError,
    gzip.BadGzipFile,
    EOFError,
    OSError,
    KeyError,
    ValueError,
    RuntimeError,
    NotImplementedError,
    struct.error,
)


class ArchiveError(RuntimeError):
    pass


class UnsupportedArchiveError(ArchiveError):
    pass


@dataclass
class ArchiveMember:
    name: str
    size: int
    compressed_size: Optional[int]
    ref: object = None

    @property
    def compression_ratio(self) -> Optional[float]:
        if not self.compressed_size:
            return None
        return self.size / self.compressed_size


class EntryBudget:
    """Counts archive entries visited across one whole request."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.used = 0

    def take(self) -> bool:
        if self.used >= self.limit:
            return False
        self.used += 1
        return True

    @property
    def exhausted(self) -> bool:
        return self.used >= self.limit


def recover_zip_name(info: zipfile.ZipInfo, encodings: Iterable[str] = ("cp949",)) -> str:
    """Re-decode a legacy (non-UTF-8) zip entry name.

    zipfile decodes names without the UTF-8 flag as cp437; regional archivers
    often wrote UTF-8 or a local code page there instead.
    """
    name = info.filename
    if info.flag_bits & ZIP_UTF8_FLAG:
        return name
    try:
        raw = name.encode("cp437")
    except UnicodeEncodeError:
        return name
    if raw.isascii():
        return name
    for encoding in ("utf-8", *encodings):
        try:
            return raw.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            continue
    return name


class ArchiveReader:
    def members(self) -> list[ArchiveMember]:
        raise NotImplementedError

    def read(self, member: ArchiveMember, limit: int) -> bytes:
        raise NotImplementedError

    def close(self) -> None:
        pass


class ZipReader(ArchiveReader):
    def __init__(self, data: bytes, encodings: Iterable[str]) -> None:
        self._zip = zipfile.ZipFile(io.BytesIO(data))
        self._encodings = tuple(encodings)

    def members(self) -> list[ArchiveMember]:
        out = []
        for info in self._zip.infolist():
            if info.is_dir():
                continue
            out.append(
                ArchiveMember(
                    name=recover_zip_name(info, self._encodings),
                    size=info.file_size,
                    compressed_size=info.compress_size,
                    ref=info,
                )
            )
        return out

    def read(self, member: ArchiveMember, limit: int) -> bytes:
        info = member.ref
        if info.flag_bits & ZIP_ENCRYPTED_FLAG:
            raise ArchiveError("entry is encrypted")
        with self._zip.open(info) as fh:
            return fh.read(limit + 1)

    def close(self) -> None:
        self._zip.close()


class TarReader(ArchiveReader):
    def __init__(self, data: bytes) -> None:
        self._tar = tarfile.open(fileobj=io.BytesIO(data), mode="r:*")

    def members(self) -> list[ArchiveMember]:
        return [
            ArchiveMember(name=m.name, size=m.size, compressed_size=None, ref=m)
            for m in self._tar.getmembers()
            if m.isfile()
        ]

    def read(self, member: ArchiveMember, limit: int) -> bytes:
        fh = self._tar.extractfile(member.ref)
        if fh is None:
            raise ArchiveError(f"cannot read {member.name}")
        with fh:
            return fh.read(limit + 1)

    def close(self) -> None:
        self._tar.close()


class GzipReader(ArchiveReader):
    """A bare gzip stream holds exactly one member, named after the outer file."""

    def __init__(self, data: bytes, filename: str) -> None:
        if len(data) < 18 or not data.startswith(b"\x1f\x8b"):
            raise ArchiveError("not a gzip stream")
        self._data = data
        base = posixpath.basename(filename.replace("\\", "/"))
        self._name = base[:-3] if base.lower().endswith(".gz") else base + ".out"
        # ISIZE trailer: uncompressed size modulo 2**32.
        (self._size,) = struct.unpack("<I", data[-4:])

    def members(self) -> list[ArchiveMember]:
        return [ArchiveMember(name=self._name, size=self._size, compressed_size=len(self._data))]

    def read(self, member: ArchiveMember, limit: int) -> bytes:
        with gzip.GzipFile(fileobj=io.BytesIO(self._data)) as fh:
            return fh.read(limit + 1)


def open_archive(ext: str, data: bytes, filename: str, encodings: Iterable[str] = ()) -> ArchiveReader:
    if ext in ("zip", "jar"):
        return ZipReader(data, encodings)
    if ext in ("tar", "tgz"):
        return TarReader(data)
    if ext == "gz":
        return GzipReader(data, filename)
    raise UnsupportedArchiveError(f".{ext} extraction is not supported")
