from __future__ import annotations

import hashlib

from ..models.results import DigestSet


def compute_digests(data: bytes) -> DigestSet:
    return DigestSet(
        md5=hashlib.md5(data).hexdigest(),
        sha1=hashlib.sha1(data).hexdigest(),
        sha256=hashlib.sha256(data).hexdigest(),
    )
