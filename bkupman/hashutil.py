from __future__ import annotations

import hashlib
import string
from pathlib import Path
from typing import BinaryIO

from .constants import IO_BLOCK_SIZE, MD5_HEX_LEN
from .errors import IntegrityError


def md5_stream(fh: BinaryIO) -> str:
    hasher = hashlib.md5()
    while True:
        block = fh.read(IO_BLOCK_SIZE)
        if not block:
            break
        hasher.update(block)
    return hasher.hexdigest()


def md5_file(path: Path) -> str:
    with open(path, "rb") as fh:
        return md5_stream(fh)


def read_sidecar(path: Path) -> str:
    """Return the digest stored in a checksum sidecar.

    Only the first whitespace-separated token is used, so both bare digests and
    ``md5sum``-style ``<digest>  <name>`` lines are accepted.

    Raises:
        IntegrityError: If the sidecar is not ASCII text.
    """
    try:
        text = path.read_text(encoding="ascii").strip()
    except UnicodeDecodeError:
        raise IntegrityError(f"Malformed checksum in {path}") from None
    token = text.split()[0] if text else ""
    return token.lower()


def write_sidecar(path: Path, digest: str) -> None:
    path.write_text(digest, encoding="ascii")


def is_hex_digest(text: str) -> bool:
    return len(text) == MD5_HEX_LEN and all(c in string.hexdigits for c in text)
