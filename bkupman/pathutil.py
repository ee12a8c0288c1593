from __future__ import annotations

import re
from typing import Tuple

from .constants import MD5EXT, TIMESTAMP_MIN_DIGITS, TIMESTAMP_MAX_DIGITS
from .errors import InvalidFilenameError


# (not-dot)* (not-dot, not-digit) (digits)+ "." (any)*
_NAME_RE = re.compile(r"^([^.]*[^.0-9])([0-9]+)\.(.*)$")
_SEPARATORS = "-_"


def classify(name: str) -> Tuple[str, str, str]:
    """Split an inbox filename into (tag, timestamp, extension).

    Rules:
    - The prefix may not contain a dot and must end in a non-digit
    - The digit run (YYYYMMDD[hhmmss]) is 8..14 digits and is followed by a dot
    - Trailing '-' and '_' are trimmed from the prefix; it must stay non-empty
    - The extension may contain dots but must not be the sidecar extension

    ``hello-world-_-_-20240101.tar.bz2`` -> (``hello-world``, ``20240101``, ``tar.bz2``)
    """
    m = _NAME_RE.match(name)
    if m is None:
        raise InvalidFilenameError(f"Invalid file name: {name}")
    tag = m.group(1).rstrip(_SEPARATORS)
    digits = m.group(2)
    ext = m.group(3)
    if not tag:
        raise InvalidFilenameError(f"Invalid file name: {name}")
    if not TIMESTAMP_MIN_DIGITS <= len(digits) <= TIMESTAMP_MAX_DIGITS:
        raise InvalidFilenameError(
            f"Invalid file name: {name} (timestamp must be "
            f"{TIMESTAMP_MIN_DIGITS}..{TIMESTAMP_MAX_DIGITS} digits)"
        )
    if not ext:
        raise InvalidFilenameError(f"Invalid file name: {name} (missing extension)")
    if ext == MD5EXT or is_sidecar(name):
        raise InvalidFilenameError(f"Checksum sidecar is not a payload: {name}")
    return tag, digits, ext


def is_sidecar(name: str) -> bool:
    return name.endswith("." + MD5EXT)


def sidecar_name(name: str) -> str:
    return f"{name}.{MD5EXT}"


def stored_name(tag: str, timestamp: str, ext: str) -> str:
    return f"{tag}_{timestamp}.{ext}"


def fragment_name(stored: str, seq: int) -> str:
    return f"{stored}.{seq:06d}"
