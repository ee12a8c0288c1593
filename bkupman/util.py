from __future__ import annotations

_UNITS = {
    "k": 1 << 10,
    "m": 1 << 20,
    "g": 1 << 30,
    "t": 1 << 40,
}

_U64_MAX = (1 << 64) - 1


def parse_size(s: str) -> int:
    """Parse a byte count with an optional k/m/g/t suffix (binary units, any case).

    ``"4m"`` -> 4194304. Plain digits only; values beyond u64 are rejected.
    """
    if not s or not s.isascii():
        raise ValueError(f"Invalid size: {s!r}")
    unit = _UNITS.get(s[-1].lower(), 1)
    num = s[:-1] if unit != 1 else s
    if not num.isdigit():
        raise ValueError(f"Invalid size: {s!r}")
    value = int(num) * unit
    if value > _U64_MAX:
        raise ValueError(f"Size overflow: {s!r}")
    return value
