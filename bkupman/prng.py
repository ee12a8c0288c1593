from __future__ import annotations

import os
import struct
from typing import Optional

_MASK64 = (1 << 64) - 1
_WORDS_PER_BLOCK = 1024
_BLOCK_STRUCT = struct.Struct(f"<{_WORDS_PER_BLOCK}Q")


def seed64() -> int:
    """Non-zero random seed for :class:`Xorshift64`."""
    while True:
        seed = int.from_bytes(os.urandom(8), "little")
        if seed:
            return seed


def xorshift64(x: int) -> int:
    x ^= (x << 13) & _MASK64
    x ^= x >> 7
    x ^= (x << 17) & _MASK64
    return x


class Xorshift64:
    """Fast non-cryptographic byte generator for synthetic test payloads."""

    def __init__(self, seed: Optional[int] = None):
        self.state = seed if seed else seed64()
        self.buffer = b""
        self.pos = 0

    def _refill(self):
        words = []
        x = self.state
        for _ in range(_WORDS_PER_BLOCK):
            x = xorshift64(x)
            words.append(x)
        self.state = x
        self.buffer = _BLOCK_STRUCT.pack(*words)
        self.pos = 0

    def next_bytes(self, n: int) -> bytes:
        out = bytearray()
        while len(out) < n:
            if self.pos >= len(self.buffer):
                self._refill()
            take = min(n - len(out), len(self.buffer) - self.pos)
            out += self.buffer[self.pos : self.pos + take]
            self.pos += take
        return bytes(out)
