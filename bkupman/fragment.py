from __future__ import annotations

import struct
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Tuple

from .constants import AES_NONCE_SIZE, AES_TAG_SIZE, ARGON2_SALT_SIZE
from .cryptutil import aead_decrypt, aead_encrypt
from .errors import AuthenticationError


# Fragment header (fixed 40 bytes, little endian)
# struct: <16s I I I 12s
#  - salt[16]     Argon2 salt
#  - m_cost u32   Argon2 memory cost (KiB)
#  - t_cost u32   Argon2 iterations
#  - p_cost u32   Argon2 lanes
#  - nonce[12]    AES-GCM nonce
# followed by ciphertext || tag[16]
_FRAGMENT_HDR_STRUCT = struct.Struct(f"<{ARGON2_SALT_SIZE}sIII{AES_NONCE_SIZE}s")
FRAGMENT_HEADER_SIZE = _FRAGMENT_HDR_STRUCT.size


@dataclass
class FragmentHeader:
    salt: bytes
    m_cost: int
    t_cost: int
    p_cost: int
    nonce: bytes

    def pack(self) -> bytes:
        return _FRAGMENT_HDR_STRUCT.pack(self.salt, self.m_cost, self.t_cost, self.p_cost, self.nonce)

    @classmethod
    def unpack(cls, raw: bytes) -> "FragmentHeader":
        if len(raw) < FRAGMENT_HEADER_SIZE:
            raise ValueError("Fragment header too short")
        salt, m_cost, t_cost, p_cost, nonce = _FRAGMENT_HDR_STRUCT.unpack_from(raw)
        return cls(salt=salt, m_cost=m_cost, t_cost=t_cost, p_cost=p_cost, nonce=nonce)


def encrypt_fragment(key: bytes, salt: bytes, m_cost: int, t_cost: int, p_cost: int, plaintext: bytes) -> bytes:
    """Encrypt one chunk and return the full fragment body (header + ciphertext + tag)."""
    nonce, ciphertext = aead_encrypt(key, plaintext)
    header = FragmentHeader(salt=salt, m_cost=m_cost, t_cost=t_cost, p_cost=p_cost, nonce=nonce)
    return header.pack() + ciphertext


def write_fragment(path: Path, body: bytes) -> None:
    # a leftover fragment means the crypt directory was not cleared
    with open(path, "xb") as fh:
        fh.write(body)


def split_fragment(body: bytes) -> Tuple[FragmentHeader, bytes]:
    if len(body) < FRAGMENT_HEADER_SIZE + AES_TAG_SIZE:
        raise AuthenticationError("Fragment too short")
    return FragmentHeader.unpack(body), body[FRAGMENT_HEADER_SIZE:]


def read_fragment(path: Path) -> Tuple[FragmentHeader, bytes]:
    return split_fragment(Path(path).read_bytes())


def decrypt_fragment(path: Path, key: bytes) -> bytes:
    header, ciphertext = read_fragment(path)
    return aead_decrypt(key, header.nonce, ciphertext)


def decrypt_fragments(paths: Iterable[Path], key: bytes) -> bytes:
    """Decrypt fragments in the given order and concatenate the plaintext."""
    out = bytearray()
    for p in paths:
        out += decrypt_fragment(p, key)
    return bytes(out)
