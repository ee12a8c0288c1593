from __future__ import annotations

"""AES-256-GCM and Argon2id helpers backed by PyCryptodomex and argon2-cffi.

Every encryption call builds its own cipher object and draws a fresh 96-bit
nonce from the OS CSPRNG, so calls from worker threads never share nonce state.
"""

from typing import Tuple

from argon2.exceptions import HashingError
from argon2.low_level import Type as _ArgonType, hash_secret_raw as _argon_hash
from Cryptodome.Cipher import AES
from Cryptodome.Random import get_random_bytes

from .constants import (
    AES_KEY_SIZE,
    AES_NONCE_SIZE,
    AES_TAG_SIZE,
    ARGON2_SALT_SIZE,
    ARGON2_M_COST,
    ARGON2_T_COST,
    ARGON2_P_COST,
)
from .errors import AuthenticationError


def generate_random(size: int) -> bytes:
    """Cryptographically secure random bytes."""
    return get_random_bytes(size)


def generate_salt() -> bytes:
    return generate_random(ARGON2_SALT_SIZE)


def generate_key_material() -> bytes:
    return generate_random(AES_KEY_SIZE)


def derive_key(passphrase: str, salt: bytes, m_cost: int, t_cost: int, p_cost: int) -> bytes:
    """Derive a 256-bit key from ``passphrase`` with Argon2id.

    Args:
        passphrase: Operator passphrase (UTF-8 encoded before hashing).
        salt: Random salt, persisted alongside the cost parameters.
        m_cost: Memory cost in KiB.
        t_cost: Number of iterations.
        p_cost: Degree of parallelism (lanes).

    Returns:
        32 bytes of key material. Identical inputs always give identical keys.

    Raises:
        ValueError: If Argon2 rejects the parameters.
    """
    if len(salt) != ARGON2_SALT_SIZE:
        raise ValueError(f"Argon2 salt must be {ARGON2_SALT_SIZE} bytes")
    try:
        return _argon_hash(
            passphrase.encode("utf-8"),
            salt,
            time_cost=t_cost,
            memory_cost=m_cost,
            parallelism=p_cost,
            hash_len=AES_KEY_SIZE,
            type=_ArgonType.ID,
        )
    except HashingError as exc:
        raise ValueError(f"Invalid Argon2 parameters: {exc}") from exc


def new_key_from_passphrase(
    passphrase: str,
    *,
    m_cost: int = ARGON2_M_COST,
    t_cost: int = ARGON2_T_COST,
    p_cost: int = ARGON2_P_COST,
) -> Tuple[bytes, int, int, int, bytes]:
    """Draw a new salt and derive a key. Returns (salt, m_cost, t_cost, p_cost, key)."""
    salt = generate_salt()
    key = derive_key(passphrase, salt, m_cost, t_cost, p_cost)
    return salt, m_cost, t_cost, p_cost, key


def _check_key(key: bytes) -> None:
    if len(key) != AES_KEY_SIZE:
        raise ValueError(f"Key must be {AES_KEY_SIZE} bytes for AES-256-GCM")


def aead_encrypt(key: bytes, plaintext: bytes) -> Tuple[bytes, bytes]:
    """Encrypt and authenticate ``plaintext``.

    Returns (nonce, ciphertext) where the 16-byte tag is appended to the ciphertext.
    """
    _check_key(key)
    nonce = generate_random(AES_NONCE_SIZE)
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce, mac_len=AES_TAG_SIZE)
    ciphertext, tag = cipher.encrypt_and_digest(plaintext)
    return nonce, ciphertext + tag


def aead_decrypt(key: bytes, nonce: bytes, ciphertext: bytes) -> bytes:
    """Verify and decrypt ``ciphertext`` (with trailing tag) produced by :func:`aead_encrypt`."""
    _check_key(key)
    if len(nonce) != AES_NONCE_SIZE:
        raise AuthenticationError(f"Nonce must be {AES_NONCE_SIZE} bytes")
    if len(ciphertext) < AES_TAG_SIZE:
        raise AuthenticationError("Ciphertext too short")
    body, tag = ciphertext[:-AES_TAG_SIZE], ciphertext[-AES_TAG_SIZE:]
    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce, mac_len=AES_TAG_SIZE)
    try:
        return cipher.decrypt_and_verify(body, tag)
    except ValueError as exc:
        raise AuthenticationError("Authentication failed: ciphertext or nonce mismatch") from exc


__all__ = [
    "generate_random",
    "generate_salt",
    "generate_key_material",
    "derive_key",
    "new_key_from_passphrase",
    "aead_encrypt",
    "aead_decrypt",
]
