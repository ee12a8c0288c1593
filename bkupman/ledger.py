from __future__ import annotations

import fcntl
import logging
import math
import os
import sys
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, ClassVar, Dict, List, Optional, Tuple, Type, Union

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import tomli_w

from .constants import (
    AES_KEY_SIZE,
    ARGON2_SALT_SIZE,
    CONFIG_FILE_NAME,
    SCHEMA_VERSION,
)
from .errors import (
    LedgerFormatError,
    LockContentionError,
    RepositoryNotInitializedError,
)

logger = logging.getLogger(__name__)


# -------- Crypt policy (closed union) --------

@dataclass(frozen=True)
class PlainText:
    """No encryption."""

    name: ClassVar[str] = "PlainText"
    key: ClassVar[Optional[bytes]] = None

    def without_key(self) -> "PlainText":
        return self


@dataclass(frozen=True)
class Aes256GcmArgon2:
    """AES-256-GCM with a key derived from a passphrase by Argon2id.

    ``key`` is only populated in memory while encrypting, or when the operator
    explicitly asked to save it in the ledger.
    """

    salt: bytes
    m_cost: int
    t_cost: int
    p_cost: int
    key: Optional[bytes] = field(default=None, repr=False, compare=False)

    name: ClassVar[str] = "Aes256GcmArgon2"

    def __post_init__(self):
        if len(self.salt) != ARGON2_SALT_SIZE:
            raise ValueError(f"salt must be {ARGON2_SALT_SIZE} bytes")
        if self.key is not None and len(self.key) != AES_KEY_SIZE:
            raise ValueError(f"key must be {AES_KEY_SIZE} bytes")

    def without_key(self) -> "Aes256GcmArgon2":
        return replace(self, key=None)

    def with_key(self, key: bytes) -> "Aes256GcmArgon2":
        return replace(self, key=key)


CryptType = Union[PlainText, Aes256GcmArgon2]

CRYPT_TYPES: Dict[str, Type] = {
    PlainText.name: PlainText,
    Aes256GcmArgon2.name: Aes256GcmArgon2,
}


def parse_crypt_type_name(name: str) -> Type:
    try:
        return CRYPT_TYPES[name]
    except KeyError:
        valid = ", ".join(CRYPT_TYPES)
        raise ValueError(f"Unknown crypt type: {name!r} (valid: {valid})") from None


# -------- Repository model --------

@dataclass(frozen=True)
class EncryptionRecord:
    crypt_type: CryptType
    total_plaintext_size: int
    fragment_size: int

    def __post_init__(self):
        if self.fragment_size <= 0:
            raise ValueError("fragment_size must be positive")
        if self.total_plaintext_size < 0:
            raise ValueError("total_plaintext_size must not be negative")
        if self.crypt_type.key is not None:
            raise ValueError("EncryptionRecord must not carry key material")

    @property
    def fragment_count(self) -> int:
        return math.ceil(self.total_plaintext_size / self.fragment_size)


@dataclass
class FileVersion:
    stored_name: str
    checksum_sidecar_name: str
    encryption: Optional[EncryptionRecord] = None


@dataclass
class Ledger:
    schema_version: int = SCHEMA_VERSION
    updated_at: datetime = field(default_factory=lambda: datetime.now().astimezone())
    crypt_policy: CryptType = field(default_factory=PlainText)
    # tag -> versions, ordered by stored_name descending (latest first)
    repository: Dict[str, List[FileVersion]] = field(default_factory=dict)

    def touch(self) -> None:
        self.updated_at = datetime.now().astimezone()

    def add_version(self, tag: str, version: FileVersion) -> bool:
        """Insert ``version`` into the tag's history. Returns False on a duplicate name."""
        history = self.repository.setdefault(tag, [])
        if any(v.stored_name == version.stored_name for v in history):
            return False
        history.append(version)
        history.sort(key=lambda v: v.stored_name, reverse=True)
        return True

    def latest(self, tag: str) -> Optional[FileVersion]:
        history = self.repository.get(tag)
        return history[0] if history else None

    def find_version(self, tag: str, stored_name: str) -> Optional[FileVersion]:
        for v in self.repository.get(tag, []):
            if v.stored_name == stored_name:
                return v
        return None

    def set_encryption(self, tag: str, stored_name: str, record: EncryptionRecord) -> None:
        version = self.find_version(tag, stored_name)
        if version is None:
            raise KeyError(f"No such version: {tag}/{stored_name}")
        if version.encryption is not None:
            raise ValueError(f"Version already encrypted: {tag}/{stored_name}")
        version.encryption = record

    def pending_crypt(self) -> List[Tuple[str, FileVersion]]:
        """(tag, latest version) for every tag whose latest version is not encrypted."""
        pending = []
        for tag in sorted(self.repository):
            latest = self.latest(tag)
            if latest is not None and latest.encryption is None:
                pending.append((tag, latest))
        return pending


# -------- TOML codec --------

def crypt_type_to_dict(ct: CryptType) -> Dict[str, Any]:
    if isinstance(ct, PlainText):
        return {"type": PlainText.name}
    d: Dict[str, Any] = {
        "type": Aes256GcmArgon2.name,
        "salt": ct.salt.hex(),
        "m_cost": ct.m_cost,
        "t_cost": ct.t_cost,
        "p_cost": ct.p_cost,
    }
    if ct.key is not None:
        d["key"] = ct.key.hex()
    return d


def crypt_type_from_dict(d: Dict[str, Any]) -> CryptType:
    cls = parse_crypt_type_name(d.get("type", PlainText.name))
    if cls is PlainText:
        return PlainText()
    key = d.get("key")
    return Aes256GcmArgon2(
        salt=bytes.fromhex(d["salt"]),
        m_cost=int(d["m_cost"]),
        t_cost=int(d["t_cost"]),
        p_cost=int(d["p_cost"]),
        key=bytes.fromhex(key) if key is not None else None,
    )


def _version_to_dict(v: FileVersion) -> Dict[str, Any]:
    d: Dict[str, Any] = {
        "stored_name": v.stored_name,
        "checksum_sidecar_name": v.checksum_sidecar_name,
    }
    if v.encryption is not None:
        d["encryption"] = {
            "total_plaintext_size": v.encryption.total_plaintext_size,
            "fragment_size": v.encryption.fragment_size,
            "crypt_type": crypt_type_to_dict(v.encryption.crypt_type),
        }
    return d


def _version_from_dict(d: Dict[str, Any]) -> FileVersion:
    enc = d.get("encryption")
    record = None
    if enc is not None:
        record = EncryptionRecord(
            crypt_type=crypt_type_from_dict(enc["crypt_type"]),
            total_plaintext_size=int(enc["total_plaintext_size"]),
            fragment_size=int(enc["fragment_size"]),
        )
    return FileVersion(
        stored_name=d["stored_name"],
        checksum_sidecar_name=d["checksum_sidecar_name"],
        encryption=record,
    )


def dumps_ledger(ledger: Ledger) -> str:
    doc = {
        "schema_version": ledger.schema_version,
        "updated_at": ledger.updated_at,
        "crypt_policy": crypt_type_to_dict(ledger.crypt_policy),
        "repository": {
            tag: [_version_to_dict(v) for v in ledger.repository[tag]]
            for tag in sorted(ledger.repository)
        },
    }
    return tomli_w.dumps(doc)


def loads_ledger(text: str) -> Ledger:
    try:
        doc = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise LedgerFormatError(f"Ledger is not valid TOML: {exc}") from exc
    try:
        version = int(doc.get("schema_version", SCHEMA_VERSION))
        if version > SCHEMA_VERSION:
            raise LedgerFormatError(
                f"Ledger schema version {version} is newer than supported ({SCHEMA_VERSION})"
            )
        updated_at = doc.get("updated_at")
        if not isinstance(updated_at, datetime):
            updated_at = datetime.now().astimezone()
        repository: Dict[str, List[FileVersion]] = {}
        for tag, versions in doc.get("repository", {}).items():
            history = [_version_from_dict(v) for v in versions]
            history.sort(key=lambda v: v.stored_name, reverse=True)
            repository[tag] = history
        return Ledger(
            schema_version=version,
            updated_at=updated_at,
            crypt_policy=crypt_type_from_dict(doc.get("crypt_policy", {})),
            repository=repository,
        )
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise LedgerFormatError(f"Malformed ledger: {exc}") from exc


# -------- Storage --------

def ledger_path(base_dir: Path) -> Path:
    return Path(base_dir) / CONFIG_FILE_NAME


def create_ledger(base_dir: Path, ledger: Optional[Ledger] = None) -> Path:
    """Write a new ledger file; fails if one already exists."""
    path = ledger_path(base_dir)
    data = dumps_ledger(ledger or Ledger()).encode("utf-8")
    with open(path, "xb") as fh:
        fh.write(data)
    return path


def load_ledger(base_dir: Path) -> Ledger:
    """Read the ledger without taking the lock (inspection only)."""
    path = ledger_path(base_dir)
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise RepositoryNotInitializedError(f"Not a repository (missing {path})") from None
    return loads_ledger(text)


def with_locked_ledger(
    base_dir: Path,
    proc: Callable[[Path, Ledger], Optional[Ledger]],
) -> bool:
    """Run ``proc`` while holding an exclusive lock on the ledger file.

    1. Open base_dir/config.toml read/write and take a non-blocking exclusive flock
    2. Load the ledger and call ``proc(base_dir, ledger)``
    3. If ``proc`` returns a Ledger, rewrite the file through the locked descriptor

    Returns True when the ledger was rewritten.

    Raises:
        RepositoryNotInitializedError: If the ledger file does not exist.
        LockContentionError: If another process or command holds the lock.
    """
    base_dir = Path(base_dir)
    path = ledger_path(base_dir)
    try:
        fh = open(path, "r+b")
    except FileNotFoundError:
        raise RepositoryNotInitializedError(f"Not a repository (missing {path})") from None
    with fh:
        try:
            fcntl.flock(fh.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            raise LockContentionError(f"Ledger is locked by another process: {path}") from None
        try:
            ledger = loads_ledger(fh.read().decode("utf-8"))
            updated = proc(base_dir, ledger)
            if updated is None:
                return False
            # still locked
            data = dumps_ledger(updated).encode("utf-8")
            fh.seek(0)
            fh.truncate()
            fh.write(data)
            fh.flush()
            os.fsync(fh.fileno())
            logger.debug("Committed ledger %s (%d tags)", path, len(updated.repository))
            return True
        finally:
            fcntl.flock(fh.fileno(), fcntl.LOCK_UN)
