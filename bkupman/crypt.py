from __future__ import annotations

import concurrent.futures as _fut
import hmac
import logging
import shutil
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

import tomli_w

from .constants import (
    CRYPTINFO_SUFFIX,
    DEFAULT_FRAGMENT_SIZE,
    DEFAULT_JOBS,
    DIRNAME_CRYPT,
    DIRNAME_REPO,
    MIN_FRAGMENT_SIZE,
)
from .cryptutil import derive_key
from .errors import BkupmanError, KeyMismatchError, MissingKeyError
from .fragment import encrypt_fragment, write_fragment
from .ledger import (
    Aes256GcmArgon2,
    CryptType,
    EncryptionRecord,
    FileVersion,
    Ledger,
    PlainText,
    crypt_type_from_dict,
    crypt_type_to_dict,
    with_locked_ledger,
)
from .pathutil import fragment_name
from .summary import RunSummary, UnitOutcome

logger = logging.getLogger(__name__)


def resolve_active_policy(policy: CryptType, passphrase: Optional[str]) -> CryptType:
    """Return the policy to encrypt with, carrying a key when one is available.

    A key saved in the ledger is used as-is. With a passphrase, the key is
    derived from the ledger's salt and costs and, if a saved key exists,
    checked against it.
    """
    if isinstance(policy, PlainText) or passphrase is None:
        return policy
    key = derive_key(passphrase, policy.salt, policy.m_cost, policy.t_cost, policy.p_cost)
    if policy.key is not None and not hmac.compare_digest(key, policy.key):
        raise KeyMismatchError("Passphrase does not match the saved key")
    return policy.with_key(key)


def cryptinfo_name(stored_name: str) -> str:
    return stored_name + CRYPTINFO_SUFFIX


def write_cryptinfo(path: Path, stored_name: str, record: EncryptionRecord) -> None:
    doc = {
        "stored_name": stored_name,
        "total_plaintext_size": record.total_plaintext_size,
        "fragment_size": record.fragment_size,
        "fragment_count": record.fragment_count,
        "crypt_type": crypt_type_to_dict(record.crypt_type),
    }
    path.write_text(tomli_w.dumps(doc), encoding="utf-8")


def read_cryptinfo(path: Path) -> Dict[str, Any]:
    doc = tomllib.loads(Path(path).read_text(encoding="utf-8"))
    doc["crypt_type"] = crypt_type_from_dict(doc["crypt_type"])
    return doc


def _clear_dir(path: Path) -> None:
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    path.mkdir(parents=True)


def _encrypt_version(
    repo: Path,
    crypt: Path,
    tag: str,
    version: FileVersion,
    policy: Aes256GcmArgon2,
    fragment_size: int,
) -> EncryptionRecord:
    """Fragment and encrypt one archived file into crypt/<tag>/.

    Any output of an earlier attempt for the tag is removed first.
    """
    if policy.key is None:
        raise MissingKeyError(f"No key available for {tag} (set a passphrase with 'key')")

    dst_dir = crypt / tag
    _clear_dir(dst_dir)

    src = repo / tag / version.stored_name
    total = 0
    seq = 0
    with open(src, "rb") as rf:
        while True:
            chunk = rf.read(fragment_size)
            if not chunk:
                break
            body = encrypt_fragment(policy.key, policy.salt, policy.m_cost, policy.t_cost, policy.p_cost, chunk)
            write_fragment(dst_dir / fragment_name(version.stored_name, seq), body)
            total += len(chunk)
            seq += 1

    record = EncryptionRecord(
        crypt_type=policy.without_key(),
        total_plaintext_size=total,
        fragment_size=fragment_size,
    )
    write_cryptinfo(dst_dir / cryptinfo_name(version.stored_name), version.stored_name, record)
    logger.info("Encrypted %s/%s into %d fragment(s)", tag, version.stored_name, seq)
    return record


def _run_unit(
    repo: Path,
    crypt: Path,
    tag: str,
    version: FileVersion,
    policy: CryptType,
    fragment_size: int,
) -> UnitOutcome:
    if isinstance(policy, PlainText):
        return UnitOutcome(name=version.stored_name, tag=tag, skipped=True)
    try:
        record = _encrypt_version(repo, crypt, tag, version, policy, fragment_size)
    except (BkupmanError, OSError) as exc:
        logger.warning("Crypt: %s/%s: %s", tag, version.stored_name, exc)
        return UnitOutcome(name=version.stored_name, tag=tag, error=exc)
    return UnitOutcome(name=version.stored_name, tag=tag, result=record)


def process_crypt(
    base_dir: Path,
    ledger: Ledger,
    policy: CryptType,
    fragment_size: int,
    *,
    jobs: int = DEFAULT_JOBS,
) -> List[UnitOutcome]:
    """Encrypt the latest unencrypted version of every tag and record the results.

    Must be called with the ledger lock held. ``policy`` is the active policy
    (possibly carrying an in-memory key); it is never written to the ledger.
    """
    repo = base_dir / DIRNAME_REPO
    crypt = base_dir / DIRNAME_CRYPT
    pending = ledger.pending_crypt()

    outcomes: List[UnitOutcome] = []
    if pending:
        with _fut.ThreadPoolExecutor(max_workers=max(1, int(jobs))) as ex:
            futures = [
                ex.submit(_run_unit, repo, crypt, tag, version, policy, fragment_size)
                for tag, version in pending
            ]
            for f in futures:
                outcomes.append(f.result())

    for o in outcomes:  # pending is already in tag order
        if o.ok:
            ledger.set_encryption(o.tag, o.name, o.result)
    return outcomes


def run_crypt(
    base_dir: Path,
    fragment_size: int = DEFAULT_FRAGMENT_SIZE,
    *,
    passphrase: Optional[str] = None,
    jobs: int = DEFAULT_JOBS,
) -> RunSummary:
    """Split and encrypt the latest files in the repository.

    Args:
        base_dir: Repository base directory.
        fragment_size: Plaintext bytes per fragment (at least 1 MiB).
        passphrase: Passphrase for the active Aes256GcmArgon2 policy; not needed
            when the key was saved in the ledger.
        jobs: Maximum parallel workers.

    Returns:
        A RunSummary; ``summary.ok`` is False when any tag failed. The ledger is
        committed once, including every tag that succeeded.

    Raises:
        ValueError: If fragment_size is below the minimum.
        KeyMismatchError: If the passphrase does not match a saved key.
        LockContentionError: If another command holds the ledger.
    """
    if fragment_size < MIN_FRAGMENT_SIZE:
        raise ValueError(f"Fragment size must be at least {MIN_FRAGMENT_SIZE} bytes")
    base_dir = Path(base_dir)
    holder: Dict[str, RunSummary] = {}

    def _proc(dirpath: Path, ledger: Ledger) -> Optional[Ledger]:
        active = resolve_active_policy(ledger.crypt_policy, passphrase)
        outcomes = process_crypt(dirpath, ledger, active, fragment_size, jobs=jobs)
        holder["summary"] = RunSummary.from_outcomes(outcomes)
        ledger.touch()
        return ledger

    committed = with_locked_ledger(base_dir, _proc)
    summary = holder["summary"]
    summary.committed = committed
    logger.info(
        "Crypt run: processed=%d failed=%d skipped=%d",
        summary.processed,
        summary.failed,
        summary.skipped,
    )
    return summary
