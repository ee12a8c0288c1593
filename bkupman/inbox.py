from __future__ import annotations

import concurrent.futures as _fut
import logging
import os
import shutil
import stat
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .constants import DIRNAME_INBOX, DIRNAME_REPO, DEFAULT_JOBS
from .errors import BkupmanError, FilesystemError, IntegrityError
from .hashutil import md5_file, read_sidecar, write_sidecar, is_hex_digest
from .ledger import FileVersion, Ledger, with_locked_ledger
from .pathutil import classify, is_sidecar, sidecar_name, stored_name
from .summary import RunSummary, UnitOutcome

logger = logging.getLogger(__name__)


def _list_inbox(inbox: Path) -> List[str]:
    """Names of inbox entries that are candidate payloads (sidecars excluded)."""
    return sorted(name for name in os.listdir(inbox) if not is_sidecar(name))


def _ingest_file(inbox: Path, repo: Path, name: str) -> Tuple[str, FileVersion]:
    """Verify one inbox payload against its sidecar and move it into the repository.

    The inbox copy is only removed after the archived payload and its sidecar
    are fully written; on any failure before that point the inbox is untouched.
    """
    src = inbox / name
    st = os.lstat(src)
    if not stat.S_ISREG(st.st_mode):
        raise FilesystemError(f"Not a regular file: {src}")

    tag, timestamp, ext = classify(name)

    src_md5 = inbox / sidecar_name(name)
    try:
        expected = read_sidecar(src_md5)
    except FileNotFoundError:
        raise FilesystemError(f"Checksum file not found: {src_md5}") from None
    if not is_hex_digest(expected):
        raise IntegrityError(f"Malformed checksum in {src_md5}")

    actual = md5_file(src)
    if actual != expected:
        raise IntegrityError(f"Checksum mismatch: {name} (expected {expected}, got {actual})")

    dst_dir = repo / tag
    dst_dir.mkdir(parents=True, exist_ok=True)
    dst_name = stored_name(tag, timestamp, ext)
    dst = dst_dir / dst_name
    dst_md5_name = sidecar_name(dst_name)
    try:
        wf = open(dst, "xb")
    except FileExistsError:
        raise FilesystemError(f"Destination already exists: {dst}") from None
    try:
        with wf, open(src, "rb") as rf:
            shutil.copyfileobj(rf, wf)
        write_sidecar(dst_dir / dst_md5_name, actual)
    except OSError:
        # drop partial output so a later run can retry
        for p in (dst, dst_dir / dst_md5_name):
            try:
                os.remove(p)
            except FileNotFoundError:
                pass
        raise

    # archived; leftovers in inbox/ are only reported
    for p in (src, src_md5):
        try:
            os.remove(p)
        except OSError as exc:
            logger.warning("Inbox: archived %s but could not remove %s: %s", name, p, exc)
    logger.info("Archived %s -> %s/%s", name, tag, dst_name)
    return tag, FileVersion(stored_name=dst_name, checksum_sidecar_name=dst_md5_name)


def _run_unit(inbox: Path, repo: Path, name: str) -> UnitOutcome:
    try:
        tag, version = _ingest_file(inbox, repo, name)
    except (BkupmanError, OSError) as exc:
        logger.warning("Inbox: %s: %s", name, exc)
        return UnitOutcome(name=name, error=exc)
    return UnitOutcome(name=name, tag=tag, result=version)


def process_inbox(base_dir: Path, ledger: Ledger, *, jobs: int = DEFAULT_JOBS) -> List[UnitOutcome]:
    """Ingest every inbox payload concurrently and fold the successes into ``ledger``.

    Must be called with the ledger lock held. Returns all per-file outcomes.
    """
    inbox = base_dir / DIRNAME_INBOX
    repo = base_dir / DIRNAME_REPO
    names = _list_inbox(inbox)

    outcomes: List[UnitOutcome] = []
    if names:
        with _fut.ThreadPoolExecutor(max_workers=max(1, int(jobs))) as ex:
            for outcome in ex.map(lambda n: _run_unit(inbox, repo, n), names):
                outcomes.append(outcome)

    for o in sorted((o for o in outcomes if o.ok), key=lambda o: (o.tag, o.name)):
        if not ledger.add_version(o.tag, o.result):
            logger.warning("Inbox: %s already recorded under tag %s", o.result.stored_name, o.tag)
    return outcomes


def run_inbox(base_dir: Path, *, jobs: int = DEFAULT_JOBS) -> RunSummary:
    """Process new files in inbox/ and record them in the ledger.

    Args:
        base_dir: Repository base directory.
        jobs: Maximum parallel workers.

    Returns:
        A RunSummary; ``summary.ok`` is False when any file failed. Files that
        succeeded are committed to the ledger regardless.

    Raises:
        LockContentionError: If another command holds the ledger.
        RepositoryNotInitializedError: If base_dir is not a repository.
    """
    base_dir = Path(base_dir)
    holder: Dict[str, RunSummary] = {}

    def _proc(dirpath: Path, ledger: Ledger) -> Optional[Ledger]:
        outcomes = process_inbox(dirpath, ledger, jobs=jobs)
        summary = RunSummary.from_outcomes(outcomes)
        holder["summary"] = summary
        if summary.processed == 0:
            return None
        ledger.touch()
        return ledger

    committed = with_locked_ledger(base_dir, _proc)
    summary = holder["summary"]
    summary.committed = committed
    logger.info("Inbox run: processed=%d failed=%d", summary.processed, summary.failed)
    return summary
