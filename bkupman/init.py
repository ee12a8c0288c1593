from __future__ import annotations

import logging
import os
from pathlib import Path

from .constants import DIRNAME_CRYPT, DIRNAME_INBOX, DIRNAME_REPO
from .errors import DirectoryNotEmptyError
from .ledger import Ledger, create_ledger, ledger_path

logger = logging.getLogger(__name__)


def check_empty_dir(dirpath: Path) -> None:
    """Raise DirectoryNotEmptyError if ``dirpath`` has any non-hidden entry."""
    for name in os.listdir(dirpath):
        if name.startswith("."):
            continue
        raise DirectoryNotEmptyError(f"Directory is not empty: {dirpath}")


def run_init(base_dir: Path, *, force: bool = False) -> Path:
    """Initialize ``base_dir`` as a repository.

    Creates inbox/, repo/, crypt/ and a default ledger. With ``force`` a
    non-empty directory is only warned about and existing pieces are kept.

    Returns:
        Path to the ledger file.
    """
    base_dir = Path(base_dir)
    try:
        check_empty_dir(base_dir)
    except DirectoryNotEmptyError as exc:
        if not force:
            raise
        logger.warning("%s (continuing: --force)", exc)

    for name in (DIRNAME_INBOX, DIRNAME_REPO, DIRNAME_CRYPT):
        (base_dir / name).mkdir(exist_ok=force)

    path = ledger_path(base_dir)
    if force and path.exists():
        logger.warning("Keeping existing ledger: %s", path)
        return path
    return create_ledger(base_dir, Ledger())
