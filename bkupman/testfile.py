from __future__ import annotations

import concurrent.futures as _fut
import hashlib
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .constants import DEFAULT_JOBS, DIRNAME_INBOX, IO_BLOCK_SIZE
from .hashutil import write_sidecar
from .ledger import Ledger, with_locked_ledger
from .pathutil import sidecar_name
from .prng import Xorshift64

logger = logging.getLogger(__name__)


def create_test_file(path: Path, md5path: Path, size: int, random: bool) -> Path:
    """Write ``size`` bytes (zeros or xorshift64 noise) and a matching md5 sidecar."""
    hasher = hashlib.md5()
    with open(path, "xb") as fh:
        if random:
            gen = Xorshift64()
            rest = size
            while rest > 0:
                block = gen.next_bytes(min(rest, IO_BLOCK_SIZE))
                fh.write(block)
                hasher.update(block)
                rest -= len(block)
        else:
            fh.truncate(size)
            zeros = bytes(IO_BLOCK_SIZE)
            rest = size
            while rest > 0:
                n = min(rest, IO_BLOCK_SIZE)
                hasher.update(zeros[:n])
                rest -= n
    write_sidecar(md5path, hasher.hexdigest())
    logger.info("Created %s size=%d random=%s", path, size, random)
    return path


def run_test_file(
    base_dir: Path,
    *,
    size: int = 1 << 20,
    count: int = 1,
    random: bool = False,
    jobs: int = DEFAULT_JOBS,
) -> List[Path]:
    """Create ``count`` test files with sidecars in inbox/.

    Runs under the ledger lock so it cannot interleave with inbox processing;
    the ledger itself is never modified.
    """
    holder: List[Path] = []

    def _proc(dirpath: Path, _ledger: Ledger) -> Optional[Ledger]:
        inbox = dirpath / DIRNAME_INBOX
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        targets = []
        for i in range(count):
            name = f"testfile-{i:05d}_{stamp}.bin"
            targets.append((inbox / name, inbox / sidecar_name(name)))
        with _fut.ThreadPoolExecutor(max_workers=max(1, int(jobs))) as ex:
            futures = [ex.submit(create_test_file, p, m, size, random) for p, m in targets]
            for f in futures:
                holder.append(f.result())
        return None

    with_locked_ledger(Path(base_dir), _proc)
    return holder
