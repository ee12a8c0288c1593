from __future__ import annotations

import argparse
import getpass as _getpass
import logging
import sys
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from bkupman.constants import DEFAULT_FRAGMENT_SIZE, DEFAULT_JOBS
from bkupman.crypt import run_crypt
from bkupman.errors import BkupmanError
from bkupman.inbox import run_inbox
from bkupman.init import run_init
from bkupman.key import describe_crypt_type, run_key, show_key
from bkupman.ledger import Aes256GcmArgon2, CRYPT_TYPES, load_ledger
from bkupman.summary import RunSummary
from bkupman.testfile import run_test_file
from bkupman.util import parse_size


def _prompt_passphrase(confirm: bool) -> str:
    pw = _getpass.getpass("Passphrase: ")
    if confirm and _getpass.getpass("Input again: ") != pw:
        raise ValueError("Passphrase mismatch")
    return pw


def _print_summary(summary: RunSummary, quiet: bool) -> None:
    if not quiet:
        for name, message in summary.errors:
            print(f"FAIL     {name}: {message}")
    print(summary.describe())


def cmd_init(base_dir: Path, *, force: bool = False) -> bool:
    """Initialize an empty directory as a repository."""
    path = run_init(base_dir, force=force)
    print(f"Initialized repository: {path.parent}")
    return True


def cmd_key(
    base_dir: Path,
    *,
    crypt_type: str = Aes256GcmArgon2.name,
    passphrase: Optional[str] = None,
    save_key: bool = False,
    show: bool = False,
) -> bool:
    """Set the encryption policy (or show the current one).

    Args:
        base_dir: Repository base directory.
        crypt_type: Name of the crypt type to install.
        passphrase: Passphrase; prompted (with confirmation) when omitted.
        save_key: Also store the derived key in the ledger.
        show: Only print the current policy.
    """
    if show:
        print(show_key(base_dir))
        return True
    if crypt_type != "PlainText" and passphrase is None:
        passphrase = _prompt_passphrase(confirm=True)
    policy = run_key(base_dir, crypt_type, passphrase, save_key=save_key)
    print(describe_crypt_type(policy if save_key else policy.without_key()))
    return True


def cmd_inbox(base_dir: Path, *, jobs: int = DEFAULT_JOBS, quiet: bool = False) -> bool:
    """Process new files in inbox/."""
    summary = run_inbox(base_dir, jobs=jobs)
    _print_summary(summary, quiet)
    return summary.ok


def cmd_crypt(
    base_dir: Path,
    *,
    fragment_size: int = DEFAULT_FRAGMENT_SIZE,
    passphrase: Optional[str] = None,
    jobs: int = DEFAULT_JOBS,
    quiet: bool = False,
) -> bool:
    """Split and encrypt the latest files in repo/.

    The passphrase is prompted for only when the policy needs one and no key
    was saved in the ledger.
    """
    if passphrase is None:
        policy = load_ledger(base_dir).crypt_policy
        if isinstance(policy, Aes256GcmArgon2) and policy.key is None:
            passphrase = _prompt_passphrase(confirm=False)
    summary = run_crypt(base_dir, fragment_size, passphrase=passphrase, jobs=jobs)
    _print_summary(summary, quiet)
    return summary.ok


def cmd_test_file(base_dir: Path, *, size: int = 1 << 20, count: int = 1, random: bool = False) -> bool:
    """Create test file(s) into inbox/."""
    for p in run_test_file(base_dir, size=size, count=count, random=random):
        print(f"OK: {p}")
    return True


# name -> (description, handler taking (base_dir, args))
CommandTable = Dict[str, Tuple[str, Callable[[Path, argparse.Namespace], bool]]]


def build_command_table() -> CommandTable:
    return {
        "init": (
            "Initialize directory as repository",
            lambda d, a: cmd_init(d, force=a.force),
        ),
        "key": (
            "Set encrypt/decrypt key",
            lambda d, a: cmd_key(d, crypt_type=a.type, passphrase=a.passphrase, save_key=a.save_key, show=a.show),
        ),
        "inbox": (
            "Process new files in inbox/",
            lambda d, a: cmd_inbox(d, jobs=a.jobs, quiet=a.quiet),
        ),
        "crypt": (
            "Split and encrypt files in repo/",
            lambda d, a: cmd_crypt(
                d, fragment_size=a.fragment_size, passphrase=a.passphrase, jobs=a.jobs, quiet=a.quiet
            ),
        ),
        "test-file": (
            "Create test file(s) into inbox/",
            lambda d, a: cmd_test_file(d, size=a.size, count=a.count, random=a.random),
        ),
    }


def _size_arg(s: str) -> int:
    try:
        return parse_size(s)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e))


def build_parser(table: CommandTable) -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="bkupman",
        description="Backup inbox ingestion and encryption-at-rest manager",
        epilog="Subcommands:\n" + "".join(f"  {name}\n      {desc}\n" for name, (desc, _) in table.items()),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    ap.add_argument("-C", "--directory", default=".", help="Repository base directory (default: current directory)")
    ap.add_argument("-v", "--verbose", action="store_true", help="Log progress (INFO level)")
    sub = ap.add_subparsers(dest="cmd", required=True, metavar="COMMAND")

    ap_init = sub.add_parser("init", help=table["init"][0])
    ap_init.add_argument("--force", action="store_true", help="Continue even if the directory is not empty")

    ap_key = sub.add_parser("key", help=table["key"][0])
    ap_key.add_argument("--type", choices=list(CRYPT_TYPES), default=Aes256GcmArgon2.name, help="Crypt type")
    ap_key.add_argument("--passphrase", help="Passphrase (prompted when omitted)")
    ap_key.add_argument("--save-key", action="store_true", help="Store the derived key in config.toml")
    ap_key.add_argument("--show", action="store_true", help="Show the current crypt settings and exit")

    ap_inbox = sub.add_parser("inbox", help=table["inbox"][0])
    ap_inbox.add_argument("--jobs", "-j", type=int, default=DEFAULT_JOBS, help=f"Parallel jobs (default {DEFAULT_JOBS})")
    ap_inbox.add_argument("--quiet", action="store_true", help="limit outputs to summaries only")

    ap_crypt = sub.add_parser("crypt", help=table["crypt"][0])
    ap_crypt.add_argument(
        "--fragment-size",
        type=_size_arg,
        default=DEFAULT_FRAGMENT_SIZE,
        help="Fragment size, e.g. 4m (default 16m, minimum 1m)",
    )
    ap_crypt.add_argument("--passphrase", help="Passphrase (prompted when needed)")
    ap_crypt.add_argument("--jobs", "-j", type=int, default=DEFAULT_JOBS, help=f"Parallel jobs (default {DEFAULT_JOBS})")
    ap_crypt.add_argument("--quiet", action="store_true", help="limit outputs to summaries only")

    ap_test = sub.add_parser("test-file", help=table["test-file"][0])
    ap_test.add_argument("--size", "-s", type=_size_arg, default=1 << 20, help="File size (default=1m)")
    ap_test.add_argument("--count", "-c", type=int, default=1, help="File count (default=1)")
    ap_test.add_argument("--random", "-r", action="store_true", help="Fill with random data (default=false)")

    return ap


def main(argv: List[str] | None = None):
    table = build_command_table()
    ap = build_parser(table)
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    base_dir = Path(args.directory)
    try:
        _desc, handler = table[args.cmd]
        ok = handler(base_dir, args)
    except (ValueError, BkupmanError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
