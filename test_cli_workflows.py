from __future__ import annotations

import os
import subprocess
import sys
import tempfile
import unittest
from pathlib import Path

from bkupman.fragment import decrypt_fragments
from bkupman.ledger import load_ledger


class CLIIntegrationTests(unittest.TestCase):
    def run_cli(self, args, *, expect: int | None = 0, base: Path | None = None):
        cmd = [sys.executable, "-m", "bkupman.cli"]
        if base is not None:
            cmd += ["-C", str(base)]
        cmd += list(args)
        env = os.environ.copy()
        repo_root = Path(__file__).resolve().parent
        existing = env.get("PYTHONPATH", "")
        env["PYTHONPATH"] = str(repo_root) if not existing else f"{repo_root}{os.pathsep}{existing}"
        proc = subprocess.run(
            cmd,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            env=env,
        )
        if expect is not None and proc.returncode != expect:
            raise AssertionError(
                f"CLI exited {proc.returncode}, expected {expect}\nCommand: {' '.join(cmd)}\nSTDOUT:\n{proc.stdout}\nSTDERR:\n{proc.stderr}"
            )
        return proc

    def make_repo(self) -> Path:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        base = Path(tmp.name)
        self.run_cli(["init"], base=base)
        return base

    def test_init(self):
        base = self.make_repo()
        for name in ("inbox", "repo", "crypt", "config.toml"):
            self.assertTrue((base / name).exists(), name)

        proc = self.run_cli(["init"], base=base, expect=2)
        self.assertIn("Error:", proc.stderr)
        self.assertIn("not empty", proc.stderr)

        before = (base / "config.toml").read_bytes()
        self.run_cli(["init", "--force"], base=base)
        self.assertEqual((base / "config.toml").read_bytes(), before)

    def test_init_ignores_hidden_entries(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        base = Path(tmp.name)
        (base / ".git").mkdir()
        self.run_cli(["init"], base=base)
        self.assertTrue((base / "config.toml").exists())

    def test_full_workflow(self):
        base = self.make_repo()

        proc = self.run_cli(["test-file", "--count", "2", "--size", "1k"], base=base)
        self.assertEqual(proc.stdout.count("OK: "), 2)
        payloads = sorted(p for p in os.listdir(base / "inbox") if not p.endswith(".md5sum"))
        self.assertEqual(len(payloads), 2)
        self.assertTrue(all(p.startswith("testfile-0000") for p in payloads))

        proc = self.run_cli(["inbox"], base=base)
        self.assertIn("Summary: processed=2 failed=0", proc.stdout)
        self.assertEqual(os.listdir(base / "inbox"), [])
        ledger = load_ledger(base)
        self.assertEqual(sorted(ledger.repository), ["testfile-00000", "testfile-00001"])

        proc = self.run_cli(["key", "--passphrase", "hunter2"], base=base)
        self.assertIn("NODATA", proc.stdout)
        self.assertIsNone(load_ledger(base).crypt_policy.key)

        proc = self.run_cli(["crypt", "--fragment-size", "1m", "--passphrase", "hunter2"], base=base)
        self.assertIn("Summary: processed=2 failed=0", proc.stdout)
        proc = self.run_cli(["crypt", "--fragment-size", "1m", "--passphrase", "hunter2"], base=base)
        self.assertIn("Summary: processed=0 failed=0", proc.stdout)

        ledger = load_ledger(base)
        for tag, versions in ledger.repository.items():
            record = versions[0].encryption
            self.assertIsNotNone(record)
            self.assertEqual(record.total_plaintext_size, 1024)
            self.assertEqual(record.fragment_count, 1)

    def test_saved_key_allows_crypt_without_passphrase(self):
        base = self.make_repo()
        self.run_cli(["test-file", "--size", "2k", "--random"], base=base)
        self.run_cli(["inbox", "--quiet"], base=base)

        proc = self.run_cli(["key", "--passphrase", "hunter2", "--save-key"], base=base)
        self.assertIn("SAVED", proc.stdout)
        proc = self.run_cli(["key", "--show"], base=base)
        self.assertIn("SAVED", proc.stdout)

        proc = self.run_cli(["crypt", "--fragment-size", "1m"], base=base)
        self.assertIn("Summary: processed=1 failed=0", proc.stdout)

        ledger = load_ledger(base)
        (tag,) = ledger.repository
        stored = ledger.latest(tag).stored_name
        frags = sorted((base / "crypt" / tag).glob(f"{stored}.0*"))
        self.assertEqual(decrypt_fragments(frags, ledger.crypt_policy.key), (base / "repo" / tag / stored).read_bytes())

    def test_inbox_failure_exit_code(self):
        base = self.make_repo()
        (base / "inbox" / "report-20240601.txt").write_bytes(b"payload")
        (base / "inbox" / "report-20240601.txt.md5sum").write_text("0" * 32)
        proc = self.run_cli(["inbox"], base=base, expect=1)
        self.assertIn("FAIL", proc.stdout)
        self.assertIn("Summary: processed=0 failed=1", proc.stdout)

        proc = self.run_cli(["inbox", "--quiet"], base=base, expect=1)
        self.assertNotIn("FAIL", proc.stdout)

    def test_invalid_arguments(self):
        base = self.make_repo()
        proc = self.run_cli(["crypt", "--fragment-size", "12x"], base=base, expect=2)
        self.assertIn("fragment-size", proc.stderr)
        proc = self.run_cli(["crypt", "--fragment-size", "1k", "--passphrase", "p"], base=base, expect=2)
        self.assertIn("Error:", proc.stderr)

    def test_not_initialized(self):
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        proc = self.run_cli(["inbox"], base=Path(tmp.name), expect=2)
        self.assertIn("Error:", proc.stderr)

    def test_help_lists_subcommands(self):
        proc = self.run_cli(["--help"])
        for name in ("init", "key", "inbox", "crypt", "test-file"):
            self.assertIn(name, proc.stdout)


if __name__ == "__main__":
    unittest.main()
