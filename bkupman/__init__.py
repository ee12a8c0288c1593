"""
bkupman: backup inbox ingestion and encryption-at-rest manager.

Features:

- inbox/ drop zone: every payload is verified against its ``.md5sum`` sidecar
  and archived as ``repo/<tag>/<tag>_<timestamp>.<ext>``; the tag comes from
  the filename prefix.
- Ledger (config.toml) holding each tag's version history and the active
  crypt policy, rewritten only under an exclusive file lock.
- crypt: the newest plain version of each tag is split into fixed-size
  fragments, each AES-256-GCM encrypted with an Argon2id passphrase key and
  prefixed by a self-describing header.

The raw key is kept in memory only, unless the operator explicitly saves it.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "ledger",
    "inbox",
    "crypt",
    "key",
    "cryptutil",
    "fragment",
]

# Programmatic entry points: bkupman.inbox.run_inbox, bkupman.crypt.run_crypt,
# bkupman.key.run_key and bkupman.ledger.with_locked_ledger.
