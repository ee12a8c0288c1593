from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Optional

from .constants import ARGON2_M_COST, ARGON2_T_COST, ARGON2_P_COST
from .cryptutil import new_key_from_passphrase
from .ledger import (
    Aes256GcmArgon2,
    CryptType,
    Ledger,
    PlainText,
    parse_crypt_type_name,
    with_locked_ledger,
)

logger = logging.getLogger(__name__)


def describe_crypt_type(policy: CryptType) -> str:
    if isinstance(policy, PlainText):
        return "PlainText (no encryption)"
    lines = [
        "AES key derived from passphrase by Argon2",
        f"salt  : {policy.salt.hex()}",
        f"m_cost: {policy.m_cost}",
        f"t_cost: {policy.t_cost}",
        f"p_cost: {policy.p_cost}",
    ]
    if policy.key is not None:
        lines.append("key   : SAVED (able to check passphrase)")
    else:
        lines.append("key   : NODATA (passphrase needed)")
    return "\n".join(lines)


def run_key(
    base_dir: Path,
    crypt_type_name: str = Aes256GcmArgon2.name,
    passphrase: Optional[str] = None,
    *,
    save_key: bool = False,
    m_cost: int = ARGON2_M_COST,
    t_cost: int = ARGON2_T_COST,
    p_cost: int = ARGON2_P_COST,
) -> CryptType:
    """Install a new crypt policy in the ledger.

    For Aes256GcmArgon2 a fresh salt is drawn and the key derived from
    ``passphrase``. The raw key is written to the ledger only with
    ``save_key``; the returned policy always carries it so the caller can use
    it for the rest of the process.

    Raises:
        ValueError: On an unknown type name, a missing passphrase or bad costs.
    """
    cls = parse_crypt_type_name(crypt_type_name)
    if cls is PlainText:
        policy: CryptType = PlainText()
        stored: CryptType = policy
    else:
        if passphrase is None:
            raise ValueError(f"{crypt_type_name} requires a passphrase")
        logger.info("Generate a new random salt and derive the key from the passphrase")
        salt, m, t, p, key = new_key_from_passphrase(passphrase, m_cost=m_cost, t_cost=t_cost, p_cost=p_cost)
        policy = Aes256GcmArgon2(salt=salt, m_cost=m, t_cost=t, p_cost=p, key=key)
        stored = policy if save_key else policy.without_key()

    def _proc(_dirpath: Path, ledger: Ledger) -> Optional[Ledger]:
        ledger.crypt_policy = stored
        ledger.touch()
        return ledger

    with_locked_ledger(base_dir, _proc)
    return policy


def show_key(base_dir: Path) -> str:
    """Describe the active policy; takes the lock so a concurrent writer is reported."""
    holder: Dict[str, CryptType] = {}

    def _proc(_dirpath: Path, ledger: Ledger) -> Optional[Ledger]:
        holder["policy"] = ledger.crypt_policy
        return None

    with_locked_ledger(base_dir, _proc)
    return describe_crypt_type(holder["policy"])
