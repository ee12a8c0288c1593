from __future__ import annotations

import concurrent.futures as _fut
import os
import tempfile
import unittest
from pathlib import Path

from bkupman.constants import AES_KEY_SIZE, AES_NONCE_SIZE, AES_TAG_SIZE, ARGON2_SALT_SIZE
from bkupman.cryptutil import (
    aead_decrypt,
    aead_encrypt,
    derive_key,
    generate_key_material,
    generate_salt,
    new_key_from_passphrase,
)
from bkupman.errors import AuthenticationError
from bkupman.fragment import (
    FRAGMENT_HEADER_SIZE,
    FragmentHeader,
    decrypt_fragment,
    encrypt_fragment,
    split_fragment,
    write_fragment,
)

# Smallest Argon2 costs accepted by argon2-cffi; keeps tests fast.
M_COST = 8
T_COST = 1
P_COST = 1


class AeadTests(unittest.TestCase):
    def test_roundtrip(self):
        key = generate_key_material()
        self.assertEqual(len(key), AES_KEY_SIZE)
        for plaintext in (b"", b"hello", os.urandom(4096)):
            nonce, ct = aead_encrypt(key, plaintext)
            self.assertEqual(len(nonce), AES_NONCE_SIZE)
            self.assertEqual(len(ct), len(plaintext) + AES_TAG_SIZE)
            if plaintext:
                self.assertNotEqual(ct[: len(plaintext)], plaintext)
            self.assertEqual(aead_decrypt(key, nonce, ct), plaintext)

    def test_tamper_ciphertext(self):
        key = generate_key_material()
        nonce, ct = aead_encrypt(key, b"attack at dawn")
        for i in range(len(ct)):
            for bit in (0x01, 0x80):
                bad = bytearray(ct)
                bad[i] ^= bit
                with self.assertRaises(AuthenticationError):
                    aead_decrypt(key, nonce, bytes(bad))

    def test_tamper_nonce_and_key(self):
        key = generate_key_material()
        nonce, ct = aead_encrypt(key, b"payload")
        for i in range(len(nonce)):
            bad = bytearray(nonce)
            bad[i] ^= 0x01
            with self.assertRaises(AuthenticationError):
                aead_decrypt(key, bytes(bad), ct)
        with self.assertRaises(AuthenticationError):
            aead_decrypt(generate_key_material(), nonce, ct)
        with self.assertRaises(AuthenticationError):
            aead_decrypt(key, nonce, ct[:AES_TAG_SIZE - 1])

    def test_fresh_nonce_per_call(self):
        key = generate_key_material()
        with _fut.ThreadPoolExecutor(max_workers=8) as ex:
            nonces = list(ex.map(lambda _: aead_encrypt(key, b"x")[0], range(256)))
        self.assertEqual(len(set(nonces)), len(nonces))

    def test_rejects_short_key(self):
        with self.assertRaises(ValueError):
            aead_encrypt(b"\x00" * 16, b"data")


class KdfTests(unittest.TestCase):
    def test_determinism(self):
        salt = generate_salt()
        self.assertEqual(len(salt), ARGON2_SALT_SIZE)
        k1 = derive_key("password", salt, M_COST, T_COST, P_COST)
        k2 = derive_key("password", salt, M_COST, T_COST, P_COST)
        self.assertEqual(k1, k2)
        self.assertEqual(len(k1), AES_KEY_SIZE)

    def test_each_argument_changes_key(self):
        salt = generate_salt()
        base = derive_key("password", salt, M_COST, T_COST, P_COST)
        variants = [
            derive_key("passwore", salt, M_COST, T_COST, P_COST),
            derive_key("password", generate_salt(), M_COST, T_COST, P_COST),
            derive_key("password", salt, M_COST * 2, T_COST, P_COST),
            derive_key("password", salt, M_COST, T_COST + 1, P_COST),
            derive_key("password", salt, 16, T_COST, P_COST + 1),
        ]
        for v in variants:
            self.assertNotEqual(base, v)

    def test_new_key_matches_rederived(self):
        salt, m, t, p, key = new_key_from_passphrase("pw", m_cost=M_COST, t_cost=T_COST, p_cost=P_COST)
        self.assertEqual((m, t, p), (M_COST, T_COST, P_COST))
        self.assertEqual(derive_key("pw", salt, m, t, p), key)

    def test_invalid_parameters(self):
        with self.assertRaises(ValueError):
            derive_key("pw", b"short", M_COST, T_COST, P_COST)
        with self.assertRaises(ValueError):
            derive_key("pw", generate_salt(), M_COST, 0, P_COST)


class FragmentTests(unittest.TestCase):
    def test_header_layout(self):
        key = generate_key_material()
        salt = generate_salt()
        body = encrypt_fragment(key, salt, 19456, 2, 1, b"chunk")
        self.assertEqual(FRAGMENT_HEADER_SIZE, 16 + 4 * 3 + 12)
        self.assertEqual(body[:16], salt)
        self.assertEqual(body[16:20], (19456).to_bytes(4, "little"))
        self.assertEqual(body[20:24], (2).to_bytes(4, "little"))
        self.assertEqual(body[24:28], (1).to_bytes(4, "little"))
        header, ct = split_fragment(body)
        self.assertEqual(header.nonce, body[28:40])
        self.assertEqual(len(ct), len(b"chunk") + AES_TAG_SIZE)
        self.assertEqual(aead_decrypt(key, header.nonce, ct), b"chunk")

    def test_header_pack_unpack(self):
        h = FragmentHeader(salt=b"s" * 16, m_cost=1, t_cost=2, p_cost=3, nonce=b"n" * 12)
        self.assertEqual(FragmentHeader.unpack(h.pack()), h)
        with self.assertRaises(ValueError):
            FragmentHeader.unpack(b"\x00" * 10)

    def test_write_and_decrypt(self):
        with tempfile.TemporaryDirectory() as tmp:
            path = Path(tmp) / "f.000000"
            key = generate_key_material()
            data = os.urandom(1000)
            write_fragment(path, encrypt_fragment(key, generate_salt(), M_COST, T_COST, P_COST, data))
            self.assertEqual(decrypt_fragment(path, key), data)
            with self.assertRaises(FileExistsError):
                write_fragment(path, b"again")

            raw = bytearray(path.read_bytes())
            raw[-1] ^= 0x01
            path.write_bytes(bytes(raw))
            with self.assertRaises(AuthenticationError):
                decrypt_fragment(path, key)


if __name__ == "__main__":
    unittest.main()
