"""
Test suite for hdpay_core.crypto_utils — AES-256-GCM helpers and blob fields.

Covers:
  - Local key derivation
  - AES-GCM encrypt / decrypt, fresh IVs, tag verification
  - Blob field splitting and hex decoding
  - Local ``iv:tag:ct`` blob sealing / opening
"""

import hashlib
import unittest

from hdpay_core.crypto_utils import (
    IV_SIZE,
    TAG_SIZE,
    aes_gcm_decrypt,
    aes_gcm_encrypt,
    decode_gcm_fields,
    derive_local_key,
    open_local,
    seal_local,
    split_fields,
)
from hdpay_core.errors import DecryptionFailed, MalformedBlob

KEY = bytes(range(32))


class TestLocalKey(unittest.TestCase):

    def test_matches_sha256_of_suffixed_seed(self):
        self.assertEqual(
            derive_local_key("seed"),
            hashlib.sha256(b"seed:hd-key-data").digest(),
        )

    def test_length(self):
        self.assertEqual(len(derive_local_key("x")), 32)

    def test_distinct_per_seed(self):
        self.assertNotEqual(derive_local_key("a"), derive_local_key("b"))


class TestAesGcm(unittest.TestCase):

    def test_roundtrip(self):
        iv, tag, ct = aes_gcm_encrypt(KEY, b"payload")
        self.assertEqual(len(iv), IV_SIZE)
        self.assertEqual(len(tag), TAG_SIZE)
        self.assertEqual(aes_gcm_decrypt(KEY, iv, tag, ct), b"payload")

    def test_fresh_iv(self):
        a = aes_gcm_encrypt(KEY, b"same")
        b = aes_gcm_encrypt(KEY, b"same")
        self.assertNotEqual(a[0], b[0])
        self.assertNotEqual(a[2], b[2])

    def test_wrong_key(self):
        iv, tag, ct = aes_gcm_encrypt(KEY, b"payload")
        with self.assertRaises(DecryptionFailed):
            aes_gcm_decrypt(bytes(32), iv, tag, ct)

    def test_flipped_tag(self):
        iv, tag, ct = aes_gcm_encrypt(KEY, b"payload")
        bad = bytes([tag[0] ^ 1]) + tag[1:]
        with self.assertRaises(DecryptionFailed):
            aes_gcm_decrypt(KEY, iv, bad, ct)


class TestFields(unittest.TestCase):

    def test_split_ok(self):
        self.assertEqual(split_fields("a:b:c", ":", 3), ["a", "b", "c"])

    def test_split_wrong_count(self):
        with self.assertRaises(MalformedBlob):
            split_fields("a:b", ":", 3)
        with self.assertRaises(MalformedBlob):
            split_fields("a:b:c:d", ":", 3)

    def test_split_non_string(self):
        with self.assertRaises(MalformedBlob):
            split_fields(None, ":", 3)

    def test_decode_non_hex(self):
        with self.assertRaises(MalformedBlob):
            decode_gcm_fields("zz" * 16, "00" * 16, "00")

    def test_decode_uppercase_hex(self):
        with self.assertRaises(MalformedBlob):
            decode_gcm_fields("AB" * 16, "00" * 16, "00")

    def test_decode_whitespace(self):
        with self.assertRaises(MalformedBlob):
            decode_gcm_fields("00" * 16, "00" * 16, "00 11")

    def test_decode_odd_length(self):
        with self.assertRaises(MalformedBlob):
            decode_gcm_fields("00" * 16, "00" * 16, "001")

    def test_decode_short_iv(self):
        with self.assertRaises(MalformedBlob):
            decode_gcm_fields("00" * 12, "00" * 16, "00")

    def test_malformed_is_decryption_failure(self):
        self.assertTrue(issubclass(MalformedBlob, DecryptionFailed))


class TestLocalBlob(unittest.TestCase):

    def test_seal_open(self):
        blob = seal_local(KEY, '{"merchantIndex":1,"paymentIndex":2}')
        self.assertEqual(blob.count(":"), 2)
        self.assertEqual(open_local(KEY, blob), '{"merchantIndex":1,"paymentIndex":2}')

    def test_hex_lowercase(self):
        blob = seal_local(KEY, "x")
        self.assertEqual(blob, blob.lower())

    def test_open_with_other_key(self):
        blob = seal_local(KEY, "x")
        with self.assertRaises(DecryptionFailed):
            open_local(derive_local_key("other"), blob)


if __name__ == "__main__":
    unittest.main()
