"""
Symmetric crypto helpers shared by the secret providers and index codec.

AES-256-GCM with a fresh random 16-byte IV per call; blobs are written
as lowercase hex fields joined by a delimiter in the fixed order
``iv, tag, ciphertext``.
"""

from __future__ import annotations

import hashlib
import os
import re

from Crypto.Cipher import AES

from hdpay_core.errors import DecryptionFailed, MalformedBlob

IV_SIZE = 16
TAG_SIZE = 16
KEY_SIZE = 32

LOCAL_KEY_SUFFIX = ":hd-key-data"
LOCAL_DELIMITER = ":"

_HEX_FIELD_RE = re.compile(r"(?:[0-9a-f]{2})*")


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def derive_local_key(master_seed: str) -> bytes:
    """AES key for local blobs: SHA-256(seed || ":hd-key-data")."""
    return sha256((master_seed + LOCAL_KEY_SUFFIX).encode("utf-8"))


# ── AES-256-GCM ──────────────────────────────────────────────────

def aes_gcm_encrypt(key: bytes, plaintext: bytes) -> tuple[bytes, bytes, bytes]:
    """Encrypt *plaintext*. Returns (iv, tag, ciphertext)."""
    iv = os.urandom(IV_SIZE)
    cipher = AES.new(key, AES.MODE_GCM, nonce=iv)
    ciphertext, tag = cipher.encrypt_and_digest(plaintext)
    return iv, tag, ciphertext


def aes_gcm_decrypt(key: bytes, iv: bytes, tag: bytes, ciphertext: bytes) -> bytes:
    """Decrypt and verify. Raises DecryptionFailed when the tag does not match."""
    cipher = AES.new(key, AES.MODE_GCM, nonce=iv)
    try:
        return cipher.decrypt_and_verify(ciphertext, tag)
    except ValueError as exc:
        raise DecryptionFailed("Authentication tag verification failed") from exc


# ── blob fields ──────────────────────────────────────────────────

def split_fields(blob: str, delimiter: str, count: int) -> list[str]:
    if not isinstance(blob, str):
        raise MalformedBlob(f"Encrypted blob must be a string, got {type(blob).__name__}")
    parts = blob.split(delimiter)
    if len(parts) != count:
        raise MalformedBlob(f"Expected {count} fields, found {len(parts)}")
    return parts


def decode_gcm_fields(iv_hex: str, tag_hex: str, ct_hex: str) -> tuple[bytes, bytes, bytes]:
    # Only the encoder's exact form: lowercase, even length, no whitespace.
    fields = (iv_hex, tag_hex, ct_hex)
    if not all(_HEX_FIELD_RE.fullmatch(f) for f in fields):
        raise MalformedBlob("Encrypted blob fields must be lowercase hex")
    iv, tag, ciphertext = (bytes.fromhex(f) for f in fields)
    if len(iv) != IV_SIZE or len(tag) != TAG_SIZE:
        raise MalformedBlob("Encrypted blob has a bad IV or tag length")
    return iv, tag, ciphertext


def encode_gcm_fields(iv: bytes, tag: bytes, ciphertext: bytes) -> list[str]:
    return [iv.hex(), tag.hex(), ciphertext.hex()]


def seal_local(key: bytes, plaintext: str) -> str:
    """Encrypt to the local ``iv:tag:ciphertext`` blob format."""
    fields = encode_gcm_fields(*aes_gcm_encrypt(key, plaintext.encode("utf-8")))
    return LOCAL_DELIMITER.join(fields)


def open_local(key: bytes, blob: str) -> str:
    iv, tag, ciphertext = decode_gcm_fields(*split_fields(blob, LOCAL_DELIMITER, 3))
    return aes_gcm_decrypt(key, iv, tag, ciphertext).decode("utf-8")
