"""
Address text encoding ("StrKey") for Ed25519 keys.

A StrKey is ``base32(version_byte || payload || crc16_xmodem_le)``:

  - account public keys use version ``6 << 3`` and start with ``G``
  - secret seeds use version ``18 << 3`` and start with ``S``

A 32-byte payload always encodes to exactly 56 characters, so no
base32 padding is ever emitted.
"""

from __future__ import annotations

import base64
import binascii
import struct

from hdpay_core.errors import InvalidStrKey

VERSION_ACCOUNT_ID = 6 << 3    # 'G'
VERSION_SEED = 18 << 3         # 'S'

_KEY_LEN = 32
_ENCODED_LEN = 56


def crc16_xmodem(data: bytes) -> bytes:
    """CRC16-XMODEM of *data*, little-endian as StrKey expects."""
    return struct.pack("<H", binascii.crc_hqx(data, 0))


def _encode(version: int, payload: bytes) -> str:
    if len(payload) != _KEY_LEN:
        raise InvalidStrKey(f"Expected a {_KEY_LEN}-byte key, got {len(payload)}")
    body = bytes([version]) + payload
    return base64.b32encode(body + crc16_xmodem(body)).decode("ascii")


def _decode(version: int, encoded: str) -> bytes:
    if not isinstance(encoded, str) or len(encoded) != _ENCODED_LEN:
        raise InvalidStrKey("StrKey must be a 56-character string")
    try:
        raw = base64.b32decode(encoded.encode("ascii"))
    except (binascii.Error, UnicodeEncodeError) as exc:
        raise InvalidStrKey(f"StrKey is not valid base32: {exc}") from exc

    body, checksum = raw[:-2], raw[-2:]
    if body[0] != version:
        raise InvalidStrKey(f"Unexpected version byte {body[0]:#x}")
    if crc16_xmodem(body) != checksum:
        raise InvalidStrKey("StrKey checksum mismatch")
    return body[1:]


def encode_account_id(public_key: bytes) -> str:
    """Encode a raw 32-byte Ed25519 public key as a ``G...`` address."""
    return _encode(VERSION_ACCOUNT_ID, public_key)


def encode_secret_seed(seed: bytes) -> str:
    """Encode a raw 32-byte Ed25519 seed as an ``S...`` secret."""
    return _encode(VERSION_SEED, seed)


def decode_account_id(address: str) -> bytes:
    return _decode(VERSION_ACCOUNT_ID, address)


def decode_secret_seed(secret: str) -> bytes:
    return _decode(VERSION_SEED, secret)


def is_valid_account_id(address: str) -> bool:
    try:
        decode_account_id(address)
    except InvalidStrKey:
        return False
    return True
