"""
Hierarchical deterministic Ed25519 key derivation.

Implements SLIP-0010 style derivation for the ed25519 curve, which only
supports hardened children.  Every payment address lives at

    m/44'/148'/<merchant_index>'/<payment_index>'

(148 is the registered coin type of the payment network).  Given the
same 64-byte seed and path the derivation always yields the same
keypair, which is what lets the service discard secret keys and
rebuild them later from the two indices alone.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import struct
from dataclasses import dataclass

from nacl.exceptions import BadSignatureError
from nacl.signing import SigningKey, VerifyKey

from hdpay_core.errors import IndexOutOfRange, InvalidPath
from hdpay_core.strkey import (
    decode_secret_seed,
    encode_account_id,
    encode_secret_seed,
)

PURPOSE = 44
COIN_TYPE = 148
HARDENED = 0x80000000
MAX_INDEX = HARDENED - 1

_CURVE_KEY = b"ed25519 seed"
_HEX_SEED_RE = re.compile(r"[0-9a-fA-F]{64}")
_PATH_RE = re.compile(r"^m/44'/148'/([0-9]+)'/([0-9]+)'\Z")


# ===================================================================
#  Seed expansion
# ===================================================================

def expand_seed(master_seed: str) -> bytes:
    """
    Turn the operator-supplied master seed into a 64-byte derivation seed.

    A 64-character hex string is treated as a raw 32-byte secret and
    doubled to fill 64 bytes; anything else is hashed with SHA-512.
    """
    if _HEX_SEED_RE.fullmatch(master_seed):
        seed32 = bytes.fromhex(master_seed)
        return seed32 + seed32
    return hashlib.sha512(master_seed.encode("utf-8")).digest()


# ===================================================================
#  Path handling
# ===================================================================

def check_index(value: int, name: str = "index") -> int:
    """Reject anything the hardened-index encoding cannot represent."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise IndexOutOfRange(f"{name} must be an int, got {type(value).__name__}")
    if value < 0 or value > MAX_INDEX:
        raise IndexOutOfRange(f"{name} {value} outside [0, 2^31)")
    return value


def format_path(merchant_index: int, payment_index: int) -> str:
    check_index(merchant_index, "merchant_index")
    check_index(payment_index, "payment_index")
    return f"m/{PURPOSE}'/{COIN_TYPE}'/{merchant_index}'/{payment_index}'"


def parse_path(path: str) -> tuple[int, int]:
    """Parse ``m/44'/148'/N'/M'`` into ``(N, M)``; raise InvalidPath otherwise."""
    if not isinstance(path, str):
        raise InvalidPath(f"Derivation path must be a string, got {type(path).__name__}")
    match = _PATH_RE.match(path)
    if match is None:
        raise InvalidPath(f"Malformed derivation path: {path!r}")
    merchant_index, payment_index = int(match.group(1)), int(match.group(2))
    if merchant_index > MAX_INDEX or payment_index > MAX_INDEX:
        raise InvalidPath(f"Path segment out of range in {path!r}")
    return merchant_index, payment_index


# ===================================================================
#  HD node
# ===================================================================

class HDNode:
    """
    A private key plus chain code at some depth of the tree.

    Only hardened children exist on ed25519, so ``derive_child`` takes
    the plain index and sets the hardened bit itself.
    """

    def __init__(self, private_key: bytes, chain_code: bytes, depth: int = 0,
                 index: int = 0):
        self.private_key = private_key
        self.chain_code = chain_code
        self.depth = depth
        self.index = index

    @classmethod
    def from_seed(cls, seed: bytes) -> HDNode:
        """Create the master node from a seed (64 bytes in production)."""
        I = hmac.new(_CURVE_KEY, seed, hashlib.sha512).digest()
        return cls(private_key=I[:32], chain_code=I[32:])

    def derive_child(self, index: int) -> HDNode:
        check_index(index)
        data = b"\x00" + self.private_key + struct.pack(">I", index + HARDENED)
        I = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        return HDNode(
            private_key=I[:32],
            chain_code=I[32:],
            depth=self.depth + 1,
            index=index + HARDENED,
        )

    def derive_path(self, path: str) -> HDNode:
        """
        Derive along a path such as ``"m/44'/148'/0'"``.

        Every component must carry the hardened marker.
        """
        if path == "m":
            return self
        if not path.startswith("m/"):
            raise InvalidPath(f"Path must start with 'm/': {path!r}")

        node = self
        for component in path[2:].split("/"):
            digits = component[:-1]
            if not component.endswith("'") or not (digits.isascii() and digits.isdigit()):
                raise InvalidPath(f"Non-hardened or malformed segment {component!r}")
            node = node.derive_child(int(digits))
        return node

    @property
    def public_key(self) -> bytes:
        """Raw 32-byte Ed25519 public key for this node's private key."""
        return bytes(SigningKey(self.private_key).verify_key)

    def to_keypair(self) -> Keypair:
        return Keypair.from_raw_seed(self.private_key)


# ===================================================================
#  Keypair
# ===================================================================

@dataclass(frozen=True)
class Keypair:
    """Ed25519 keypair with StrKey text forms."""

    raw_seed: bytes
    raw_public_key: bytes

    @classmethod
    def from_raw_seed(cls, seed: bytes) -> Keypair:
        sk = SigningKey(seed)
        return cls(raw_seed=bytes(seed), raw_public_key=bytes(sk.verify_key))

    @classmethod
    def from_secret(cls, secret: str) -> Keypair:
        return cls.from_raw_seed(decode_secret_seed(secret))

    @property
    def public_key(self) -> str:
        return encode_account_id(self.raw_public_key)

    @property
    def secret_key(self) -> str:
        return encode_secret_seed(self.raw_seed)

    def sign(self, message: bytes) -> bytes:
        return SigningKey(self.raw_seed).sign(message).signature

    def verify(self, message: bytes, signature: bytes) -> bool:
        try:
            VerifyKey(self.raw_public_key).verify(message, signature)
            return True
        except BadSignatureError:
            return False

    def __repr__(self) -> str:
        return f"Keypair({self.public_key})"


def derive_keypair(seed: bytes, merchant_index: int, payment_index: int) -> Keypair:
    """Derive the payment keypair at m/44'/148'/merchant'/payment'."""
    check_index(merchant_index, "merchant_index")
    check_index(payment_index, "payment_index")
    node = (
        HDNode.from_seed(seed)
        .derive_child(PURPOSE)
        .derive_child(COIN_TYPE)
        .derive_child(merchant_index)
        .derive_child(payment_index)
    )
    return node.to_keypair()
