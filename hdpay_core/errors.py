"""
Error taxonomy for the HD payment-address engine.

Input errors subclass ``ValueError`` and lookup misses subclass
``LookupError`` so callers can catch either the precise type or the
built-in family.  Backend failures subclass ``RuntimeError``.
``MalformedBlob`` is also a ``DecryptionFailed``, so every rejected index
blob can be caught as one type.
"""

from __future__ import annotations


class HDWalletError(Exception):
    """Base class for every error raised by hdpay_core."""


# ── secret backend ───────────────────────────────────────────────

class SecretUnavailable(HDWalletError, RuntimeError):
    """The master seed is unconfigured or its backend is unreachable."""


class KMSOperationFailed(HDWalletError, RuntimeError):
    """A managed-key call (encrypt / data-key / re-wrap) failed."""


# ── caller input ─────────────────────────────────────────────────

class IndexOutOfRange(HDWalletError, ValueError):
    """A derivation index is outside [0, 2**31)."""


class InvalidPath(HDWalletError, ValueError):
    """A derivation path string is not of the form m/44'/148'/N'/M'."""


class InvalidStrKey(HDWalletError, ValueError):
    """An address string failed version, length or checksum validation."""


# ── lookups ──────────────────────────────────────────────────────

class NotFound(HDWalletError, LookupError):
    """No stored merchant index or payment index for the given identifier."""


# ── encrypted index blobs ────────────────────────────────────────

class DecryptionFailed(HDWalletError, RuntimeError):
    """Authentication tag did not verify: tampering or corruption."""


class MalformedBlob(DecryptionFailed, ValueError):
    """An encrypted index blob has the wrong field count or encoding."""


# ── allocation ───────────────────────────────────────────────────

class AllocationConflict(HDWalletError, RuntimeError):
    """The backing store could not complete an atomic index allocation."""


class StorageFailure(HDWalletError, RuntimeError):
    """The backing store failed outside an allocation (e.g. locked database)."""
