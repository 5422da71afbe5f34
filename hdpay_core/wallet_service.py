"""
HD wallet service: one unique receiving address per payment.

No secret key is ever stored.  Each payment gets the keypair at

    m/44'/148'/<merchant_index>'/<payment_index>'

derived from the master seed, and only the public key plus the
encrypted index pair are persisted.  Sweeping funds later rebuilds the
secret key from those indices.

Usage:
    service = HDWalletService.from_config(load_config("hdpay.toml"))
    addr = service.create_payment_address("merchant_A", "pay_123")
    kp = service.regenerate_keypair_for_payment("merchant_A", "pay_123")
"""

from __future__ import annotations

import hmac
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from hdpay_core.allocator import IndexAllocator
from hdpay_core.derivation import (
    Keypair,
    check_index,
    derive_keypair,
    expand_seed,
    format_path,
    parse_path,
)
from hdpay_core.errors import InvalidStrKey, NotFound
from hdpay_core.index_codec import IndexCodec
from hdpay_core.secret_providers import (
    SecretProvider,
    direct_provider,
    provider_from_config,
)
from hdpay_core.storage import IndexStore
from hdpay_core.strkey import is_valid_account_id

if TYPE_CHECKING:
    from hdpay_core.config import HDPayConfig

logger = logging.getLogger("hdpay_wallet")


@dataclass(frozen=True)
class DerivedAddress:
    """What a caller creating a payment gets back."""
    public_key: str
    merchant_index: int
    payment_index: int
    derivation_path: str
    encrypted_key_data: str | None = None

    def to_dict(self) -> dict:
        return {
            "public_key": self.public_key,
            "merchant_index": self.merchant_index,
            "payment_index": self.payment_index,
            "derivation_path": self.derivation_path,
            "encrypted_key_data": self.encrypted_key_data,
        }


class HDWalletService:
    """Composes secret provider, allocator, deriver and index codec."""

    def __init__(self, provider: SecretProvider, store: IndexStore):
        self.provider = provider
        self.store = store
        self.allocator = IndexAllocator(store)
        self.codec = IndexCodec(provider)

    # ---- constructors ----

    @classmethod
    def from_seed(cls, master_seed: str, store: IndexStore | None = None) -> HDWalletService:
        """Literal seed, in-memory store unless one is given (tests, tooling)."""
        return cls(direct_provider(master_seed), store or IndexStore(":memory:"))

    @classmethod
    def from_config(cls, cfg: HDPayConfig) -> HDWalletService:
        store = IndexStore(cfg.storage.path, busy_timeout_ms=cfg.storage.busy_timeout_ms)
        return cls(provider_from_config(cfg.secrets), store)

    # ---- derivation core ----

    def _derivation_seed(self) -> bytes:
        return expand_seed(self.provider.get_master_seed())

    def _derive(self, merchant_index: int, payment_index: int) -> Keypair:
        return derive_keypair(self._derivation_seed(), merchant_index, payment_index)

    # ---- new payments ----

    def derive_payment_address(self, merchant_id: str, payment_id: str) -> DerivedAddress:
        """
        Allocate indices for a new payment and derive its address.

        Consumes a payment index even if the caller never persists the
        payment.
        """
        merchant_index = self.allocator.allocate_merchant_index(merchant_id)
        payment_index = self.allocator.allocate_next_payment_index(merchant_id)
        keypair = self._derive(merchant_index, payment_index)
        path = format_path(merchant_index, payment_index)
        logger.info(f"Derived {keypair.public_key} for {merchant_id}/{payment_id} at {path}")
        return DerivedAddress(
            public_key=keypair.public_key,
            merchant_index=merchant_index,
            payment_index=payment_index,
            derivation_path=path,
        )

    def create_payment_address(self, merchant_id: str, payment_id: str) -> DerivedAddress:
        """Derive an address, encrypt its indices and record the payment row."""
        derived = self.derive_payment_address(merchant_id, payment_id)
        blob = self.encrypt_key_data(derived.merchant_index, derived.payment_index)
        self.store.record_payment(
            payment_id,
            merchant_id,
            derived.public_key,
            payment_index=derived.payment_index,
            derivation_path=derived.derivation_path,
            encrypted_key_data=blob,
        )
        return DerivedAddress(
            public_key=derived.public_key,
            merchant_index=derived.merchant_index,
            payment_index=derived.payment_index,
            derivation_path=derived.derivation_path,
            encrypted_key_data=blob,
        )

    # ---- sweeping ----

    def regenerate_keypair(self, merchant_index: int, payment_index: int) -> Keypair:
        """Rebuild a payment keypair from its indices; no lookup needed."""
        return self._derive(merchant_index, payment_index)

    def regenerate_keypair_for_payment(self, merchant_id: str, payment_id: str) -> Keypair:
        """Rebuild a payment keypair from stored identifiers."""
        merchant_index = self.store.get_merchant_index(merchant_id)
        if merchant_index is None:
            raise NotFound(f"No HD index found for merchant {merchant_id}")
        payment = self.store.get_payment(payment_id)
        if payment is None or payment["merchant_id"] != merchant_id:
            raise NotFound(f"No payment {payment_id} recorded for merchant {merchant_id}")
        payment_index = payment["payment_index"]
        if payment_index is None:
            raise NotFound(f"No payment_index stored for payment {payment_id}")
        return self._derive(merchant_index, payment_index)

    def regenerate_keypair_from_path(self, derivation_path: str) -> Keypair:
        merchant_index, payment_index = parse_path(derivation_path)
        return self._derive(merchant_index, payment_index)

    def regenerate_keypair_from_key_data(self, encrypted_key_data: str) -> Keypair:
        merchant_index, payment_index = self.decrypt_key_data(encrypted_key_data)
        return self._derive(merchant_index, payment_index)

    def verify_address(self, merchant_index: int, payment_index: int, public_key: str) -> bool:
        """True when *public_key* is the address at the given indices."""
        check_index(merchant_index, "merchant_index")
        check_index(payment_index, "payment_index")
        if not isinstance(public_key, str):
            raise InvalidStrKey(f"public_key must be a string, got {type(public_key).__name__}")
        if not is_valid_account_id(public_key):
            logger.info(f"verify_address: {public_key!r} is not a valid account id")
            return False
        derived = self._derive(merchant_index, payment_index).public_key
        return hmac.compare_digest(derived.encode("ascii"), public_key.encode("utf-8"))

    # ---- index blobs ----

    def encrypt_key_data(self, merchant_index: int, payment_index: int) -> str:
        return self.codec.encode(merchant_index, payment_index)

    def decrypt_key_data(self, encrypted_key_data: str) -> tuple[int, int]:
        return self.codec.decode(encrypted_key_data)

    def health_check(self) -> bool:
        return self.provider.health_check()
