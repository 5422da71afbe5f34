"""
Collision-free allocation of merchant and payment indices.

Merchant indices come from one global counter and are assigned at most
once per merchant.  Payment indices come from a per-merchant counter and
are handed out pre-increment, starting at 0.  Both steps delegate to the
store's single-transaction primitives; nothing here reads a counter and
writes it back separately.

An allocation whose payment is never persisted leaves a gap ("burned"
index).  Gaps are harmless: uniqueness is the invariant, not density.
"""

from __future__ import annotations

import logging

from hdpay_core.storage import IndexStore

logger = logging.getLogger("hdpay_allocator")


def _check_merchant_id(merchant_id: str) -> None:
    if not isinstance(merchant_id, str) or not merchant_id:
        raise ValueError("merchant_id must be a non-empty string")


class IndexAllocator:
    """Allocates derivation indices against an ``IndexStore``."""

    def __init__(self, store: IndexStore):
        self.store = store

    def allocate_merchant_index(self, merchant_id: str) -> int:
        """Get-or-create: idempotent after the first call for a merchant."""
        _check_merchant_id(merchant_id)
        return self.store.get_or_create_merchant_index(merchant_id)

    def allocate_next_payment_index(self, merchant_id: str) -> int:
        """Return a payment index never before returned for this merchant."""
        _check_merchant_id(merchant_id)
        self.store.get_or_create_merchant_index(merchant_id)
        index = self.store.increment_payment_counter(merchant_id)
        logger.debug(f"Allocated payment index {index} for {merchant_id}")
        return index
