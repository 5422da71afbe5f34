"""
Authenticated encryption of derivation indices.

The ``(merchant_index, payment_index)`` pair is what reconstructs a
payment's secret key, so it is only ever stored encrypted.  The
plaintext is compact JSON::

    {"merchantIndex":3,"paymentIndex":7}

When the provider has its own encryption capability (KMS envelope or
the direct provider's local key) that is used; otherwise the codec
falls back to AES-256-GCM under SHA-256(seed || ":hd-key-data").
Every encode uses a fresh IV, so equal pairs never produce equal blobs.
"""

from __future__ import annotations

import json
import logging

from hdpay_core.crypto_utils import derive_local_key, open_local, seal_local
from hdpay_core.derivation import check_index
from hdpay_core.errors import IndexOutOfRange, MalformedBlob
from hdpay_core.secret_providers import EncryptingSecretProvider, SecretProvider

logger = logging.getLogger("hdpay_codec")


class IndexCodec:
    """Encodes / decodes ``EncryptedIndexBlob`` strings."""

    def __init__(self, provider: SecretProvider):
        self.provider = provider

    def encode(self, merchant_index: int, payment_index: int) -> str:
        check_index(merchant_index, "merchant_index")
        check_index(payment_index, "payment_index")
        payload = json.dumps(
            {"merchantIndex": merchant_index, "paymentIndex": payment_index},
            separators=(",", ":"),
        )
        if isinstance(self.provider, EncryptingSecretProvider):
            return self.provider.encrypt(payload)
        return seal_local(self._local_key(), payload)

    def decode(self, blob: str) -> tuple[int, int]:
        if isinstance(self.provider, EncryptingSecretProvider):
            payload = self.provider.decrypt(blob)
        else:
            payload = open_local(self._local_key(), blob)
        return self._parse_payload(payload)

    def _local_key(self) -> bytes:
        return derive_local_key(self.provider.get_master_seed())

    @staticmethod
    def _parse_payload(payload: str) -> tuple[int, int]:
        try:
            data = json.loads(payload)
            merchant_index = data["merchantIndex"]
            payment_index = data["paymentIndex"]
            check_index(merchant_index, "merchantIndex")
            check_index(payment_index, "paymentIndex")
        except (ValueError, TypeError, KeyError, IndexOutOfRange) as exc:
            # Authenticated, so this is a writer bug rather than tampering.
            logger.error(f"Decrypted index payload has an unexpected shape: {exc}")
            raise MalformedBlob("Decrypted payload is not an index pair") from exc
        return merchant_index, payment_index
