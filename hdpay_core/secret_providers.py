"""
Secret providers for the HD wallet master seed.

A provider supplies the plaintext master seed on demand and guards it
in whatever medium it uses.  Providers that can also encrypt arbitrary
payloads with their own key material subclass
``EncryptingSecretProvider``; callers test for that capability with
``isinstance`` (or the ``supports_encryption`` flag) before calling
``encrypt`` / ``decrypt``.

Implementations:
  - ``DirectSecretProvider``   seed given literally (tests, local dev)
  - ``EnvSecretProvider``      seed read from HD_WALLET_MASTER_SEED
  - ``AWSKMSSecretProvider``   seed wrapped by an AWS KMS key (production)

Usage:
    provider = kms_provider("alias/hd-wallet", region="eu-west-1")
    seed = provider.get_master_seed()
"""

from __future__ import annotations

import base64
import binascii
import logging
import os
import threading
import time
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Callable, Optional

from botocore.exceptions import BotoCoreError, ClientError

from hdpay_core.crypto_utils import (
    aes_gcm_decrypt,
    aes_gcm_encrypt,
    decode_gcm_fields,
    derive_local_key,
    encode_gcm_fields,
    open_local,
    seal_local,
    split_fields,
)
from hdpay_core.errors import (
    DecryptionFailed,
    KMSOperationFailed,
    MalformedBlob,
    SecretUnavailable,
)

if TYPE_CHECKING:
    from hdpay_core.config import SecretsConfig

logger = logging.getLogger("hdpay_secrets")

DEFAULT_SEED_CACHE_TTL = 300.0   # seconds

ENV_MASTER_SEED = "HD_WALLET_MASTER_SEED"
ENV_ENCRYPTED_MASTER_SEED = "KMS_ENCRYPTED_MASTER_SEED"

KMS_DELIMITER = "|"


# ===================================================================
#  Seed cache
# ===================================================================

class SeedCache:
    """
    Holds the plaintext seed for a bounded time.

    Expiry is checked against ``clock`` on every read.  Entries are
    replaced as a single tuple so concurrent readers never see a value
    paired with the wrong expiry; concurrent refills race harmlessly
    because every writer stores the same seed.
    """

    def __init__(self, ttl_seconds: float = DEFAULT_SEED_CACHE_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entry: tuple[str, float] | None = None

    def get(self) -> str | None:
        entry = self._entry
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            return None
        return value

    def put(self, value: str) -> None:
        if self.ttl_seconds <= 0:
            return
        self._entry = (value, self._clock() + self.ttl_seconds)

    @property
    def expires_at(self) -> float | None:
        return self._entry[1] if self._entry else None


# ===================================================================
#  Provider interfaces
# ===================================================================

class SecretProvider(ABC):
    """Supplies and protects the master seed."""

    supports_encryption = False

    def __init__(self, cache_ttl: float = DEFAULT_SEED_CACHE_TTL,
                 clock: Callable[[], float] = time.monotonic):
        self._cache = SeedCache(cache_ttl, clock)

    def get_master_seed(self) -> str:
        """Return the plaintext seed, from cache while its TTL lasts."""
        cached = self._cache.get()
        if cached is not None:
            return cached
        seed = self._fetch_master_seed()
        if not seed:
            raise SecretUnavailable(f"{type(self).__name__} returned an empty master seed")
        self._cache.put(seed)
        return seed

    @abstractmethod
    def _fetch_master_seed(self) -> str:
        """Load the seed from the backing medium (cache miss path)."""

    @abstractmethod
    def store_master_seed(self, seed: str) -> Optional[str]:
        """
        One-time setup: protect *seed* in the provider's medium.

        Returns the wrapped form the operator must keep, or None when
        the provider has nothing to hand back.
        """

    def rotate_encryption_key(self) -> Optional[str]:
        """Re-wrap the stored seed under a new key.  No-op by default."""
        logger.info(f"{type(self).__name__}: key rotation is not applicable")
        return None

    @abstractmethod
    def health_check(self) -> bool:
        """Cheap reachability probe.  Never raises."""


class EncryptingSecretProvider(SecretProvider):
    """A provider that can also encrypt arbitrary payloads."""

    supports_encryption = True

    @abstractmethod
    def encrypt(self, plaintext: str) -> str:
        ...

    @abstractmethod
    def decrypt(self, ciphertext: str) -> str:
        """Raises DecryptionFailed (or MalformedBlob) on a bad blob."""


# ===================================================================
#  Direct (literal seed)
# ===================================================================

class DirectSecretProvider(EncryptingSecretProvider):
    """
    Seed supplied literally by the caller.

    Encryption uses a local AES-256-GCM key derived from the seed, so
    blobs are only readable by a provider holding the same seed.
    """

    def __init__(self, master_seed: str, cache_ttl: float = DEFAULT_SEED_CACHE_TTL,
                 clock: Callable[[], float] = time.monotonic):
        if not master_seed:
            raise SecretUnavailable("Master seed is required")
        super().__init__(cache_ttl, clock)
        self._master_seed = master_seed
        self._key = derive_local_key(master_seed)

    def _fetch_master_seed(self) -> str:
        return self._master_seed

    def store_master_seed(self, seed: str) -> Optional[str]:
        logger.warning("DirectSecretProvider keeps its seed in memory; nothing stored")
        return None

    def health_check(self) -> bool:
        return True

    def encrypt(self, plaintext: str) -> str:
        return seal_local(self._key, plaintext)

    def decrypt(self, ciphertext: str) -> str:
        return open_local(self._key, ciphertext)


# ===================================================================
#  Environment variable
# ===================================================================

class EnvSecretProvider(SecretProvider):
    """Development provider reading the seed from the environment."""

    def __init__(self, var_name: str = ENV_MASTER_SEED,
                 cache_ttl: float = DEFAULT_SEED_CACHE_TTL,
                 clock: Callable[[], float] = time.monotonic):
        super().__init__(cache_ttl, clock)
        self.var_name = var_name

    def _fetch_master_seed(self) -> str:
        seed = os.environ.get(self.var_name, "")
        if not seed:
            raise SecretUnavailable(f"{self.var_name} is not set")
        return seed

    def store_master_seed(self, seed: str) -> Optional[str]:
        logger.warning(f"Export the seed as {self.var_name}; it is not encrypted at rest")
        return None

    def health_check(self) -> bool:
        return bool(os.environ.get(self.var_name))


# ===================================================================
#  AWS KMS
# ===================================================================

class AWSKMSSecretProvider(EncryptingSecretProvider):
    """
    Master seed wrapped by an AWS KMS key.

    The wrapped seed (base64 ``CiphertextBlob``) is supplied by the
    operator, normally through ``KMS_ENCRYPTED_MASTER_SEED``.  Payload
    encryption is envelope style: a fresh AES-256 data key from
    ``GenerateDataKey`` encrypts the payload locally and its wrapped
    form leads the blob:

        wrappedKeyB64|ivHex|tagHex|ciphertextHex
    """

    def __init__(
        self,
        key_id: str,
        region: str = "us-east-1",
        encrypted_master_seed: str | None = None,
        client: Any = None,
        cache_ttl: float = DEFAULT_SEED_CACHE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ):
        if not key_id:
            raise SecretUnavailable("KMS key id is required")
        super().__init__(cache_ttl, clock)
        self.key_id = key_id
        self.region = region
        self._encrypted_master_seed = encrypted_master_seed
        self._lock = threading.Lock()
        if client is None:
            import boto3

            client = boto3.client("kms", region_name=region)
        self._client = client

    @property
    def encrypted_master_seed(self) -> str | None:
        return self._encrypted_master_seed or os.environ.get(ENV_ENCRYPTED_MASTER_SEED)

    # ── seed ─────────────────────────────────────────────────────

    def _fetch_master_seed(self) -> str:
        wrapped = self.encrypted_master_seed
        if not wrapped:
            raise SecretUnavailable(f"{ENV_ENCRYPTED_MASTER_SEED} not configured")
        try:
            blob = base64.b64decode(wrapped, validate=True)
            response = self._client.decrypt(CiphertextBlob=blob, KeyId=self.key_id)
            return response["Plaintext"].decode("utf-8")
        except (ClientError, BotoCoreError, binascii.Error, UnicodeDecodeError) as exc:
            logger.error(f"Failed to decrypt master seed with KMS key {self.key_id}: {exc}")
            raise SecretUnavailable("Failed to retrieve master seed from KMS") from exc

    def store_master_seed(self, seed: str) -> Optional[str]:
        if not seed:
            raise ValueError("Refusing to store an empty master seed")
        try:
            response = self._client.encrypt(KeyId=self.key_id, Plaintext=seed.encode("utf-8"))
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"Failed to encrypt master seed with KMS key {self.key_id}: {exc}")
            raise KMSOperationFailed("Failed to store master seed in KMS") from exc

        wrapped = base64.b64encode(response["CiphertextBlob"]).decode("ascii")
        with self._lock:
            self._encrypted_master_seed = wrapped
        logger.info(f"Master seed wrapped; store the result in {ENV_ENCRYPTED_MASTER_SEED}")
        return wrapped

    def rotate_encryption_key(self, new_key_id: str | None = None) -> Optional[str]:
        """
        Re-wrap the stored seed under *new_key_id* (or the current key,
        which picks up a rotated backing key).  The cached plaintext is
        left alone: rotation changes the wrapping, not the seed.
        """
        wrapped = self.encrypted_master_seed
        if not wrapped:
            raise SecretUnavailable(f"{ENV_ENCRYPTED_MASTER_SEED} not configured")
        destination = new_key_id or self.key_id
        try:
            response = self._client.re_encrypt(
                CiphertextBlob=base64.b64decode(wrapped, validate=True),
                DestinationKeyId=destination,
            )
        except (ClientError, BotoCoreError, binascii.Error) as exc:
            logger.error(f"KMS re-encrypt into {destination} failed: {exc}")
            raise KMSOperationFailed("Failed to rotate master seed wrapping key") from exc

        rewrapped = base64.b64encode(response["CiphertextBlob"]).decode("ascii")
        with self._lock:
            self._encrypted_master_seed = rewrapped
            self.key_id = destination
        logger.info(f"Master seed re-wrapped under {destination}")
        return rewrapped

    def health_check(self) -> bool:
        try:
            self._client.describe_key(KeyId=self.key_id)
            return True
        except Exception as exc:
            logger.warning(f"KMS health check failed for {self.key_id}: {exc}")
            return False

    # ── envelope encryption ──────────────────────────────────────

    def encrypt(self, plaintext: str) -> str:
        try:
            response = self._client.generate_data_key(KeyId=self.key_id, KeySpec="AES_256")
        except (ClientError, BotoCoreError) as exc:
            logger.error(f"KMS GenerateDataKey failed: {exc}")
            raise KMSOperationFailed("Failed to encrypt data with KMS") from exc

        wrapped_key = base64.b64encode(response["CiphertextBlob"]).decode("ascii")
        fields = encode_gcm_fields(*aes_gcm_encrypt(response["Plaintext"], plaintext.encode("utf-8")))
        return KMS_DELIMITER.join([wrapped_key, *fields])

    def decrypt(self, ciphertext: str) -> str:
        wrapped_b64, iv_hex, tag_hex, ct_hex = split_fields(ciphertext, KMS_DELIMITER, 4)
        iv, tag, body = decode_gcm_fields(iv_hex, tag_hex, ct_hex)
        try:
            wrapped_key = base64.b64decode(wrapped_b64, validate=True)
        except binascii.Error as exc:
            raise MalformedBlob("Wrapped data key is not base64") from exc

        try:
            response = self._client.decrypt(CiphertextBlob=wrapped_key, KeyId=self.key_id)
        except ClientError as exc:
            code = exc.response.get("Error", {}).get("Code", "")
            if code == "InvalidCiphertextException":
                raise DecryptionFailed("KMS rejected the wrapped data key") from exc
            logger.error(f"KMS Decrypt failed: {exc}")
            raise KMSOperationFailed("Failed to decrypt data with KMS") from exc
        except BotoCoreError as exc:
            logger.error(f"KMS Decrypt failed: {exc}")
            raise KMSOperationFailed("Failed to decrypt data with KMS") from exc

        return aes_gcm_decrypt(response["Plaintext"], iv, tag, body).decode("utf-8")


# ===================================================================
#  Factories
# ===================================================================

def direct_provider(master_seed: str, cache_ttl: float = DEFAULT_SEED_CACHE_TTL) -> DirectSecretProvider:
    return DirectSecretProvider(master_seed, cache_ttl=cache_ttl)


def env_provider(var_name: str = ENV_MASTER_SEED,
                 cache_ttl: float = DEFAULT_SEED_CACHE_TTL) -> EnvSecretProvider:
    return EnvSecretProvider(var_name, cache_ttl=cache_ttl)


def kms_provider(key_id: str, region: str = "us-east-1",
                 encrypted_master_seed: str | None = None,
                 cache_ttl: float = DEFAULT_SEED_CACHE_TTL,
                 client: Any = None) -> AWSKMSSecretProvider:
    return AWSKMSSecretProvider(
        key_id,
        region=region,
        encrypted_master_seed=encrypted_master_seed,
        client=client,
        cache_ttl=cache_ttl,
    )


def provider_from_config(cfg: SecretsConfig) -> SecretProvider:
    """Select a provider from the ``[secrets]`` config section."""
    kind = cfg.provider.lower()
    if kind == "direct":
        return direct_provider(cfg.master_seed, cache_ttl=cfg.cache_ttl_seconds)
    if kind == "env":
        return env_provider(cache_ttl=cfg.cache_ttl_seconds)
    if kind == "kms":
        return kms_provider(
            cfg.kms_key_id,
            region=cfg.kms_region,
            encrypted_master_seed=cfg.encrypted_master_seed or None,
            cache_ttl=cfg.cache_ttl_seconds,
        )
    raise ValueError(f"Unknown secret provider {cfg.provider!r}")
