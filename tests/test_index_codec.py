"""
Tests for hdpay_core.index_codec — encrypted (merchant, payment) index blobs.

Covers:
  - Round-trip through each provider kind (direct, env fallback, KMS envelope)
  - Fresh ciphertext for identical pairs
  - Tampering at every position is rejected as DecryptionFailed
  - Structural errors rejected as MalformedBlob
  - Authenticated payloads of the wrong shape
"""

from __future__ import annotations

import json

import pytest
from fake_kms import FakeKMSClient

from hdpay_core.crypto_utils import derive_local_key, seal_local
from hdpay_core.derivation import MAX_INDEX
from hdpay_core.errors import DecryptionFailed, IndexOutOfRange, MalformedBlob
from hdpay_core.index_codec import IndexCodec
from hdpay_core.secret_providers import AWSKMSSecretProvider, DirectSecretProvider, EnvSecretProvider

SEED = "fluxapay-test-master-seed-deterministic-value-01234567"

_HEX = "0123456789abcdef"


def _tampered_variants(blob: str):
    """
    Yield altered copies of the blob: each hex digit swapped for another,
    each hex letter upper-cased, whitespace spliced in at every position,
    and the whole blob upper-cased.
    """
    for pos, ch in enumerate(blob):
        if ch in _HEX:
            repl = _HEX[(_HEX.index(ch) + 1) % 16]
            yield blob[:pos] + repl + blob[pos + 1:]
        if ch in "abcdef":
            yield blob[:pos] + ch.upper() + blob[pos + 1:]
        for ws in (" ", "\n"):
            yield blob[:pos] + ws + blob[pos:]
    yield blob + "\n"
    yield blob.upper()


@pytest.fixture
def direct_codec():
    return IndexCodec(DirectSecretProvider(SEED))


@pytest.fixture
def env_codec(monkeypatch):
    monkeypatch.setenv("HD_WALLET_MASTER_SEED", SEED)
    return IndexCodec(EnvSecretProvider())


@pytest.fixture
def kms_codec(monkeypatch):
    monkeypatch.delenv("KMS_ENCRYPTED_MASTER_SEED", raising=False)
    provider = AWSKMSSecretProvider("alias/hd-wallet", client=FakeKMSClient())
    provider.store_master_seed(SEED)
    return IndexCodec(provider)


class TestRoundTrip:
    @pytest.mark.parametrize("m,p", [(0, 0), (1, 3), (42, 100000), (MAX_INDEX, MAX_INDEX)])
    def test_direct(self, direct_codec, m, p):
        assert direct_codec.decode(direct_codec.encode(m, p)) == (m, p)

    def test_env_fallback(self, env_codec):
        assert env_codec.decode(env_codec.encode(7, 9)) == (7, 9)

    def test_kms_envelope(self, kms_codec):
        blob = kms_codec.encode(7, 9)
        assert blob.count("|") == 3
        assert kms_codec.decode(blob) == (7, 9)

    def test_env_fallback_uses_seed_key(self, env_codec):
        # Fallback blobs are readable by anyone holding the same seed
        blob = env_codec.encode(4, 5)
        assert IndexCodec(DirectSecretProvider(SEED)).decode(blob) == (4, 5)

    def test_fresh_ciphertext(self, direct_codec, env_codec, kms_codec):
        for codec in (direct_codec, env_codec, kms_codec):
            assert codec.encode(1, 1) != codec.encode(1, 1)

    def test_out_of_range_rejected(self, direct_codec):
        with pytest.raises(IndexOutOfRange):
            direct_codec.encode(-1, 0)
        with pytest.raises(IndexOutOfRange):
            direct_codec.encode(0, MAX_INDEX + 1)


class TestTamper:
    def test_every_position_direct(self, direct_codec):
        blob = direct_codec.encode(12, 34)
        for bad in _tampered_variants(blob):
            with pytest.raises(DecryptionFailed):
                direct_codec.decode(bad)

    def test_every_position_env_fallback(self, env_codec):
        blob = env_codec.encode(12, 34)
        for bad in _tampered_variants(blob):
            with pytest.raises(DecryptionFailed):
                env_codec.decode(bad)

    def test_gcm_fields_kms(self, kms_codec):
        blob = kms_codec.encode(12, 34)
        wrapped, rest = blob.split("|", 1)
        for bad in _tampered_variants(rest):
            with pytest.raises(DecryptionFailed):
                kms_codec.decode(wrapped + "|" + bad)

    @pytest.mark.parametrize("alter", [
        str.upper,
        lambda b: b[:2] + " " + b[2:],
        lambda b: b.replace(":", ": ", 1),
        lambda b: b + "\n",
    ])
    def test_reformatted_hex_rejected(self, direct_codec, alter):
        blob = direct_codec.encode(0, 0)
        with pytest.raises(DecryptionFailed):
            direct_codec.decode(alter(blob))

    def test_wrong_seed(self, direct_codec):
        blob = direct_codec.encode(1, 2)
        with pytest.raises(DecryptionFailed):
            IndexCodec(DirectSecretProvider("other")).decode(blob)


class TestMalformed:
    @pytest.mark.parametrize("blob", ["", "abc", "aa:bb", "aa:bb:cc:dd", "zz:zz:zz"])
    def test_structure(self, direct_codec, blob):
        with pytest.raises(MalformedBlob):
            direct_codec.decode(blob)

    def test_short_iv(self, direct_codec):
        iv, tag, ct = direct_codec.encode(1, 2).split(":")
        with pytest.raises(MalformedBlob):
            direct_codec.decode(f"{iv[:-2]}:{tag}:{ct}")

    def test_non_string(self, direct_codec):
        with pytest.raises(MalformedBlob):
            direct_codec.decode(None)

    def test_malformed_is_decryption_failed(self, direct_codec):
        with pytest.raises(DecryptionFailed):
            direct_codec.decode("nope")

    @pytest.mark.parametrize("payload", [
        "not json",
        json.dumps({"merchantIndex": 1}),
        json.dumps({"merchantIndex": -1, "paymentIndex": 0}),
        json.dumps({"merchantIndex": "1", "paymentIndex": 0}),
        json.dumps([1, 2]),
    ])
    def test_authenticated_but_wrong_shape(self, payload):
        codec = IndexCodec(DirectSecretProvider(SEED))
        blob = seal_local(derive_local_key(SEED), payload)
        with pytest.raises(MalformedBlob):
            codec.decode(blob)
