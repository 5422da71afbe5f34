"""
Shared pytest fixtures for the hdpay test suite.
"""

import pytest

from hdpay_core.secret_providers import DirectSecretProvider
from hdpay_core.storage import IndexStore
from hdpay_core.wallet_service import HDWalletService

TEST_SEED = "fluxapay-test-master-seed-deterministic-value-01234567"
HEX_SEED = "000102030405060708090a0b0c0d0e0f101112131415161718191a1b1c1d1e1f"


class FakeClock:
    """Manually advanced monotonic clock for cache TTL tests."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "hdpay.db")


@pytest.fixture
def store(db_path):
    """Fresh IndexStore in a temp directory."""
    s = IndexStore(db_path)
    yield s
    s.close()


@pytest.fixture
def provider():
    return DirectSecretProvider(TEST_SEED)


@pytest.fixture
def service(provider, store):
    """Service over the fixed test seed and a temp database."""
    return HDWalletService(provider, store)
