"""
Tests for the run_hdpay operator CLI.
"""

from __future__ import annotations

import json
import logging

import pytest

import run_hdpay
from hdpay_core.derivation import derive_keypair, expand_seed

SEED = "fluxapay-test-master-seed-deterministic-value-01234567"
_ENV_VARS = (
    "HDPAY_CONFIG", "HDPAY_PROVIDER", "KMS_KEY_ID", "AWS_REGION",
    "KMS_ENCRYPTED_MASTER_SEED", "HDPAY_SEED_CACHE_TTL", "HDPAY_LOG_LEVEL",
    "HDPAY_LOG_FMT",
)


@pytest.fixture
def cli_env(monkeypatch, tmp_path):
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("HD_WALLET_MASTER_SEED", SEED)
    monkeypatch.setenv("HDPAY_DB_PATH", str(tmp_path / "cli.db"))
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield monkeypatch
    root.handlers[:] = handlers
    root.setLevel(level)


def _expected(m, p):
    return derive_keypair(expand_seed(SEED), m, p)


def test_derive(cli_env, capsys):
    assert run_hdpay.main(["derive", "merchant_A", "pay_1"]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out["derivation_path"] == "m/44'/148'/0'/0'"
    assert out["public_key"] == _expected(0, 0).public_key
    assert out["encrypted_key_data"] is None


def test_derive_record_then_regenerate_from_key_data(cli_env, capsys):
    assert run_hdpay.main(["derive", "merchant_A", "pay_1", "--record"]) == 0
    blob = json.loads(capsys.readouterr().out)["encrypted_key_data"]
    assert run_hdpay.main(["regenerate", "--key-data", blob]) == 0
    out = json.loads(capsys.readouterr().out)
    assert out == {"public_key": _expected(0, 0).public_key}


def test_derive_persists_counters(cli_env, capsys):
    indices = []
    for payment_id in ("pay_1", "pay_2"):
        assert run_hdpay.main(["derive", "merchant_A", payment_id]) == 0
        indices.append(json.loads(capsys.readouterr().out)["payment_index"])
    assert indices == [0, 1]


def test_regenerate_by_path_with_secret(cli_env, capsys):
    assert run_hdpay.main(["regenerate", "--path", "m/44'/148'/2'/5'", "--show-secret"]) == 0
    out = json.loads(capsys.readouterr().out)
    kp = _expected(2, 5)
    assert out == {"public_key": kp.public_key, "secret_key": kp.secret_key}


def test_regenerate_by_indices(cli_env, capsys):
    assert run_hdpay.main(["regenerate", "--merchant-index", "1", "--payment-index", "3"]) == 0
    assert json.loads(capsys.readouterr().out)["public_key"] == _expected(1, 3).public_key


def test_regenerate_needs_a_selector(cli_env, capsys):
    assert run_hdpay.main(["regenerate", "--merchant-index", "1"]) == 2


def test_regenerate_bad_path_fails(cli_env, capsys):
    assert run_hdpay.main(["regenerate", "--path", "m/44'/0'/0'/0'"]) == 1


def test_verify(cli_env, capsys):
    assert run_hdpay.main(["verify", "1", "3", _expected(1, 3).public_key]) == 0
    assert capsys.readouterr().out.strip() == "match"
    assert run_hdpay.main(["verify", "1", "3", _expected(1, 4).public_key]) == 1
    assert capsys.readouterr().out.strip() == "mismatch"


def test_health(cli_env, capsys):
    assert run_hdpay.main(["health"]) == 0
    assert capsys.readouterr().out.strip() == "ok"


def test_health_without_seed(cli_env, capsys):
    cli_env.delenv("HD_WALLET_MASTER_SEED")
    assert run_hdpay.main(["health"]) == 1
    assert capsys.readouterr().out.strip() == "unavailable"


def test_missing_seed_is_reported(cli_env, capsys):
    cli_env.delenv("HD_WALLET_MASTER_SEED")
    assert run_hdpay.main(["derive", "merchant_A", "pay_1"]) == 1


def test_store_seed_env_provider_prints_nothing(cli_env, capsys):
    assert run_hdpay.main(["store-seed", "--seed", SEED]) == 0
    assert capsys.readouterr().out == ""


def test_config_file(cli_env, capsys, tmp_path):
    cli_env.delenv("HD_WALLET_MASTER_SEED")
    cfg = tmp_path / "hdpay.toml"
    cfg.write_text(f'[secrets]\nprovider = "direct"\nmaster_seed = "{SEED}"\n')
    assert run_hdpay.main(["--config", str(cfg), "regenerate", "--merchant-index", "0",
                           "--payment-index", "0"]) == 0
    assert json.loads(capsys.readouterr().out)["public_key"] == _expected(0, 0).public_key
