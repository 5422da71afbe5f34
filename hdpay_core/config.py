"""
TOML-based configuration for the HD payment-address service.

Loads settings from a TOML file and/or environment variables.
Environment variables take precedence over file values.

Usage:
    from hdpay_core.config import load_config
    cfg = load_config("hdpay.toml")
"""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


@dataclass
class SecretsConfig:
    """Master seed provider selection.

    ``provider`` is one of ``"direct"`` (seed in ``master_seed``),
    ``"env"`` (seed in HD_WALLET_MASTER_SEED) or ``"kms"`` (seed wrapped
    by ``kms_key_id``; the wrapped value comes from
    ``encrypted_master_seed`` or KMS_ENCRYPTED_MASTER_SEED).
    """
    provider: str = "env"
    master_seed: str = ""
    kms_key_id: str = ""
    kms_region: str = "us-east-1"
    encrypted_master_seed: str = ""
    cache_ttl_seconds: float = 300.0


@dataclass
class StorageConfig:
    """Index store settings."""
    path: str = "data/hdpay.db"
    busy_timeout_ms: int = 5000


@dataclass
class LoggingConfig:
    """Logging settings."""
    level: str = "INFO"
    format: str = "human"   # "human" or "json"
    file: str | None = None


@dataclass
class HDPayConfig:
    """Top-level configuration container."""
    secrets: SecretsConfig = field(default_factory=SecretsConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


def _merge(dc: Any, raw: dict[str, Any]) -> None:
    """Merge a raw dict into a dataclass instance (in-place)."""
    for key, value in raw.items():
        key_under = key.replace("-", "_")
        if hasattr(dc, key_under):
            setattr(dc, key_under, value)


def load_config(path: str | None = None) -> HDPayConfig:
    """
    Load configuration from a TOML file, then overlay environment variables.

    Env-var mapping:
        HDPAY_PROVIDER            -> secrets.provider
        HD_WALLET_MASTER_SEED     -> secrets.master_seed
        KMS_KEY_ID                -> secrets.kms_key_id
        AWS_REGION                -> secrets.kms_region
        KMS_ENCRYPTED_MASTER_SEED -> secrets.encrypted_master_seed
        HDPAY_SEED_CACHE_TTL      -> secrets.cache_ttl_seconds
        HDPAY_DB_PATH             -> storage.path
        HDPAY_LOG_LEVEL           -> logging.level
        HDPAY_LOG_FMT             -> logging.format
    """
    cfg = HDPayConfig()

    # ── TOML file ────────────────────────────────────────────────
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p, "rb") as f:
                data = tomllib.load(f)
            for section_name, section_dc in [
                ("secrets", cfg.secrets),
                ("storage", cfg.storage),
                ("logging", cfg.logging),
            ]:
                if section_name in data:
                    _merge(section_dc, data[section_name])

    # ── Environment variable overrides ───────────────────────────
    if v := os.environ.get("HDPAY_PROVIDER"):
        cfg.secrets.provider = v.lower()
    if v := os.environ.get("HD_WALLET_MASTER_SEED"):
        cfg.secrets.master_seed = v
    if v := os.environ.get("KMS_KEY_ID"):
        cfg.secrets.kms_key_id = v
        if not os.environ.get("HDPAY_PROVIDER"):
            cfg.secrets.provider = "kms"
    if v := os.environ.get("AWS_REGION"):
        cfg.secrets.kms_region = v
    if v := os.environ.get("KMS_ENCRYPTED_MASTER_SEED"):
        cfg.secrets.encrypted_master_seed = v
    if v := os.environ.get("HDPAY_SEED_CACHE_TTL"):
        cfg.secrets.cache_ttl_seconds = float(v)
    if v := os.environ.get("HDPAY_DB_PATH"):
        cfg.storage.path = v
    if v := os.environ.get("HDPAY_LOG_LEVEL"):
        cfg.logging.level = v.upper()
    if v := os.environ.get("HDPAY_LOG_FMT"):
        cfg.logging.format = v

    return cfg
