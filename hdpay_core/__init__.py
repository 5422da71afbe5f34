"""
hdpay - deterministic per-payment receiving addresses without stored keys.

Key features:
- SLIP-0010 Ed25519 derivation over m/44'/148'/merchant'/payment'
- Atomic, collision-free merchant and payment index allocation (SQLite)
- Pluggable master-seed providers (direct, environment, AWS KMS)
- AES-256-GCM encrypted index blobs for sweep-time key reconstruction
"""

__version__ = "1.0.0"
__all__ = [
    "errors",
    "strkey",
    "crypto_utils",
    "derivation",
    "secret_providers",
    "storage",
    "allocator",
    "index_codec",
    "wallet_service",
    "config",
    "logging_config",
]
