#!/usr/bin/env python3
"""
hdpay operator CLI.

Usage:
    python run_hdpay.py --config hdpay.toml store-seed          # seed read from stdin
    python run_hdpay.py health
    python run_hdpay.py derive merchant_A pay_123
    python run_hdpay.py regenerate --path "m/44'/148'/0'/3'"
    python run_hdpay.py regenerate --merchant-index 0 --payment-index 3 --show-secret
    python run_hdpay.py verify 0 3 GABC...

Environment variables (alternative to a config file):
    HDPAY_PROVIDER, HD_WALLET_MASTER_SEED, KMS_KEY_ID, AWS_REGION,
    KMS_ENCRYPTED_MASTER_SEED, HDPAY_DB_PATH, HDPAY_LOG_LEVEL, HDPAY_LOG_FMT
"""

from __future__ import annotations

import argparse
import getpass
import json
import logging
import os
import sys

PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from hdpay_core.config import HDPayConfig, load_config  # noqa: E402
from hdpay_core.errors import HDWalletError  # noqa: E402
from hdpay_core.logging_config import setup_logging  # noqa: E402
from hdpay_core.secret_providers import provider_from_config  # noqa: E402
from hdpay_core.wallet_service import HDWalletService  # noqa: E402

logger = logging.getLogger("hdpay_cli")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hdpay", description="HD payment address tooling")
    parser.add_argument("--config", default=os.environ.get("HDPAY_CONFIG"),
                        help="Path to a TOML config file")
    sub = parser.add_subparsers(dest="command", required=True)

    store = sub.add_parser("store-seed", help="Wrap a master seed with the configured provider")
    store.add_argument("--seed", help="Seed value (prompted for when omitted)")

    sub.add_parser("health", help="Probe the secret backend")

    derive = sub.add_parser("derive", help="Allocate indices and derive a payment address")
    derive.add_argument("merchant_id")
    derive.add_argument("payment_id")
    derive.add_argument("--record", action="store_true",
                        help="Also record the payment with its encrypted indices")

    regen = sub.add_parser("regenerate", help="Rebuild a payment keypair")
    regen.add_argument("--path")
    regen.add_argument("--merchant-index", type=int)
    regen.add_argument("--payment-index", type=int)
    regen.add_argument("--key-data", help="Encrypted index blob from a payment row")
    regen.add_argument("--show-secret", action="store_true")

    verify = sub.add_parser("verify", help="Check an address against its indices")
    verify.add_argument("merchant_index", type=int)
    verify.add_argument("payment_index", type=int)
    verify.add_argument("public_key")
    return parser


def _cmd_store_seed(cfg: HDPayConfig, args: argparse.Namespace) -> int:
    seed = args.seed or getpass.getpass("Master seed: ")
    wrapped = provider_from_config(cfg.secrets).store_master_seed(seed)
    if wrapped:
        print(wrapped)
    return 0


def _cmd_regenerate(service: HDWalletService, args: argparse.Namespace) -> int:
    if args.path:
        keypair = service.regenerate_keypair_from_path(args.path)
    elif args.key_data:
        keypair = service.regenerate_keypair_from_key_data(args.key_data)
    elif args.merchant_index is not None and args.payment_index is not None:
        keypair = service.regenerate_keypair(args.merchant_index, args.payment_index)
    else:
        print("regenerate needs --path, --key-data, or both index options", file=sys.stderr)
        return 2
    out = {"public_key": keypair.public_key}
    if args.show_secret:
        out["secret_key"] = keypair.secret_key
    print(json.dumps(out, indent=2))
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    cfg = load_config(args.config)
    setup_logging(level=cfg.logging.level, fmt=cfg.logging.format, log_file=cfg.logging.file)

    try:
        if args.command == "store-seed":
            return _cmd_store_seed(cfg, args)

        service = HDWalletService.from_config(cfg)
        try:
            if args.command == "health":
                ok = service.health_check()
                print("ok" if ok else "unavailable")
                return 0 if ok else 1
            if args.command == "derive":
                if args.record:
                    derived = service.create_payment_address(args.merchant_id, args.payment_id)
                else:
                    derived = service.derive_payment_address(args.merchant_id, args.payment_id)
                print(json.dumps(derived.to_dict(), indent=2))
                return 0
            if args.command == "regenerate":
                return _cmd_regenerate(service, args)
            if args.command == "verify":
                ok = service.verify_address(args.merchant_index, args.payment_index, args.public_key)
                print("match" if ok else "mismatch")
                return 0 if ok else 1
        finally:
            service.store.close()
    except HDWalletError as exc:
        logger.error(f"{type(exc).__name__}: {exc}")
        return 1
    return 2


def main_sync() -> None:
    sys.exit(main())


if __name__ == "__main__":
    main_sync()
