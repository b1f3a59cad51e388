"""Command line entry point.

Usage:
    order-filler fill 0x<order-hash> [--signature 0x..] [--fill.amount N]
    order-filler check 0x<order-hash>
    order-filler list 0x<maker-address> [--statuses 1,2]
    order-filler history 0x<order-hash>
"""
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any, List, Optional

from .config import FillerConfig, add_config_args
from .exceptions import ConfigurationException
from .executor import FillOptions, OrderFillExecutor
from .history_store import HistoryStore
from .order import ZERO_ADDRESS
from .registry_client import OrderRegistryClient
from .signer import SignerContext
from .version import get_version

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CONFIG = 2


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    add_config_args(common)

    parser = argparse.ArgumentParser(prog="order-filler", description="Fill signed 1inch limit orders on-chain")
    parser.add_argument("--version", action="version", version=f"%(prog)s {get_version()}")
    subparsers = parser.add_subparsers(dest="command", required=True)

    fill = subparsers.add_parser("fill", parents=[common], help="Fill an order by hash")
    fill.add_argument("order_hash", type=str, help="EIP-712 order hash")
    fill.add_argument("--signature", type=str, default=None, help="Maker signature (defaults to the registry copy)")
    fill.add_argument("--fill.amount", type=int, default=None, help="Taker-asset amount for a partial fill")
    fill.add_argument("--fill.threshold", type=int, default=0, help="Maximum taker amount (0 disables the check)")
    fill.add_argument("--fill.approve_max", action="store_true", help="Approve an unlimited allowance")
    fill.add_argument("--fill.skip_verify", action="store_true", help="Skip order hash and signature verification")
    fill.add_argument("--fill.gas_price", type=int, default=None, help="Legacy gas price (wei)")
    fill.add_argument("--fill.max_fee_per_gas", type=int, default=None, help="EIP-1559 max fee (wei)")
    fill.add_argument("--fill.max_priority_fee_per_gas", type=int, default=None, help="EIP-1559 priority fee (wei)")

    check = subparsers.add_parser("check", parents=[common], help="Report whether an order is fillable")
    check.add_argument("order_hash", type=str, help="EIP-712 order hash")

    list_cmd = subparsers.add_parser("list", parents=[common], help="List orders of a maker")
    list_cmd.add_argument("maker", type=str, help="Maker address")
    list_cmd.add_argument("--statuses", type=str, default=None, help="Comma separated status codes")

    history = subparsers.add_parser("history", parents=[common], help="Show recorded fills of an order")
    history.add_argument("order_hash", type=str, help="EIP-712 order hash")

    return parser


def setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
        stream=sys.stderr,
    )


def fill_options_from_args(args: argparse.Namespace, config: FillerConfig) -> FillOptions:
    return FillOptions(
        max_retries=config.max_retries,
        confirmation_timeout=config.confirmation_timeout,
        base_delay=config.retry_base_delay,
        fill_amount=getattr(args, "fill.amount", None),
        threshold=getattr(args, "fill.threshold", 0) or 0,
        approve_max=bool(getattr(args, "fill.approve_max", False)),
        verify_order=not getattr(args, "fill.skip_verify", False),
        gas_price=getattr(args, "fill.gas_price", None),
        max_fee_per_gas=getattr(args, "fill.max_fee_per_gas", None),
        max_priority_fee_per_gas=getattr(args, "fill.max_priority_fee_per_gas", None),
    )


def _registry(config: FillerConfig) -> OrderRegistryClient:
    return OrderRegistryClient(
        base_url=config.registry_url,
        chain_id=config.chain_id,
        api_key=config.registry_api_key,
        timeout=config.registry_timeout,
        order_path=config.registry_order_path,
    )


def _signer(config: FillerConfig, read_only: bool = False) -> SignerContext:
    if read_only and not (config.private_key or config.wallet_address):
        return SignerContext.from_rpc(config.rpc_url, address=ZERO_ADDRESS)
    return SignerContext.from_rpc(
        config.rpc_url,
        private_key=config.private_key,
        address=config.wallet_address,
    )


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2))


async def run_command(args: argparse.Namespace, config: FillerConfig) -> int:
    logger = logging.getLogger("orderfiller")

    if args.command == "history":
        store = HistoryStore(base_dir=config.history_dir)
        _print(store.summary(args.order_hash))
        return EXIT_OK

    registry = _registry(config)

    if args.command == "list":
        statuses: Optional[List[int]] = None
        if args.statuses:
            statuses = [int(s) for s in args.statuses.split(",") if s.strip()]
        orders = await registry.fetch_orders_by_maker(args.maker, statuses)
        _print(orders)
        return EXIT_OK

    executor = OrderFillExecutor(
        registry,
        settlement_address=config.settlement_address,
        chain_id=config.chain_id,
    )

    if args.command == "check":
        report = await executor.check_order(_signer(config, read_only=True), args.order_hash)
        _print(report.to_dict())
        return EXIT_OK if report.fillable else EXIT_FAILED

    signer = _signer(config)
    logger.info(f"Filling order {args.order_hash} as {signer.address} on chain {config.chain_id}")
    result = await executor.fill_order(
        signer,
        args.order_hash,
        signature=args.signature,
        options=fill_options_from_args(args, config),
    )
    HistoryStore(base_dir=config.history_dir).record(result)
    _print(result.to_response())
    return EXIT_OK if result.success else EXIT_FAILED


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        config = FillerConfig.from_args(args)
        if args.command == "fill":
            config.validate(require_signer=True)
        elif args.command == "check":
            config.validate(require_signer=False)
        elif args.command == "list":
            config.validate(require_signer=False, require_rpc=False)
    except ConfigurationException as e:
        print(json.dumps({"error": str(e)}), file=sys.stderr)
        return EXIT_CONFIG

    setup_logging(config.log_level)
    logging.getLogger(__name__).debug(f"Configuration: {config.redacted()}")

    try:
        return asyncio.run(run_command(args, config))
    except ConfigurationException as e:
        print(json.dumps({"error": str(e)}), file=sys.stderr)
        return EXIT_CONFIG
    except ValueError as e:
        print(json.dumps({"error": str(e)}), file=sys.stderr)
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
