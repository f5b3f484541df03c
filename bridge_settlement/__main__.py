"""
Bridge processor command line

Usage:
    python -m bridge_settlement sweep
    python -m bridge_settlement settle
    python -m bridge_settlement auto --daily-limit 5000
    python -m bridge_settlement balance
    python -m bridge_settlement unknown-memos
    python -m bridge_settlement info
"""

import argparse
import asyncio
import json
import sys
from typing import List, Optional

from loguru import logger

from .config import load_config
from .errors import BridgeError
from .logging_setup import configure_logging
from .processor import SwapProcessor


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser"""
    parser = argparse.ArgumentParser(
        prog="bridge-settlement",
        description="WAGERR <-> B-WAGERR bridge processor",
    )
    parser.add_argument(
        "--config", "-c",
        default="bridge_config.yaml",
        help="Path to the YAML config (default: bridge_config.yaml)",
    )
    parser.add_argument(
        "--env-file",
        default=None,
        help="Path to a .env file with secrets",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Override the configured log level",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("sweep", help="Record new deposits as pending swaps")
    subparsers.add_parser("settle", help="Pay out all pending swaps")

    auto = subparsers.add_parser("auto", help="Pay out pending swaps under the daily USD cap")
    auto.add_argument(
        "--daily-limit",
        type=float,
        default=None,
        metavar="USD",
        help="Daily cap in USD (default: settlement.daily_limit_usd)",
    )

    subparsers.add_parser("balance", help="Reconcile chain deposits with recorded swaps")
    subparsers.add_parser("unknown-memos", help="List deposits with a memo no client owns")
    subparsers.add_parser("info", help="Show fees and confirmation thresholds")
    return parser


async def run(args: argparse.Namespace) -> int:
    config = load_config(args.config, args.env_file)
    configure_logging(args.log_level or config.logging.level, config.logging.file, config.logging.rotation)

    processor = SwapProcessor.from_config(config)
    try:
        if args.command == "sweep":
            await processor.sweep_all()
        elif args.command == "settle":
            await processor.process_all_swaps()
        elif args.command == "auto":
            await processor.process_auto_swaps(args.daily_limit)
        elif args.command == "balance":
            reports = await processor.check_all_balances()
            if not all(report.matches for report in reports):
                return 2
        elif args.command == "unknown-memos":
            await processor.balance_checker.get_unknown_memo_transactions()
        elif args.command == "info":
            print(json.dumps(processor.swap_service.get_info(), indent=2))
    finally:
        await processor.close()

    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = create_parser()
    args = parser.parse_args(argv)

    try:
        return asyncio.run(run(args))
    except BridgeError as e:
        logger.error(f"✗ {e.__class__.__name__}: {e}")
        return 1
    except KeyboardInterrupt:
        logger.warning("Interrupted")
        return 130


if __name__ == "__main__":
    sys.exit(main())
