"""Allow running as: python -m oraclebot

Usage:
  python -m oraclebot BTCUSDT                         # Binance stream (default)
  python -m oraclebot BTCUSDT --mode rest             # Binance 24h ticker poll
  python -m oraclebot AAPL --source polygon           # Polygon.io, needs POLYGON_API_KEY
  python -m oraclebot some-market-slug --source polymarket
  python -m oraclebot --healthcheck --interval-minutes 5
"""

import argparse
import asyncio
from typing import Any

from oraclebot.utils.logger import setup_logging


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="OracleBot market equilibrium monitor")
    parser.add_argument("symbol", nargs="?", help="Ticker symbol or Polymarket market slug")
    parser.add_argument("--source", choices=["binance", "polygon", "polymarket"])
    parser.add_argument("--mode", choices=["ws", "rest"], help="Push (ws) or pull (rest) transport")
    parser.add_argument("--interval-ms", type=int, help="Pull-mode poll interval")
    parser.add_argument("--history", type=int, help="Price history capacity")
    parser.add_argument("--lambda-method", choices=["auto", "imbalance", "momentum"])
    parser.add_argument("--healthcheck", action="store_true", help="Run the periodic oracle health check")
    parser.add_argument("--interval-minutes", type=float, help="Health check interval")
    parser.add_argument("--log-level", default="INFO")
    return parser


def overrides_from_args(args: argparse.Namespace) -> dict[str, Any]:
    """Map CLI flags onto the nested config layout. Unset flags are omitted."""
    monitor: dict[str, Any] = {}
    if args.symbol:
        monitor["symbol"] = args.symbol
    if args.source:
        monitor["source"] = args.source
        if args.source != "binance" and not args.mode:
            monitor["mode"] = "rest"
    if args.mode:
        monitor["mode"] = args.mode
    if args.interval_ms is not None:
        monitor["update_interval_ms"] = args.interval_ms
    if args.history is not None:
        monitor["max_history_size"] = args.history
    if args.lambda_method:
        monitor["lambda_method"] = args.lambda_method

    overrides: dict[str, Any] = {}
    if monitor:
        overrides["monitor"] = monitor
    if args.interval_minutes is not None:
        overrides["health"] = {"interval_minutes": args.interval_minutes}
    return overrides


def main() -> None:
    """CLI entry point."""
    args = build_parser().parse_args()

    setup_logging(log_level=args.log_level)

    from oraclebot.config.settings import load_config
    from oraclebot.main import MonitorOrchestrator

    orchestrator = MonitorOrchestrator(settings=load_config(overrides_from_args(args)))
    if args.healthcheck:
        asyncio.run(orchestrator.run_healthchecks())
    else:
        asyncio.run(orchestrator.start())


if __name__ == "__main__":
    main()
