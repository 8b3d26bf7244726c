"""
Command-line entry points.

    candles-keeper sync --instrument BTC-PERP --interval 1m
    candles-keeper schedule
"""

import argparse
import asyncio
from dataclasses import replace
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .adapters import list_adapters
from .config import SyncConfig, parse_pairs
from .console import c_dir, c_type, c_var, log_error, log_info, log_success
from .errors import CandlesKeeperError
from .intervals import VALID_INTERVALS, SeriesKey
from .orchestrator import build_orchestrator
from .scheduler import DailyScheduler


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="candles-keeper",
        description="Keep a gap-free local candle series in sync with an exchange.",
    )
    parser.add_argument("--exchange", help=f"Exchange name ({', '.join(list_adapters())})")
    parser.add_argument("--data-root", help="Directory holding the candle files")
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Sync one instrument/interval and follow it live")
    sync.add_argument("--instrument", required=True, help="Instrument identifier, e.g. BTC-PERP")
    sync.add_argument("--interval", required=True, choices=VALID_INTERVALS, help="Candle interval")

    schedule = sub.add_parser("schedule", help="Run the daily scheduler over the configured pairs")
    schedule.add_argument("--pairs", help="Comma separated INSTRUMENT:interval list")
    return parser


def _config_from_args(args: argparse.Namespace) -> SyncConfig:
    config = SyncConfig.from_env()
    if args.exchange:
        config = replace(config, exchange=args.exchange.upper())
    if args.data_root:
        config = replace(config, data_root=Path(args.data_root).expanduser())
    if getattr(args, "pairs", None):
        config = replace(config, pairs=parse_pairs(args.pairs))
    config.validate()
    return config


async def _run_scheduler(config: SyncConfig) -> None:
    scheduler = DailyScheduler.from_config(config)
    try:
        await scheduler.run_forever()
    finally:
        await scheduler.stop()


def main(argv: Optional[List[str]] = None) -> int:
    env_path = Path.cwd() / ".env"
    if env_path.exists():
        load_dotenv(env_path)

    args = build_parser().parse_args(argv)
    try:
        config = _config_from_args(args)
        if args.command == "sync":
            key = SeriesKey(args.instrument, args.interval)
            log_info(f"Synchronizing {c_type(config.exchange)}/{c_var(key)} into {c_dir(config.data_root)}")
            asyncio.run(build_orchestrator(key, config).run())
        else:
            pairs = ", ".join(str(k) for k in config.pairs)
            log_info(f"Scheduling {c_type(config.exchange)} pairs {c_var(pairs)} daily at {config.run_at:%H:%M} UTC")
            asyncio.run(_run_scheduler(config))
    except KeyboardInterrupt:
        log_success("Stopped.")
        return 0
    except CandlesKeeperError as e:
        log_error(f"Synchronization failed: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
