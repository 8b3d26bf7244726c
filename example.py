#!/usr/bin/env python3

import argparse
import asyncio
import sys

from candles_keeper.config import SyncConfig, parse_pairs
from candles_keeper.console import COLOR_REQ, COLOR_TYPE, COLOR_VAR, ERROR, INFO, Style
from candles_keeper.errors import CandlesKeeperError
from candles_keeper.intervals import SeriesKey
from candles_keeper.orchestrator import build_orchestrator
from candles_keeper.scheduler import DailyScheduler


def parse_args():
    """
    Parses command-line arguments with colorized help.
    Without --interval, BTC-PERP is scheduled daily at 1m, 5m and 15m.
    """
    parser = argparse.ArgumentParser(
        description=f"""
{INFO} Keep candle files for an instrument in sync and follow it live. {Style.RESET_ALL}
  {COLOR_VAR}--instrument{Style.RESET_ALL}  {COLOR_TYPE}(str){Style.RESET_ALL} {COLOR_REQ} Instrument (e.g., BTC-PERP)
  {COLOR_VAR}--interval{Style.RESET_ALL}    {COLOR_TYPE}(str){Style.RESET_ALL} Single interval to follow (1m, 5m, 15m, 1h, 4h, 1d)

{INFO} Examples:
  python example.py --instrument BTC-PERP --interval 1m
  python example.py --instrument BTC-PERP
""", formatter_class=argparse.RawTextHelpFormatter)
    parser.add_argument("--instrument", required=True, help="Instrument (e.g., BTC-PERP)")
    parser.add_argument("--interval", help="Interval to follow. If not specified, 1m, 5m and 15m are scheduled daily.")
    if len(sys.argv) == 1:
        print(f"\n{ERROR} No arguments provided! Please specify the required parameters.\n")
        parser.print_help()
        sys.exit(1)
    return parser.parse_args()


async def run(args) -> None:
    config = SyncConfig.from_env()

    if args.interval:
        print(f"{INFO} Following single interval: {args.interval}")
        await build_orchestrator(SeriesKey(args.instrument, args.interval), config).run()
        return

    config.pairs = parse_pairs(",".join(f"{args.instrument}:{tf}" for tf in ("1m", "5m", "15m")))
    print(f"{INFO} Scheduling {args.instrument} at 1m, 5m, 15m")
    scheduler = DailyScheduler.from_config(config)
    try:
        await scheduler.run_forever()
    finally:
        await scheduler.stop()


def main():
    args = parse_args()
    try:
        asyncio.run(run(args))
    except CandlesKeeperError as e:
        print(f"\n{ERROR} Synchronization failed: {e}\n")
        sys.exit(1)
    except KeyboardInterrupt:
        pass


# Example of driving a single series directly from Python
# Uncomment this code to use it instead of the command-line interface

# config = SyncConfig.from_env()
# orchestrator = build_orchestrator(SeriesKey("BTC-PERP", "1h"), config)
# candles = asyncio.run(orchestrator.prepare())   # load/bootstrap + heal, no live feed
# print(f"{len(candles)} candles, latest {candles[-1].open_time}")


if __name__ == "__main__":
    main()
