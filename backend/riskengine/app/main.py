"""Entrypoint.

Usage:
  python -m riskengine.app.main engine                     # risk cycles + status API
  python -m riskengine.app.main engine --ticks ticks.csv   # replay recorded ticks into the engine
  python -m riskengine.app.main engine --no-api
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from riskengine.app.engine import run_engine


def main() -> None:
    parser = argparse.ArgumentParser("risk-engine")
    parser.add_argument("command", choices=["engine"], help="What to run")
    parser.add_argument("--config", type=Path, default=None, help="YAML config path")
    parser.add_argument("--ticks", type=Path, default=None, help="CSV of ticks to replay")
    parser.add_argument("--no-api", action="store_true", help="Do not serve the status API")
    args = parser.parse_args()

    if args.command == "engine":
        try:
            asyncio.run(run_engine(args.config, ticks_path=args.ticks, serve_api=not args.no_api))
        except KeyboardInterrupt:
            pass
        return


if __name__ == "__main__":
    main()
