#!/usr/bin/env python3
"""
Run policy lifecycle sweeps once, outside the API process.

Examples:
    python scripts/run_sweeps.py                      # all sweeps
    python scripts/run_sweeps.py expired_policies
    python scripts/run_sweeps.py renewal_reminders --days 14
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

# Add repo root to path so `bazaruto.*` imports work when running from scripts/
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from bazaruto.api.dependencies import build_services
from bazaruto.jobs.scheduler import RENEWAL_REMINDERS, SWEEP_NAMES
from bazaruto.utils.config_loader import load_app_config

logger = logging.getLogger("run_sweeps")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )


async def run(names, config_path: Optional[Path], days: Optional[int]) -> int:
    config = load_app_config(config_path)
    if days is not None:
        config.scheduler.reminder_days_ahead = days
    services = build_services(config)
    try:
        for name in names:
            count = await services.scheduler.run_once(name)
            logger.info("%s: %d policies", name, count)
    finally:
        await services.dispatcher.close(config.jobs.close_timeout)
        await services.bus.close()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Run policy lifecycle sweeps")
    parser.add_argument("sweeps", nargs="*", help=f"Sweeps to run: {', '.join(SWEEP_NAMES)} (default: all)")
    parser.add_argument("--config", type=Path, default=None, help="Path to app config YAML")
    parser.add_argument("--days", type=int, default=None, help=f"Window for {RENEWAL_REMINDERS}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    args = parser.parse_args()

    setup_logging(args.verbose)
    names = args.sweeps or list(SWEEP_NAMES)
    unknown = [n for n in names if n not in SWEEP_NAMES]
    if unknown:
        parser.error(f"unknown sweep(s): {', '.join(unknown)}")
    try:
        return asyncio.run(run(names, args.config, args.days))
    except Exception as e:
        logger.error("Sweep run failed: %s", e, exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(main())
