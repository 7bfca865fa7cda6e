#!/usr/bin/env python3
"""
Run Accrual Sweep Script.

Recomputes accumulated yield for all active deposits right now, either
in this process or by enqueueing the dramatiq task for a worker.
"""

import argparse
import asyncio
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from loguru import logger

# Configure logger for script
logger.remove()
logger.add(sys.stderr, level="INFO")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run one yield accrual sweep"
    )
    parser.add_argument(
        "--enqueue",
        action="store_true",
        help="Send the sweep to the task queue instead of running it here",
    )
    args = parser.parse_args()

    from jobs.tasks.yield_accrual import run_accrual_sweep, run_accrual_sweep_async

    if args.enqueue:
        message = run_accrual_sweep.send()
        logger.success(f"Accrual sweep enqueued: message {message.message_id}")
        return

    result = asyncio.run(run_accrual_sweep_async())
    if result.skipped:
        logger.warning("Another sweep is running, nothing done")
        sys.exit(1)

    logger.success(
        f"Sweep done: scanned={result.scanned}, updated={result.updated}, "
        f"stale={result.stale}, failed={result.failed}"
    )


if __name__ == "__main__":
    main()
