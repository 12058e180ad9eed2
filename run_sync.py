"""
Script to run the booking reconciliation by hand.
The first cycle only primes the snapshot cache, so two cycles are run.

    python run_sync.py --wait 30
"""
import argparse
import asyncio
import sys
sys.path.insert(0, '.')

from academy_bff.config import settings
from academy_bff.database import SessionLocal, create_tables
from academy_bff.services.reconciliation import build_engine
from academy_bff.utils.logging_config import setup_logging


async def run(wait: float) -> int:
    create_tables()
    engine = build_engine(settings, SessionLocal)
    try:
        print("=" * 50)
        print("Priming booking snapshot...")
        print("=" * 50)
        await engine.poller.run_cycle()
        print(f"  Bookings cached: {len(engine.poller.detector.cache)}")

        print(f"\nWaiting {wait}s before comparing...")
        await asyncio.sleep(wait)

        changes = await engine.poller.run_cycle()
        print("\n" + "=" * 50)
        print(f"Results ({engine.poller.last_cycle_status}):")
        for change in changes:
            print(f"  {change.uid}: {change.old_status.value} -> {change.new_status.value}")
        if not changes:
            print("  No status changes detected.")
        print("=" * 50)
        return 0 if engine.poller.last_cycle_status == "success" else 1
    finally:
        await engine.stop()


def main():
    parser = argparse.ArgumentParser(description="Run booking reconciliation against Cal.com")
    parser.add_argument("--wait", type=float, default=settings.poll_interval_seconds,
                        help="seconds between the priming cycle and the compared cycle")
    args = parser.parse_args()

    setup_logging(settings.log_level, json_format=False)
    sys.exit(asyncio.run(run(args.wait)))


if __name__ == "__main__":
    main()
