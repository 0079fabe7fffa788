#!/usr/bin/env python3
"""
Run one scheduling batch by hand, outside the Celery beat schedule.

With --dry-run the jobs are printed instead of being sent to the queue.
"""

import argparse
import json
import os
import sys
from dataclasses import asdict

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dialer.context import EngineContext, default_context
from dialer.database import SessionLocal, init_db
from dialer.scheduler import run_scheduling_batch


class PrintingQueue:
    """Prints each job instead of queueing it."""

    def add(self, name, payload, options):
        print(f"[{name}] delay={options.delay_ms}ms attempts={options.attempts} {json.dumps(payload)}")


def main(argv: list[str]) -> int:
    parser = argparse.ArgumentParser(description="Run one outbound call scheduling batch")
    parser.add_argument("--dry-run", action="store_true", help="Print jobs instead of submitting them")
    args = parser.parse_args(argv)

    init_db()
    if args.dry_run:
        ctx = EngineContext(session_factory=SessionLocal, queue=PrintingQueue())
    else:
        ctx = default_context()

    stats = run_scheduling_batch(ctx)
    print(json.dumps(asdict(stats), indent=2))
    return 1 if stats.run_skipped else 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
