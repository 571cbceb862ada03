"""
Maintenance CLI — return stuck jobs to pending, optionally promote right away.

Usage:
    python -m scripts.recover_stuck_jobs
    python -m scripts.recover_stuck_jobs --max-age-seconds 300 --promote

The worker's promoter does the same recovery on every scan. This is for
when the worker is down, or to force recovery with a shorter threshold
after a known crash.
"""

import argparse

from redis import Redis

from config.settings import settings
from models.base import SyncSessionLocal
from scheduler.dispatcher import FastDispatcher
from scheduler.promoter import QueuePromoter
from scheduler.store import JobStore


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Recover stuck scheduler jobs")
    parser.add_argument(
        "--max-age-seconds",
        type=int,
        default=settings.STALE_JOB_SECONDS,
        help="Recover jobs promoted or running for longer than this many seconds.",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=settings.PROMOTION_BATCH_SIZE,
        help="Maximum number of jobs to recover.",
    )
    parser.add_argument(
        "--promote",
        action="store_true",
        help="Run one promotion scan afterwards so due jobs go straight to Redis.",
    )
    return parser


def main() -> None:
    args = build_arg_parser().parse_args()

    session = SyncSessionLocal()
    try:
        store = JobStore()
        recovered = store.recover_stale(session, args.max_age_seconds, limit=args.limit)
        overdue = len(store.find_overdue(session))
    finally:
        session.close()

    if not recovered:
        print("No stuck jobs recovered.")
    else:
        print(f"Recovered {len(recovered)} stuck jobs:")
        for job_id in recovered:
            print(f"- {job_id}")
    print(f"{overdue} pending jobs are past their run_at.")

    if args.promote:
        dispatcher = FastDispatcher(Redis.from_url(settings.redis_url))
        promoter = QueuePromoter(dispatcher, SyncSessionLocal)
        counts = promoter.promote_due()
        print(f"Promotion scan: {counts['promoted']} promoted, {counts['failed']} left pending")
        depth = dispatcher.depth()
        print(f"Redis queue: {depth['ready']} ready, {depth['delayed']} delayed")


if __name__ == "__main__":
    main()
