"""Finish interrupted payment grants and expire abandoned pending payments."""

from __future__ import annotations

import argparse
from datetime import timedelta

from scripts._path import bootstrap

bootstrap("reconcile_payments")

from core.logging import get_logger
from database import SessionLocal
from services.payments.reconciliation import expire_stale_transactions, resume_pending_grants

logger = get_logger(__name__)


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--limit", type=int, default=100, help="Maximum unapplied grants to resume per run.")
    parser.add_argument(
        "--expire-after-hours",
        type=float,
        default=None,
        help="Mark PENDING payments older than this many hours as EXPIRED.",
    )
    return parser.parse_args()


def main() -> int:
    args = _parse_args()
    session = SessionLocal()
    try:
        summary = resume_pending_grants(session, limit=args.limit)
        logger.info(
            "Grant recovery: resumed=%s skipped=%s failed=%s",
            summary.resumed,
            summary.skipped,
            summary.failed,
        )
        if args.expire_after_hours:
            expired = expire_stale_transactions(session, older_than=timedelta(hours=args.expire_after_hours))
            logger.info("Expired %d stale pending payments.", len(expired))
    finally:
        session.close()
    return 1 if summary.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
