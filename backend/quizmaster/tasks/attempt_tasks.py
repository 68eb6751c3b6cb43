from __future__ import annotations

import argparse
import logging
from typing import Any, Dict, Optional

from quizmaster.core.config import settings
from quizmaster.db.session import SessionLocal
from quizmaster.infra.queue import enqueue
from quizmaster.services.attempt_service import sweep_stale_attempts
from quizmaster.services.quiz_service import refresh_quiz_stats
from quizmaster.services.user_service import refresh_user_stats

logger = logging.getLogger(__name__)


def task_refresh_quiz_stats(*, quiz_id: int) -> Dict[str, Any]:
    """Recompute aggregates for one quiz after an attempt completes."""
    db = SessionLocal()
    try:
        stats = refresh_quiz_stats(db, int(quiz_id))
        return {"quiz_id": int(quiz_id), "stats": stats}
    finally:
        db.close()


def task_refresh_user_stats(*, user_id: int) -> Dict[str, Any]:
    """Recompute a player's aggregates after one of their attempts completes."""
    db = SessionLocal()
    try:
        stats = refresh_user_stats(db, int(user_id))
        return {"user_id": int(user_id), "stats": stats}
    finally:
        db.close()


def task_sweep_stale_attempts(*, older_than_seconds: Optional[int] = None, status: str = "timeout") -> Dict[str, Any]:
    """Close in_progress attempts nobody finished.

    Meant to be scheduled periodically (cron, rq-scheduler).
    """
    seconds = int(older_than_seconds or settings.STALE_ATTEMPT_TIMEOUT_SEC)
    db = SessionLocal()
    try:
        closed = sweep_stale_attempts(db, older_than_seconds=seconds, status=status)
        return {"closed": closed, "status": status, "older_than_seconds": seconds}
    finally:
        db.close()


def main(argv: Optional[list[str]] = None) -> Dict[str, Any]:
    parser = argparse.ArgumentParser(description="Sweep stale quiz attempts")
    parser.add_argument("--older-than", type=int, default=None, help="seconds since start (default: STALE_ATTEMPT_TIMEOUT_SEC)")
    parser.add_argument("--status", choices=["timeout", "abandoned"], default="timeout")
    args = parser.parse_args(argv)

    out = enqueue(task_sweep_stale_attempts, older_than_seconds=args.older_than, status=args.status)
    logger.info("stale attempt sweep dispatched: %s", out)
    return out


if __name__ == "__main__":
    logging.basicConfig(level=settings.LOG_LEVEL)
    main()
