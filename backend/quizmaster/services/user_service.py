from __future__ import annotations

import logging
from typing import Any, Dict

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from quizmaster.models.attempt import COMPLETED, QuizAttempt
from quizmaster.models.user import User
from quizmaster.services.scoring import round_half_up

logger = logging.getLogger(__name__)


def ensure_user_exists(db: Session, user_id: int, *, role: str = "user") -> User:
    """Ensure a user row exists for a given numeric ID.

    Identities come from the account service (headers or JWT), but attempts
    and quizzes reference ``users.id`` through foreign keys. Missing rows are
    created on first sight with a placeholder email.
    """

    user = db.query(User).filter(User.id == int(user_id)).first()
    if user:
        # Keep the mirrored role in sync with what the caller presented
        if role and (user.role or "") != role:
            user.role = role
            db.commit()
        return user

    uid = int(user_id)
    email = f"{role}{uid}@accounts.local"

    # If email happens to exist already, keep it unique.
    if db.query(User).filter(User.email == email).first():
        email = f"{role}{uid}-{uid}@accounts.local"

    user = User(id=uid, email=email, full_name=f"{role.title()} {uid}", role=role)
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        # Another request created the same id first.
        db.rollback()
        user = db.query(User).filter(User.id == uid).first()
        if user is None:
            raise
        return user

    db.refresh(user)
    logger.info("mirrored user created user_id=%s role=%s", uid, role)
    return user


def refresh_user_stats(db: Session, user_id: int) -> Dict[str, Any]:
    """Recompute a user's aggregates from their completed attempts.

    ``total_score`` sums attempt percentages and ``average_score`` is their
    rounded mean, matching how quiz averages are reported.
    """

    total, score_sum, avg_score, last_end = (
        db.query(
            func.count(QuizAttempt.id),
            func.sum(QuizAttempt.percentage),
            func.avg(QuizAttempt.percentage),
            func.max(QuizAttempt.end_time),
        )
        .filter(QuizAttempt.user_id == int(user_id), QuizAttempt.status == COMPLETED)
        .one()
    )

    stats: Dict[str, Any] = {
        "quizzes_taken": int(total or 0),
        "total_score": int(score_sum or 0),
        "average_score": round_half_up(avg_score or 0),
        "last_quiz_date": last_end,
    }

    user = db.query(User).filter(User.id == int(user_id)).first()
    if not user:
        return stats

    for k, v in stats.items():
        setattr(user, k, v)
    db.commit()
    logger.info("user stats refreshed user_id=%s quizzes_taken=%s", user_id, stats["quizzes_taken"])
    return stats
