"""Quiz attempt lifecycle: start -> answer -> complete.

State checks happen before any write. The invariants that two requests could
race on are left to the database:

* one in_progress attempt per (user, quiz): partial unique index, insert and
  translate the violation into a 409;
* one answer per (attempt, question): INSERT .. ON CONFLICT DO UPDATE;
* answer writes: UPDATE .. WHERE status = 'in_progress' in the same
  transaction as the upsert, so an answer never lands in a finished attempt;
* completion: UPDATE .. WHERE status = 'in_progress'.
"""

from __future__ import annotations

import datetime as _dt
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import func, update
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Query, Session

from quizmaster.core.config import settings
from quizmaster.core.errors import api_error, conflict, forbidden, not_found
from quizmaster.infra.queue import enqueue, is_async_enabled
from quizmaster.models.attempt import (
    ABANDONED,
    COMPLETED,
    IN_PROGRESS,
    TIMEOUT,
    AttemptAnswer,
    QuizAttempt,
)
from quizmaster.models.quiz import Quiz
from quizmaster.models.user import User
from quizmaster.schemas.attempt import (
    MAX_ANSWER_LENGTH,
    AnswerOut,
    AttemptListItemOut,
    AttemptOut,
    AttemptResultsOut,
)
from quizmaster.schemas.common import PageOut
from quizmaster.services import quiz_service, user_service
from quizmaster.services.scoring import evaluate_answer, round_half_up, score

logger = logging.getLogger(__name__)

_UPSERT_BY_DIALECT = {
    "postgresql": pg_insert,
    "sqlite": sqlite_insert,
}


def _now_utc() -> _dt.datetime:
    return _dt.datetime.now(_dt.timezone.utc)


def _as_utc(value: _dt.datetime) -> _dt.datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=_dt.timezone.utc)
    return value.astimezone(_dt.timezone.utc)


def _answer_out(answer: AttemptAnswer) -> AnswerOut:
    return AnswerOut(
        question_id=int(answer.question_id),
        selected_answer=str(answer.selected_answer),
        is_correct=bool(answer.is_correct),
        points_earned=int(answer.points_earned or 0),
        time_spent=int(answer.time_spent or 0),
    )


def serialize_answer(answer: AttemptAnswer) -> Dict[str, Any]:
    return _answer_out(answer).model_dump(mode="json")


def _result_fields(attempt: QuizAttempt) -> Dict[str, Any]:
    fields: Dict[str, Any] = {}
    if attempt.end_time is not None:
        fields["end_time"] = _as_utc(attempt.end_time)
        fields["time_spent"] = attempt.time_spent
    if attempt.status == COMPLETED:
        fields["score"] = attempt.score
        fields["percentage"] = attempt.percentage
        fields["passed"] = attempt.passed
    return fields


def serialize_attempt(attempt: QuizAttempt, answers: Optional[List[AttemptAnswer]] = None) -> Dict[str, Any]:
    """Attempt projection; result fields only appear once the attempt is completed."""

    fields: Dict[str, Any] = {
        "attempt_id": int(attempt.id),
        "quiz_id": int(attempt.quiz_id),
        "user_id": int(attempt.user_id),
        "status": attempt.status,
        "start_time": _as_utc(attempt.start_time),
        "answers": [_answer_out(a) for a in (answers or [])],
    }
    fields.update(_result_fields(attempt))

    return AttemptOut(**fields).model_dump(mode="json", exclude_none=True)


def _load_answers(db: Session, attempt_id: int) -> List[AttemptAnswer]:
    return (
        db.query(AttemptAnswer)
        .filter(AttemptAnswer.attempt_id == int(attempt_id))
        .order_by(AttemptAnswer.id.asc())
        .all()
    )


def _load_attempt_for_update(db: Session, attempt_id: int) -> Optional[QuizAttempt]:
    # Row lock on PostgreSQL serializes answer writes against completion.
    return (
        db.query(QuizAttempt)
        .filter(QuizAttempt.id == int(attempt_id))
        .with_for_update()
        .populate_existing()
        .first()
    )


def _active_attempt(db: Session, user_id: int, quiz_id: int) -> Optional[QuizAttempt]:
    return (
        db.query(QuizAttempt)
        .filter(
            QuizAttempt.user_id == int(user_id),
            QuizAttempt.quiz_id == int(quiz_id),
            QuizAttempt.status == IN_PROGRESS,
        )
        .first()
    )


def _require_owned_attempt(db: Session, attempt_id: int, requester_id: int) -> QuizAttempt:
    attempt = _load_attempt_for_update(db, attempt_id)
    if not attempt:
        raise not_found("ATTEMPT_NOT_FOUND", "Quiz attempt not found")
    if int(attempt.user_id) != int(requester_id):
        logger.warning("attempt %s access denied for user_id=%s", attempt_id, requester_id)
        raise forbidden("NOT_ATTEMPT_OWNER", "Not authorized to modify this attempt")
    return attempt


def start_attempt(db: Session, *, user_id: int, quiz_id: int) -> Dict[str, Any]:
    quiz = quiz_service.get_quiz_definition(db, quiz_id)
    if quiz is None:
        raise not_found("QUIZ_NOT_FOUND", "Quiz not found")
    if not quiz.is_published:
        raise forbidden("QUIZ_NOT_PUBLISHED", "Quiz is not published")

    attempt = QuizAttempt(
        user_id=int(user_id),
        quiz_id=int(quiz_id),
        status=IN_PROGRESS,
        start_time=_now_utc(),
    )
    db.add(attempt)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        existing = _active_attempt(db, user_id, quiz_id)
        if existing is None:
            raise
        logger.warning(
            "attempt already active attempt_id=%s user_id=%s quiz_id=%s",
            existing.id,
            user_id,
            quiz_id,
        )
        raise conflict(
            "ATTEMPT_ALREADY_ACTIVE",
            "An attempt for this quiz is already in progress",
            attempt=serialize_attempt(existing, _load_answers(db, existing.id)),
        )

    db.refresh(attempt)
    logger.info("attempt started attempt_id=%s user_id=%s quiz_id=%s", attempt.id, user_id, quiz_id)
    return {
        "attempt": serialize_attempt(attempt, []),
        "quiz": quiz_service.project_quiz(quiz, include_answers=False),
    }


def _upsert_answer(db: Session, values: Dict[str, Any]) -> None:
    dialect = db.get_bind().dialect.name
    insert_fn = _UPSERT_BY_DIALECT.get(dialect)
    if insert_fn is None:
        raise RuntimeError(f"Answer upsert is not supported on {dialect!r}")

    stmt = insert_fn(AttemptAnswer).values(**values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[AttemptAnswer.attempt_id, AttemptAnswer.question_id],
        set_={
            "selected_answer": stmt.excluded.selected_answer,
            "is_correct": stmt.excluded.is_correct,
            "points_earned": stmt.excluded.points_earned,
            "time_spent": stmt.excluded.time_spent,
            "updated_at": stmt.excluded.updated_at,
        },
    )
    db.execute(stmt)


def _touch_active_attempt(db: Session, attempt_id: int, now: _dt.datetime) -> bool:
    # Takes the write lock on SQLite; on PostgreSQL the row is already locked.
    res = db.execute(
        update(QuizAttempt)
        .where(QuizAttempt.id == int(attempt_id), QuizAttempt.status == IN_PROGRESS)
        .values(updated_at=now)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


def submit_answer(
    db: Session,
    *,
    attempt_id: int,
    requester_id: int,
    question_id: int,
    selected_answer: Any,
    time_spent: int = 0,
) -> Dict[str, Any]:
    attempt = _require_owned_attempt(db, attempt_id, requester_id)
    if attempt.status != IN_PROGRESS:
        db.rollback()
        raise conflict("ATTEMPT_NOT_ACTIVE", "Quiz attempt is no longer active", status=attempt.status)

    quiz = quiz_service.get_quiz_definition(db, attempt.quiz_id)
    question = quiz.question(question_id) if quiz else None
    if question is None:
        db.rollback()
        raise not_found("QUESTION_NOT_FOUND", "Question not found")

    answer_text = str(selected_answer)
    if len(answer_text) > MAX_ANSWER_LENGTH:
        db.rollback()
        raise api_error(422, "VALIDATION_ERROR", f"selected_answer is longer than {MAX_ANSWER_LENGTH} characters")

    is_correct = evaluate_answer(question, selected_answer)
    points_earned = int(question.points) if is_correct else 0
    now = _now_utc()

    try:
        if not _touch_active_attempt(db, int(attempt.id), now):
            raise conflict("ATTEMPT_NOT_ACTIVE", "Quiz attempt is no longer active")
        _upsert_answer(
            db,
            {
                "attempt_id": int(attempt.id),
                "question_id": int(question.id),
                "selected_answer": answer_text,
                "is_correct": bool(is_correct),
                "points_earned": points_earned,
                "time_spent": max(0, int(time_spent or 0)),
                "updated_at": now,
            },
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    stored = (
        db.query(AttemptAnswer)
        .filter(AttemptAnswer.attempt_id == int(attempt.id), AttemptAnswer.question_id == int(question.id))
        .populate_existing()
        .one()
    )
    return {
        "answer": serialize_answer(stored),
        "is_correct": bool(is_correct),
        "points_earned": points_earned,
        "explanation": question.explanation,
    }


def complete_attempt(db: Session, *, attempt_id: int, requester_id: int) -> Dict[str, Any]:
    attempt = _require_owned_attempt(db, attempt_id, requester_id)
    if attempt.status != IN_PROGRESS:
        db.rollback()
        if attempt.status == COMPLETED:
            raise conflict("ATTEMPT_ALREADY_COMPLETED", "Quiz attempt is already completed")
        raise conflict("ATTEMPT_NOT_ACTIVE", "Quiz attempt is no longer active", status=attempt.status)

    quiz = quiz_service.get_quiz_definition(db, attempt.quiz_id)
    if quiz is None:
        db.rollback()
        raise not_found("QUIZ_NOT_FOUND", "Quiz not found")

    answers = _load_answers(db, attempt.id)
    result = score(quiz, {int(a.question_id): a for a in answers})

    end_time = _now_utc()
    time_spent = max(0, round_half_up((end_time - _as_utc(attempt.start_time)).total_seconds()))

    try:
        res = db.execute(
            update(QuizAttempt)
            .where(QuizAttempt.id == int(attempt.id), QuizAttempt.status == IN_PROGRESS)
            .values(
                status=COMPLETED,
                end_time=end_time,
                time_spent=time_spent,
                score=result.score,
                percentage=result.percentage,
                passed=result.passed,
                updated_at=end_time,
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            raise conflict("ATTEMPT_ALREADY_COMPLETED", "Quiz attempt is already completed")
        db.commit()
    except IntegrityError:
        db.rollback()
        raise

    db.refresh(attempt)
    logger.info(
        "attempt completed attempt_id=%s user_id=%s quiz_id=%s percentage=%s passed=%s",
        attempt.id,
        attempt.user_id,
        attempt.quiz_id,
        result.percentage,
        result.passed,
    )

    _refresh_stats_after_completion(db, quiz_id=int(attempt.quiz_id), user_id=int(attempt.user_id))

    results = AttemptResultsOut(
        total_questions=result.total_questions,
        correct_answers=result.score,
        score=result.percentage,
        passed=result.passed,
        time_spent=time_spent,
        pass_percentage=result.pass_percentage,
    )
    return {
        "attempt": serialize_attempt(attempt, answers),
        "results": results.model_dump(mode="json"),
    }


def _refresh_stats_after_completion(db: Session, *, quiz_id: int, user_id: int) -> None:
    # Stats are derived data; a failed refresh must not undo the completion.
    if is_async_enabled():
        from quizmaster.tasks.attempt_tasks import task_refresh_quiz_stats, task_refresh_user_stats

        jobs = [(task_refresh_quiz_stats, {"quiz_id": quiz_id}), (task_refresh_user_stats, {"user_id": user_id})]
        for fn, kwargs in jobs:
            try:
                enqueue(fn, **kwargs)
            except Exception as e:
                logger.warning("stats refresh enqueue failed %s: %s", kwargs, e)
        return

    try:
        quiz_service.refresh_quiz_stats(db, quiz_id)
    except Exception as e:
        db.rollback()
        logger.warning("quiz stats refresh failed quiz_id=%s: %s", quiz_id, e)

    try:
        user_service.refresh_user_stats(db, user_id)
    except Exception as e:
        db.rollback()
        logger.warning("user stats refresh failed user_id=%s: %s", user_id, e)


def get_attempt(db: Session, *, attempt_id: int, requester_id: int, is_admin: bool = False) -> Dict[str, Any]:
    attempt = db.query(QuizAttempt).filter(QuizAttempt.id == int(attempt_id)).first()
    if not attempt:
        raise not_found("ATTEMPT_NOT_FOUND", "Quiz attempt not found")
    if int(attempt.user_id) != int(requester_id) and not is_admin:
        raise forbidden("NOT_ATTEMPT_OWNER", "Not authorized to view this attempt")
    return serialize_attempt(attempt, _load_answers(db, attempt.id))


def _page_params(page: int, limit: Optional[int]) -> tuple[int, int]:
    page = max(1, int(page or 1))
    size = int(limit or settings.ATTEMPTS_PAGE_SIZE)
    size = max(1, min(size, int(settings.ATTEMPTS_MAX_PAGE_SIZE)))
    return page, size


def serialize_attempt_row(
    attempt: QuizAttempt,
    *,
    answer_count: int = 0,
    quiz: Optional[Quiz] = None,
    user: Optional[User] = None,
) -> Dict[str, Any]:
    fields: Dict[str, Any] = {
        "attempt_id": int(attempt.id),
        "quiz_id": int(attempt.quiz_id),
        "user_id": int(attempt.user_id),
        "status": attempt.status,
        "start_time": _as_utc(attempt.start_time),
        "answer_count": int(answer_count),
    }
    if quiz is not None:
        fields["quiz_title"] = quiz.title
        fields["quiz_category"] = quiz.category
    if user is not None:
        fields["user_name"] = user.full_name
        fields["user_email"] = user.email
    fields.update(_result_fields(attempt))

    return AttemptListItemOut(**fields).model_dump(mode="json", exclude_none=True)


def _paginate(
    db: Session,
    q: Query,
    *,
    page: int,
    limit: Optional[int],
    with_quiz: bool = False,
    with_user: bool = False,
) -> Dict[str, Any]:
    page, size = _page_params(page, limit)
    total = q.order_by(None).count()
    rows = (
        q.order_by(QuizAttempt.created_at.desc(), QuizAttempt.id.desc())
        .offset((page - 1) * size)
        .limit(size)
        .all()
    )

    # One query per lookup for the whole page.
    counts: Dict[int, int] = {}
    quizzes: Dict[int, Quiz] = {}
    users: Dict[int, User] = {}
    if rows:
        attempt_ids = [int(a.id) for a in rows]
        counts = {
            int(attempt_id): int(n)
            for attempt_id, n in db.query(AttemptAnswer.attempt_id, func.count(AttemptAnswer.id))
            .filter(AttemptAnswer.attempt_id.in_(attempt_ids))
            .group_by(AttemptAnswer.attempt_id)
            .all()
        }
        if with_quiz:
            quiz_ids = sorted({int(a.quiz_id) for a in rows})
            quizzes = {int(x.id): x for x in db.query(Quiz).filter(Quiz.id.in_(quiz_ids)).all()}
        if with_user:
            user_ids = sorted({int(a.user_id) for a in rows})
            users = {int(u.id): u for u in db.query(User).filter(User.id.in_(user_ids)).all()}

    return PageOut(
        items=[
            serialize_attempt_row(
                a,
                answer_count=counts.get(int(a.id), 0),
                quiz=quizzes.get(int(a.quiz_id)),
                user=users.get(int(a.user_id)),
            )
            for a in rows
        ],
        page=page,
        limit=size,
        total=int(total),
        pages=(int(total) + size - 1) // size,
    ).model_dump()


def list_my_attempts(
    db: Session,
    *,
    user_id: int,
    page: int = 1,
    limit: Optional[int] = None,
    status: Optional[str] = None,
) -> Dict[str, Any]:
    q = db.query(QuizAttempt).filter(QuizAttempt.user_id == int(user_id))
    if status:
        q = q.filter(QuizAttempt.status == status)
    return _paginate(db, q, page=page, limit=limit, with_quiz=True)


def list_quiz_attempts(
    db: Session,
    *,
    quiz_id: int,
    requester_id: int,
    is_admin: bool = False,
    page: int = 1,
    limit: Optional[int] = None,
) -> Dict[str, Any]:
    quiz = quiz_service.get_quiz_definition(db, quiz_id)
    if quiz is None:
        raise not_found("QUIZ_NOT_FOUND", "Quiz not found")
    if not quiz_service.can_manage_quiz(quiz, requester_id, is_admin):
        raise forbidden("NOT_QUIZ_OWNER", "Not authorized to view these results")

    q = db.query(QuizAttempt).filter(QuizAttempt.quiz_id == int(quiz_id))
    return _paginate(db, q, page=page, limit=limit, with_user=True)


def sweep_stale_attempts(
    db: Session,
    *,
    older_than_seconds: int,
    status: str = TIMEOUT,
    now: Optional[_dt.datetime] = None,
) -> int:
    """Move in_progress attempts started before the cutoff to a terminal status.

    Intended for a periodic job; returns how many attempts were closed.
    """
    if status not in (TIMEOUT, ABANDONED):
        raise ValueError(f"stale attempts can only become {TIMEOUT!r} or {ABANDONED!r}, got {status!r}")

    now = _as_utc(now) if now is not None else _now_utc()
    cutoff = now - _dt.timedelta(seconds=int(older_than_seconds))

    try:
        res = db.execute(
            update(QuizAttempt)
            .where(QuizAttempt.status == IN_PROGRESS, QuizAttempt.start_time < cutoff)
            .values(status=status, end_time=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        db.commit()
    except Exception:
        db.rollback()
        raise

    closed = int(res.rowcount or 0)
    if closed:
        logger.info("swept %s stale attempts to %s (cutoff=%s)", closed, status, cutoff.isoformat())
    return closed
