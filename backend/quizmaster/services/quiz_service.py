from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from quizmaster.core.errors import api_error, forbidden, not_found
from quizmaster.models.attempt import COMPLETED, QuizAttempt
from quizmaster.models.question import Question, QuestionOption
from quizmaster.models.quiz import Quiz
from quizmaster.schemas.quiz import OptionOut, QuestionOut, QuizCreateRequest, QuizOut, QuizStatsOut
from quizmaster.services.scoring import round_half_up

logger = logging.getLogger(__name__)

CHOICE_TYPES = {"multiple-choice", "true-false"}


@dataclass(frozen=True)
class OptionDef:
    id: int
    text: str
    correct: bool


@dataclass(frozen=True)
class QuestionDef:
    id: int
    order_no: int
    type: str
    text: str
    points: int
    time_limit: int
    explanation: Optional[str]
    options: Tuple[OptionDef, ...] = ()


@dataclass(frozen=True)
class QuizDef:
    """Read-only snapshot of a quiz with its questions and answer keys."""

    id: int
    author_id: int
    title: str
    description: Optional[str]
    category: str
    difficulty: str
    pass_percentage: int
    is_published: bool
    questions: Tuple[QuestionDef, ...] = ()
    stats: Dict[str, int] = field(default_factory=dict)

    def question(self, question_id: int) -> Optional[QuestionDef]:
        for q in self.questions:
            if q.id == int(question_id):
                return q
        return None


def get_quiz_definition(db: Session, quiz_id: int) -> Optional[QuizDef]:
    quiz = db.query(Quiz).filter(Quiz.id == int(quiz_id)).first()
    if not quiz:
        return None

    questions: List[Question] = (
        db.query(Question)
        .filter(Question.quiz_id == quiz.id)
        .order_by(Question.order_no.asc(), Question.id.asc())
        .all()
    )
    options_by_q: Dict[int, List[OptionDef]] = {int(q.id): [] for q in questions}
    if questions:
        rows = (
            db.query(QuestionOption)
            .filter(QuestionOption.question_id.in_(list(options_by_q.keys())))
            .order_by(QuestionOption.order_no.asc(), QuestionOption.id.asc())
            .all()
        )
        for o in rows:
            options_by_q[int(o.question_id)].append(OptionDef(id=int(o.id), text=o.text, correct=bool(o.correct)))

    return QuizDef(
        id=int(quiz.id),
        author_id=int(quiz.author_id),
        title=quiz.title,
        description=quiz.description,
        category=quiz.category,
        difficulty=quiz.difficulty,
        pass_percentage=int(quiz.pass_percentage),
        is_published=bool(quiz.is_published),
        questions=tuple(
            QuestionDef(
                id=int(q.id),
                order_no=int(q.order_no),
                type=q.type,
                text=q.text,
                points=int(q.points or 0),
                time_limit=int(q.time_limit or 0),
                explanation=q.explanation,
                options=tuple(options_by_q[int(q.id)]),
            )
            for q in questions
        ),
        stats={
            "total_attempts": int(quiz.total_attempts or 0),
            "average_score": int(quiz.average_score or 0),
            "average_time": int(quiz.average_time or 0),
            "completion_rate": int(quiz.completion_rate or 0),
        },
    )


def can_manage_quiz(quiz: QuizDef, requester_id: Optional[int], is_admin: bool = False) -> bool:
    if is_admin:
        return True
    return requester_id is not None and int(quiz.author_id) == int(requester_id)


def project_quiz(quiz: QuizDef, *, include_answers: bool = False) -> Dict[str, Any]:
    """Serialize a quiz.

    Without ``include_answers`` the answer key (option ``correct`` flags and
    explanations) is left out; that is the only shape players may see.
    """
    questions = [
        QuestionOut(
            question_id=q.id,
            order_no=q.order_no,
            type=q.type,
            text=q.text,
            points=q.points,
            time_limit=q.time_limit,
            explanation=q.explanation if include_answers else None,
            options=[
                OptionOut(option_id=o.id, text=o.text, correct=o.correct if include_answers else None)
                for o in q.options
            ],
        )
        for q in quiz.questions
    ]
    out = QuizOut(
        quiz_id=quiz.id,
        author_id=quiz.author_id,
        title=quiz.title,
        description=quiz.description,
        category=quiz.category,
        difficulty=quiz.difficulty,
        pass_percentage=quiz.pass_percentage,
        is_published=quiz.is_published,
        question_count=len(quiz.questions),
        questions=questions,
        stats=QuizStatsOut(**quiz.stats) if include_answers else None,
    )
    data = out.model_dump(mode="json")
    if not include_answers:
        for q in data["questions"]:
            q.pop("explanation", None)
            for o in q["options"]:
                o.pop("correct", None)
        data.pop("stats", None)
    return data


def _validate_questions(payload: QuizCreateRequest) -> None:
    for idx, q in enumerate(payload.questions, start=1):
        if q.type not in CHOICE_TYPES:
            continue
        if len(q.options) < 2:
            raise api_error(422, "INVALID_QUESTION", f"Question {idx} needs at least two options", question_index=idx)
        if not any(o.correct for o in q.options):
            raise api_error(422, "INVALID_QUESTION", f"Question {idx} has no correct option", question_index=idx)


def create_quiz(db: Session, *, author_id: int, payload: QuizCreateRequest) -> Dict[str, Any]:
    _validate_questions(payload)

    quiz = Quiz(
        author_id=int(author_id),
        title=payload.title.strip(),
        description=payload.description,
        category=payload.category,
        difficulty=payload.difficulty,
        pass_percentage=int(payload.pass_percentage),
        is_published=bool(payload.is_published),
    )
    try:
        db.add(quiz)
        db.flush()

        for order_no, q in enumerate(payload.questions, start=1):
            question = Question(
                quiz_id=quiz.id,
                order_no=order_no,
                type=q.type,
                text=q.text.strip(),
                explanation=q.explanation,
                points=int(q.points),
                time_limit=int(q.time_limit),
            )
            db.add(question)
            db.flush()
            for opt_no, o in enumerate(q.options, start=1):
                db.add(QuestionOption(question_id=question.id, order_no=opt_no, text=o.text.strip(), correct=bool(o.correct)))

        db.commit()
    except Exception:
        db.rollback()
        raise

    logger.info("quiz created quiz_id=%s author_id=%s questions=%s", quiz.id, author_id, len(payload.questions))
    definition = get_quiz_definition(db, int(quiz.id))
    return project_quiz(definition, include_answers=True)


def get_quiz(db: Session, *, quiz_id: int, requester_id: Optional[int], is_admin: bool = False) -> Dict[str, Any]:
    quiz = get_quiz_definition(db, quiz_id)
    if quiz is None:
        raise not_found("QUIZ_NOT_FOUND", "Quiz not found")

    manager = can_manage_quiz(quiz, requester_id, is_admin)
    if not quiz.is_published and not manager:
        raise forbidden("QUIZ_NOT_PUBLISHED", "Quiz is not published")
    return project_quiz(quiz, include_answers=manager)


def set_quiz_published(
    db: Session,
    *,
    quiz_id: int,
    requester_id: int,
    is_admin: bool = False,
    published: bool = True,
) -> Dict[str, Any]:
    quiz = db.query(Quiz).filter(Quiz.id == int(quiz_id)).first()
    if not quiz:
        raise not_found("QUIZ_NOT_FOUND", "Quiz not found")
    if not is_admin and int(quiz.author_id) != int(requester_id):
        raise forbidden("NOT_QUIZ_OWNER", "Only the quiz author can change publication")

    if bool(quiz.is_published) != bool(published):
        quiz.is_published = bool(published)
        db.commit()
        logger.info("quiz %s quiz_id=%s", "published" if published else "unpublished", quiz_id)

    return project_quiz(get_quiz_definition(db, int(quiz_id)), include_answers=True)


def refresh_quiz_stats(db: Session, quiz_id: int) -> Dict[str, int]:
    """Recompute quiz aggregates from its completed attempts."""

    row = (
        db.query(
            func.count(QuizAttempt.id),
            func.avg(QuizAttempt.percentage),
            func.avg(QuizAttempt.time_spent),
            func.avg(case((QuizAttempt.passed.is_(True), 1), else_=0)),
        )
        .filter(QuizAttempt.quiz_id == int(quiz_id), QuizAttempt.status == COMPLETED)
        .one()
    )
    total, avg_score, avg_time, pass_rate = row

    stats = {
        "total_attempts": int(total or 0),
        "average_score": round_half_up(avg_score or 0),
        "average_time": round_half_up(avg_time or 0),
        "completion_rate": round_half_up((pass_rate or 0) * 100),
    }

    quiz = db.query(Quiz).filter(Quiz.id == int(quiz_id)).first()
    if not quiz:
        return stats

    for k, v in stats.items():
        setattr(quiz, k, v)
    db.commit()
    return stats
