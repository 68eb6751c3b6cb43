"""Attempt scoring.

Pure functions over quiz/question shapes: anything exposing ``questions``
and ``pass_percentage`` (quiz), ``id`` and ``options`` (question) and
``id``/``correct`` (option) works, including ``SimpleNamespace`` objects.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

DEFAULT_PASS_PERCENTAGE = 70


@dataclass(frozen=True)
class ScoreResult:
    score: int
    percentage: int
    passed: bool
    total_questions: int
    pass_percentage: int


def round_half_up(value: Any) -> int:
    """Round to the nearest integer, ties away from zero (62.5 -> 63)."""
    return int(Decimal(str(value)).quantize(Decimal(1), rounding=ROUND_HALF_UP))


def _answer_is_correct(answer: Any) -> bool:
    if isinstance(answer, Mapping):
        return bool(answer.get("is_correct"))
    return bool(getattr(answer, "is_correct", False))


def _pass_percentage(quiz: Any) -> int:
    value = getattr(quiz, "pass_percentage", None)
    if value is None:
        return DEFAULT_PASS_PERCENTAGE
    return int(value)


def evaluate_answer(question: Any, selected_option_id: Any) -> bool:
    """Return the ``correct`` flag of the selected option.

    Unknown ids, free text and ``None`` simply evaluate to False.
    """
    if selected_option_id is None or isinstance(selected_option_id, bool):
        return False
    wanted = str(selected_option_id).strip()
    if not wanted:
        return False

    for opt in getattr(question, "options", None) or ():
        if str(getattr(opt, "id", "")) == wanted:
            return bool(getattr(opt, "correct", False))
    return False


def percentage_of(correct: int, total: int) -> int:
    if total <= 0:
        return 0
    return round_half_up(Decimal(int(correct)) * 100 / Decimal(int(total)))


def score(quiz: Any, answers: Mapping[Any, Any]) -> ScoreResult:
    """Score a set of answers keyed by question id.

    Questions without an answer count as incorrect; answers for ids that are
    not part of the quiz are ignored.
    """
    questions = list(getattr(quiz, "questions", None) or ())
    total = len(questions)
    answers = answers or {}

    correct = 0
    for q in questions:
        a = answers.get(q.id)
        if a is not None and _answer_is_correct(a):
            correct += 1

    pct = percentage_of(correct, total)
    threshold = _pass_percentage(quiz)
    return ScoreResult(
        score=correct,
        percentage=pct,
        passed=pct >= threshold,
        total_questions=total,
        pass_percentage=threshold,
    )
