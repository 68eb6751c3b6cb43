from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi import HTTPException
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from quizmaster.db.base import Base
from quizmaster.db.session import make_engine
from quizmaster.models.attempt import AttemptAnswer, QuizAttempt
from quizmaster.models.quiz import Quiz
from quizmaster.models.user import User
from quizmaster.schemas.quiz import QuizCreateRequest
from quizmaster.services import attempt_service, quiz_service
from quizmaster.services.user_service import ensure_user_exists

PLAYER = 7
OTHER = 8


def _option(quiz, index, correct=True):
    return quiz["questions"][index]["options"][0 if correct else 1]["option_id"]


def _qid(quiz, index):
    return quiz["questions"][index]["question_id"]


def _start(db, quiz, user_id=PLAYER):
    ensure_user_exists(db, user_id)
    return attempt_service.start_attempt(db, user_id=user_id, quiz_id=quiz["quiz_id"])


def _answer(db, attempt_id, quiz, index, correct=True, user_id=PLAYER):
    return attempt_service.submit_answer(
        db,
        attempt_id=attempt_id,
        requester_id=user_id,
        question_id=_qid(quiz, index),
        selected_answer=_option(quiz, index, correct),
        time_spent=5,
    )


def _count_attempts(db, **filters):
    q = db.query(QuizAttempt)
    for k, v in filters.items():
        q = q.filter(getattr(QuizAttempt, k) == v)
    return q.count()


class _Clock:
    def __init__(self, start):
        self.now = start

    def __call__(self):
        return self.now


def test_start_attempt_creates_in_progress_attempt_without_answer_key(db, make_quiz):
    quiz = make_quiz(questions=2)
    out = _start(db, quiz)

    attempt = out["attempt"]
    assert attempt["status"] == "in_progress"
    assert attempt["user_id"] == PLAYER
    assert attempt["answers"] == []
    assert "score" not in attempt and "end_time" not in attempt

    projected = out["quiz"]
    assert projected["question_count"] == 2
    for q in projected["questions"]:
        assert "explanation" not in q
        assert all("correct" not in o for o in q["options"])


def test_start_attempt_missing_quiz_is_not_found(db):
    ensure_user_exists(db, PLAYER)
    with pytest.raises(HTTPException) as exc:
        attempt_service.start_attempt(db, user_id=PLAYER, quiz_id=404)
    assert exc.value.status_code == 404
    assert exc.value.detail["code"] == "QUIZ_NOT_FOUND"


def test_start_attempt_on_unpublished_quiz_is_forbidden(db, make_quiz):
    quiz = make_quiz(published=False)
    with pytest.raises(HTTPException) as exc:
        _start(db, quiz)
    assert exc.value.status_code == 403
    assert exc.value.detail["code"] == "QUIZ_NOT_PUBLISHED"
    assert _count_attempts(db) == 0


def test_second_start_conflicts_and_returns_active_attempt(db, make_quiz):
    quiz = make_quiz()
    first = _start(db, quiz)["attempt"]
    _answer(db, first["attempt_id"], quiz, 0)

    with pytest.raises(HTTPException) as exc:
        _start(db, quiz)

    assert exc.value.status_code == 409
    detail = exc.value.detail
    assert detail["code"] == "ATTEMPT_ALREADY_ACTIVE"
    assert detail["attempt"]["attempt_id"] == first["attempt_id"]
    assert len(detail["attempt"]["answers"]) == 1
    assert _count_attempts(db, quiz_id=quiz["quiz_id"], user_id=PLAYER, status="in_progress") == 1


def test_database_rejects_two_in_progress_attempts_for_same_pair(db, make_quiz):
    quiz = make_quiz()
    ensure_user_exists(db, PLAYER)
    now = datetime.now(timezone.utc)
    db.add(QuizAttempt(user_id=PLAYER, quiz_id=quiz["quiz_id"], status="in_progress", start_time=now))
    db.commit()

    db.add(QuizAttempt(user_id=PLAYER, quiz_id=quiz["quiz_id"], status="in_progress", start_time=now))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()

    # Finished attempts do not count against the constraint.
    db.add(QuizAttempt(user_id=PLAYER, quiz_id=quiz["quiz_id"], status="completed", start_time=now))
    db.add(QuizAttempt(user_id=PLAYER, quiz_id=quiz["quiz_id"], status="abandoned", start_time=now))
    db.commit()
    assert _count_attempts(db, quiz_id=quiz["quiz_id"]) == 3


def test_different_users_can_play_same_quiz(db, make_quiz):
    quiz = make_quiz()
    a = _start(db, quiz, user_id=PLAYER)["attempt"]
    b = _start(db, quiz, user_id=OTHER)["attempt"]
    assert a["attempt_id"] != b["attempt_id"]


def test_submit_answer_reports_correctness_points_and_explanation(db, make_quiz):
    quiz = make_quiz(questions=2)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]

    right = _answer(db, attempt_id, quiz, 0, correct=True)
    assert right["is_correct"] is True
    assert right["points_earned"] == 2
    assert right["explanation"] == "Because 1"
    assert right["answer"]["question_id"] == _qid(quiz, 0)
    assert right["answer"]["time_spent"] == 5

    wrong = _answer(db, attempt_id, quiz, 1, correct=False)
    assert wrong["is_correct"] is False
    assert wrong["points_earned"] == 0


def test_free_text_answer_is_stored_as_incorrect(db, make_quiz):
    quiz = make_quiz(questions=1)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]

    out = attempt_service.submit_answer(
        db, attempt_id=attempt_id, requester_id=PLAYER, question_id=_qid(quiz, 0), selected_answer="right 1"
    )
    assert out["is_correct"] is False
    assert out["answer"]["selected_answer"] == "right 1"


def test_resubmitting_a_question_keeps_only_latest_answer(db, make_quiz):
    quiz = make_quiz(questions=2)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]

    _answer(db, attempt_id, quiz, 0, correct=False)
    _answer(db, attempt_id, quiz, 1, correct=True)
    out = _answer(db, attempt_id, quiz, 0, correct=True)

    rows = db.query(AttemptAnswer).filter(AttemptAnswer.attempt_id == attempt_id).all()
    assert len(rows) == 2
    by_q = {r.question_id: r for r in rows}
    assert by_q[_qid(quiz, 0)].is_correct is True
    assert by_q[_qid(quiz, 0)].selected_answer == str(_option(quiz, 0))
    assert out["answer"]["is_correct"] is True


def test_overlong_free_text_answer_is_rejected(db, make_quiz):
    quiz = make_quiz(questions=1)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]

    with pytest.raises(HTTPException) as exc:
        attempt_service.submit_answer(
            db,
            attempt_id=attempt_id,
            requester_id=PLAYER,
            question_id=_qid(quiz, 0),
            selected_answer="x" * 501,
        )
    assert exc.value.status_code == 422
    assert db.query(AttemptAnswer).count() == 0


def test_answer_rejected_when_attempt_completes_during_submit(tmp_path, monkeypatch):
    # Two sessions on a file database, so each commit is visible to the other.
    eng = make_engine(f"sqlite:///{tmp_path / 'attempts.db'}")
    Base.metadata.create_all(bind=eng)
    factory = sessionmaker(bind=eng, autocommit=False, autoflush=False)
    player, second_tab = factory(), factory()
    try:
        ensure_user_exists(player, 1)
        payload = QuizCreateRequest(
            title="Race",
            is_published=True,
            questions=[{"text": "Q", "options": [{"text": "a", "correct": True}, {"text": "b"}]}],
        )
        quiz = quiz_service.create_quiz(player, author_id=1, payload=payload)
        attempt_id = _start(player, quiz)["attempt"]["attempt_id"]

        load_quiz = quiz_service.get_quiz_definition
        completed = []

        def _complete_elsewhere_then_load(session, quiz_id):
            # Runs after submit_answer has seen the attempt in progress.
            if session is player and not completed:
                completed.append(
                    attempt_service.complete_attempt(second_tab, attempt_id=attempt_id, requester_id=PLAYER)
                )
            return load_quiz(session, quiz_id)

        monkeypatch.setattr(attempt_service.quiz_service, "get_quiz_definition", _complete_elsewhere_then_load)

        with pytest.raises(HTTPException) as exc:
            _answer(player, attempt_id, quiz, 0)
        assert exc.value.status_code == 409
        assert exc.value.detail["code"] == "ATTEMPT_NOT_ACTIVE"
        assert completed[0]["results"]["correct_answers"] == 0

        assert player.query(AttemptAnswer).filter(AttemptAnswer.attempt_id == attempt_id).count() == 0
        row = player.query(QuizAttempt).filter(QuizAttempt.id == attempt_id).one()
        assert (row.status, row.score, row.percentage) == ("completed", 0, 0)
    finally:
        player.close()
        second_tab.close()
        eng.dispose()


def test_submit_answer_preconditions(db, make_quiz):
    quiz = make_quiz(questions=1)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]
    ensure_user_exists(db, OTHER)

    with pytest.raises(HTTPException) as exc:
        attempt_service.submit_answer(db, attempt_id=9999, requester_id=PLAYER, question_id=1, selected_answer=1)
    assert exc.value.status_code == 404
    assert exc.value.detail["code"] == "ATTEMPT_NOT_FOUND"

    with pytest.raises(HTTPException) as exc:
        _answer(db, attempt_id, quiz, 0, user_id=OTHER)
    assert exc.value.status_code == 403

    with pytest.raises(HTTPException) as exc:
        attempt_service.submit_answer(db, attempt_id=attempt_id, requester_id=PLAYER, question_id=123456, selected_answer=1)
    assert exc.value.status_code == 404
    assert exc.value.detail["code"] == "QUESTION_NOT_FOUND"


def test_question_from_another_quiz_is_not_found(db, make_quiz):
    quiz = make_quiz(questions=1)
    other_quiz = make_quiz(questions=1)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]

    with pytest.raises(HTTPException) as exc:
        attempt_service.submit_answer(
            db,
            attempt_id=attempt_id,
            requester_id=PLAYER,
            question_id=_qid(other_quiz, 0),
            selected_answer=_option(other_quiz, 0),
        )
    assert exc.value.detail["code"] == "QUESTION_NOT_FOUND"


def test_complete_attempt_scores_three_of_four(db, make_quiz, monkeypatch):
    quiz = make_quiz(questions=4, pass_percentage=70)
    t0 = datetime(2026, 3, 1, 10, 0, 0, tzinfo=timezone.utc)
    clock = _Clock(t0)
    monkeypatch.setattr(attempt_service, "_now_utc", clock)

    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]
    for i in range(3):
        _answer(db, attempt_id, quiz, i, correct=True)
    _answer(db, attempt_id, quiz, 3, correct=False)

    clock.now = t0 + timedelta(seconds=95, milliseconds=600)
    out = attempt_service.complete_attempt(db, attempt_id=attempt_id, requester_id=PLAYER)

    assert out["results"] == {
        "total_questions": 4,
        "correct_answers": 3,
        "score": 75,
        "passed": True,
        "time_spent": 96,
        "pass_percentage": 70,
    }
    attempt = out["attempt"]
    assert attempt["status"] == "completed"
    assert attempt["score"] == 3
    assert attempt["percentage"] == 75
    assert attempt["passed"] is True
    assert attempt["time_spent"] == 96
    assert len(attempt["answers"]) == 4


def test_complete_attempt_two_of_three_fails(db, make_quiz):
    quiz = make_quiz(questions=3, pass_percentage=70)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]
    _answer(db, attempt_id, quiz, 0)
    _answer(db, attempt_id, quiz, 2)

    out = attempt_service.complete_attempt(db, attempt_id=attempt_id, requester_id=PLAYER)
    assert out["results"]["score"] == 67
    assert out["results"]["passed"] is False
    assert out["attempt"]["score"] == 2


def test_complete_without_answers_scores_zero(db, make_quiz):
    quiz = make_quiz(questions=2)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]
    out = attempt_service.complete_attempt(db, attempt_id=attempt_id, requester_id=PLAYER)
    assert out["attempt"]["percentage"] == 0
    assert out["attempt"]["passed"] is False


def test_second_completion_conflicts_and_keeps_results(db, make_quiz):
    quiz = make_quiz(questions=2)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]
    _answer(db, attempt_id, quiz, 0)
    first = attempt_service.complete_attempt(db, attempt_id=attempt_id, requester_id=PLAYER)

    with pytest.raises(HTTPException) as exc:
        attempt_service.complete_attempt(db, attempt_id=attempt_id, requester_id=PLAYER)
    assert exc.value.status_code == 409
    assert exc.value.detail["code"] == "ATTEMPT_ALREADY_COMPLETED"

    again = attempt_service.get_attempt(db, attempt_id=attempt_id, requester_id=PLAYER)
    for k in ("score", "percentage", "passed", "time_spent", "end_time"):
        assert again[k] == first["attempt"][k]


def test_complete_by_non_owner_is_forbidden(db, make_quiz):
    quiz = make_quiz(questions=1)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]
    ensure_user_exists(db, OTHER)

    with pytest.raises(HTTPException) as exc:
        attempt_service.complete_attempt(db, attempt_id=attempt_id, requester_id=OTHER)
    assert exc.value.status_code == 403
    assert db.query(QuizAttempt).filter(QuizAttempt.id == attempt_id).one().status == "in_progress"


def test_submit_after_completion_conflicts_without_mutation(db, make_quiz):
    quiz = make_quiz(questions=2)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]
    _answer(db, attempt_id, quiz, 0, correct=False)
    attempt_service.complete_attempt(db, attempt_id=attempt_id, requester_id=PLAYER)

    with pytest.raises(HTTPException) as exc:
        _answer(db, attempt_id, quiz, 0, correct=True)
    assert exc.value.status_code == 409
    assert exc.value.detail["code"] == "ATTEMPT_NOT_ACTIVE"

    with pytest.raises(HTTPException):
        _answer(db, attempt_id, quiz, 1, correct=True)

    rows = db.query(AttemptAnswer).filter(AttemptAnswer.attempt_id == attempt_id).all()
    assert len(rows) == 1
    assert rows[0].is_correct is False


def test_new_attempt_allowed_after_completion(db, make_quiz):
    quiz = make_quiz(questions=1)
    first = _start(db, quiz)["attempt"]["attempt_id"]
    attempt_service.complete_attempt(db, attempt_id=first, requester_id=PLAYER)

    second = _start(db, quiz)["attempt"]["attempt_id"]
    assert second != first
    assert _count_attempts(db, user_id=PLAYER, quiz_id=quiz["quiz_id"]) == 2


def test_completion_refreshes_quiz_stats(db, make_quiz):
    quiz = make_quiz(questions=2, pass_percentage=50)

    a = _start(db, quiz, user_id=PLAYER)["attempt"]["attempt_id"]
    _answer(db, a, quiz, 0, user_id=PLAYER)
    _answer(db, a, quiz, 1, user_id=PLAYER)
    attempt_service.complete_attempt(db, attempt_id=a, requester_id=PLAYER)

    b = _start(db, quiz, user_id=OTHER)["attempt"]["attempt_id"]
    attempt_service.complete_attempt(db, attempt_id=b, requester_id=OTHER)

    row = db.query(Quiz).filter(Quiz.id == quiz["quiz_id"]).one()
    db.refresh(row)
    assert row.total_attempts == 2
    assert row.average_score == 50
    assert row.completion_rate == 50


def test_completion_refreshes_player_stats(db, make_quiz):
    quiz = make_quiz(questions=2)

    first = _start(db, quiz)["attempt"]["attempt_id"]
    _answer(db, first, quiz, 0)
    _answer(db, first, quiz, 1)
    attempt_service.complete_attempt(db, attempt_id=first, requester_id=PLAYER)

    second = _start(db, quiz)["attempt"]["attempt_id"]
    _answer(db, second, quiz, 0, correct=False)
    attempt_service.complete_attempt(db, attempt_id=second, requester_id=PLAYER)

    # Unfinished attempts do not count.
    _start(db, make_quiz(questions=1))

    user = db.query(User).filter(User.id == PLAYER).one()
    db.refresh(user)
    assert user.quizzes_taken == 2
    assert user.total_score == 100
    assert user.average_score == 50
    assert user.last_quiz_date is not None

    other = db.query(User).filter(User.id == 1).one()
    assert other.quizzes_taken == 0


def test_player_stats_failure_does_not_fail_completion(db, make_quiz, monkeypatch):
    quiz = make_quiz(questions=1)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]

    def _boom(*_args, **_kwargs):
        raise RuntimeError("stats store down")

    monkeypatch.setattr(attempt_service.user_service, "refresh_user_stats", _boom)
    out = attempt_service.complete_attempt(db, attempt_id=attempt_id, requester_id=PLAYER)
    assert out["attempt"]["status"] == "completed"

    row = db.query(Quiz).filter(Quiz.id == quiz["quiz_id"]).one()
    db.refresh(row)
    assert row.total_attempts == 1


def test_stats_failure_does_not_fail_completion(db, make_quiz, monkeypatch):
    quiz = make_quiz(questions=1)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]

    def _boom(*_args, **_kwargs):
        raise RuntimeError("stats store down")

    monkeypatch.setattr(attempt_service.quiz_service, "refresh_quiz_stats", _boom)
    out = attempt_service.complete_attempt(db, attempt_id=attempt_id, requester_id=PLAYER)
    assert out["attempt"]["status"] == "completed"


def test_completion_enqueues_stats_when_async(db, make_quiz, monkeypatch):
    quiz = make_quiz(questions=1)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]
    captured = []

    monkeypatch.setattr(attempt_service, "is_async_enabled", lambda: True)
    monkeypatch.setattr(attempt_service, "enqueue", lambda fn, **kwargs: captured.append((fn.__name__, kwargs)))

    attempt_service.complete_attempt(db, attempt_id=attempt_id, requester_id=PLAYER)
    assert captured == [
        ("task_refresh_quiz_stats", {"quiz_id": quiz["quiz_id"]}),
        ("task_refresh_user_stats", {"user_id": PLAYER}),
    ]


def test_get_attempt_authorization(db, make_quiz):
    quiz = make_quiz(questions=1)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]
    _answer(db, attempt_id, quiz, 0)
    ensure_user_exists(db, OTHER)

    own = attempt_service.get_attempt(db, attempt_id=attempt_id, requester_id=PLAYER)
    assert own["attempt_id"] == attempt_id
    assert len(own["answers"]) == 1

    as_admin = attempt_service.get_attempt(db, attempt_id=attempt_id, requester_id=OTHER, is_admin=True)
    assert as_admin["attempt_id"] == attempt_id

    with pytest.raises(HTTPException) as exc:
        attempt_service.get_attempt(db, attempt_id=attempt_id, requester_id=OTHER)
    assert exc.value.status_code == 403

    with pytest.raises(HTTPException) as exc:
        attempt_service.get_attempt(db, attempt_id=attempt_id + 100, requester_id=PLAYER)
    assert exc.value.status_code == 404


def test_list_my_attempts_paginates_newest_first(db, make_quiz):
    quizzes = [make_quiz(questions=1) for _ in range(3)]
    ids = [_start(db, q)["attempt"]["attempt_id"] for q in quizzes]
    attempt_service.complete_attempt(db, attempt_id=ids[0], requester_id=PLAYER)

    page1 = attempt_service.list_my_attempts(db, user_id=PLAYER, page=1, limit=2)
    assert page1["total"] == 3
    assert page1["pages"] == 2
    assert [a["attempt_id"] for a in page1["items"]] == [ids[2], ids[1]]

    page2 = attempt_service.list_my_attempts(db, user_id=PLAYER, page=2, limit=2)
    assert [a["attempt_id"] for a in page2["items"]] == [ids[0]]

    done = attempt_service.list_my_attempts(db, user_id=PLAYER, status="completed")
    assert [a["attempt_id"] for a in done["items"]] == [ids[0]]


def test_list_quiz_attempts_requires_author_or_admin(db, make_quiz):
    quiz = make_quiz(author_id=1, questions=1)
    _start(db, quiz, user_id=PLAYER)
    _start(db, quiz, user_id=OTHER)

    out = attempt_service.list_quiz_attempts(db, quiz_id=quiz["quiz_id"], requester_id=1)
    assert out["total"] == 2

    with pytest.raises(HTTPException) as exc:
        attempt_service.list_quiz_attempts(db, quiz_id=quiz["quiz_id"], requester_id=PLAYER)
    assert exc.value.status_code == 403

    out = attempt_service.list_quiz_attempts(db, quiz_id=quiz["quiz_id"], requester_id=PLAYER, is_admin=True)
    assert out["total"] == 2


def test_list_items_summarize_answers_and_quiz(db, make_quiz):
    quiz = make_quiz(questions=3)
    attempt_id = _start(db, quiz)["attempt"]["attempt_id"]
    _answer(db, attempt_id, quiz, 0)
    _answer(db, attempt_id, quiz, 1, correct=False)

    item = attempt_service.list_my_attempts(db, user_id=PLAYER)["items"][0]
    assert item["attempt_id"] == attempt_id
    assert item["answer_count"] == 2
    assert "answers" not in item
    assert item["quiz_title"] == "Capitals"
    assert item["quiz_category"] == "general"
    assert "user_email" not in item
    assert "score" not in item

    attempt_service.complete_attempt(db, attempt_id=attempt_id, requester_id=PLAYER)
    item = attempt_service.list_my_attempts(db, user_id=PLAYER)["items"][0]
    assert item["percentage"] == 33
    assert item["answer_count"] == 2


def test_quiz_results_items_carry_the_player(db, make_quiz):
    quiz = make_quiz(author_id=1, questions=1)
    attempt_id = _start(db, quiz, user_id=PLAYER)["attempt"]["attempt_id"]
    _answer(db, attempt_id, quiz, 0)

    item = attempt_service.list_quiz_attempts(db, quiz_id=quiz["quiz_id"], requester_id=1)["items"][0]
    assert item["user_id"] == PLAYER
    assert item["user_email"] == f"user{PLAYER}@accounts.local"
    assert item["user_name"] == f"User {PLAYER}"
    assert item["answer_count"] == 1
    assert "quiz_title" not in item


def test_sweep_stale_attempts_times_out_old_in_progress_only(db, make_quiz):
    quiz = make_quiz(questions=1)
    other = make_quiz(questions=1)
    stale = _start(db, quiz)["attempt"]["attempt_id"]
    fresh = _start(db, other)["attempt"]["attempt_id"]

    row = db.query(QuizAttempt).filter(QuizAttempt.id == stale).one()
    row.start_time = datetime.now(timezone.utc) - timedelta(hours=3)
    db.commit()

    closed = attempt_service.sweep_stale_attempts(db, older_than_seconds=3600)
    assert closed == 1

    swept = attempt_service.get_attempt(db, attempt_id=stale, requester_id=PLAYER)
    assert swept["status"] == "timeout"
    assert "end_time" in swept
    assert "score" not in swept
    assert attempt_service.get_attempt(db, attempt_id=fresh, requester_id=PLAYER)["status"] == "in_progress"

    with pytest.raises(HTTPException) as exc:
        attempt_service.complete_attempt(db, attempt_id=stale, requester_id=PLAYER)
    assert exc.value.detail["code"] == "ATTEMPT_NOT_ACTIVE"


def test_sweep_rejects_non_terminal_target_status(db):
    with pytest.raises(ValueError):
        attempt_service.sweep_stale_attempts(db, older_than_seconds=60, status="completed")
