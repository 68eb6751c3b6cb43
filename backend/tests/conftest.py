from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from quizmaster.db.base import Base
from quizmaster.db.session import get_db, make_engine
from quizmaster.main import app
from quizmaster.schemas.quiz import QuizCreateRequest
from quizmaster.services import quiz_service
from quizmaster.services.user_service import ensure_user_exists


@pytest.fixture()
def engine():
    eng = make_engine("sqlite://", poolclass=StaticPool)
    Base.metadata.create_all(bind=eng)
    yield eng
    eng.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture()
def db(session_factory):
    s = session_factory()
    try:
        yield s
    finally:
        s.close()


@pytest.fixture()
def client(session_factory):
    def _get_db():
        s = session_factory()
        try:
            yield s
        finally:
            s.close()

    app.dependency_overrides[get_db] = _get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def make_quiz(db):
    """Create a quiz whose first option is the correct one for every question."""

    def _make(*, author_id: int = 1, questions: int = 4, pass_percentage: int = 70, published: bool = True):
        ensure_user_exists(db, author_id, role="user")
        payload = QuizCreateRequest(
            title="Capitals",
            category="general",
            pass_percentage=pass_percentage,
            is_published=published,
            questions=[
                {
                    "text": f"Question {i}",
                    "explanation": f"Because {i}",
                    "points": 2,
                    "options": [
                        {"text": f"right {i}", "correct": True},
                        {"text": f"wrong {i}", "correct": False},
                        {"text": f"other {i}", "correct": False},
                    ],
                }
                for i in range(1, questions + 1)
            ],
        )
        return quiz_service.create_quiz(db, author_id=author_id, payload=payload)

    return _make
