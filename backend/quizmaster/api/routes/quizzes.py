from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from quizmaster.api.deps import get_current_user_optional, is_admin, require_user
from quizmaster.db.session import get_db
from quizmaster.models.user import User
from quizmaster.schemas.common import Envelope
from quizmaster.schemas.quiz import QuizCreateRequest
from quizmaster.services import quiz_service

router = APIRouter(tags=["quizzes"])


@router.post("/quizzes", status_code=201, response_model=Envelope)
def create_quiz(
    request: Request,
    payload: QuizCreateRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    data = quiz_service.create_quiz(db, author_id=int(user.id), payload=payload)
    return {"request_id": request.state.request_id, "data": data, "error": None}


@router.get("/quizzes/{quiz_id}", response_model=Envelope)
def get_quiz(
    request: Request,
    quiz_id: int,
    db: Session = Depends(get_db),
    user: Optional[User] = Depends(get_current_user_optional),
):
    requester_id = int(user.id) if user else None
    data = quiz_service.get_quiz(db, quiz_id=quiz_id, requester_id=requester_id, is_admin=is_admin(user))
    return {"request_id": request.state.request_id, "data": data, "error": None}


@router.post("/quizzes/{quiz_id}/publish", response_model=Envelope)
def publish_quiz(
    request: Request,
    quiz_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    data = quiz_service.set_quiz_published(
        db,
        quiz_id=quiz_id,
        requester_id=int(user.id),
        is_admin=is_admin(user),
        published=True,
    )
    return {"request_id": request.state.request_id, "data": data, "error": None}


@router.post("/quizzes/{quiz_id}/unpublish", response_model=Envelope)
def unpublish_quiz(
    request: Request,
    quiz_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    data = quiz_service.set_quiz_published(
        db,
        quiz_id=quiz_id,
        requester_id=int(user.id),
        is_admin=is_admin(user),
        published=False,
    )
    return {"request_id": request.state.request_id, "data": data, "error": None}
