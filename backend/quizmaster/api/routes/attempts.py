from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.orm import Session

from quizmaster.api.deps import is_admin, require_user
from quizmaster.db.session import get_db
from quizmaster.models.user import User
from quizmaster.schemas.attempt import AttemptStatus, StartAttemptRequest, SubmitAnswerRequest
from quizmaster.schemas.common import Envelope
from quizmaster.services import attempt_service

router = APIRouter(tags=["quiz-attempts"])


@router.post("/quiz-attempts/start", status_code=201, response_model=Envelope)
def start_attempt(
    request: Request,
    payload: StartAttemptRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    data = attempt_service.start_attempt(db, user_id=int(user.id), quiz_id=payload.quiz_id)
    return {"request_id": request.state.request_id, "data": data, "error": None}


# Literal paths first: "/quiz-attempts/{attempt_id}" would otherwise swallow them.
@router.get("/quiz-attempts/my-attempts", response_model=Envelope)
def my_attempts(
    request: Request,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    status: Optional[AttemptStatus] = Query(None),
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    data = attempt_service.list_my_attempts(db, user_id=int(user.id), page=page, limit=limit, status=status)
    return {"request_id": request.state.request_id, "data": data, "error": None}


@router.get("/quiz-attempts/quiz/{quiz_id}/results", response_model=Envelope)
def quiz_results(
    request: Request,
    quiz_id: int,
    page: int = Query(1, ge=1),
    limit: Optional[int] = Query(None, ge=1),
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    data = attempt_service.list_quiz_attempts(
        db,
        quiz_id=quiz_id,
        requester_id=int(user.id),
        is_admin=is_admin(user),
        page=page,
        limit=limit,
    )
    return {"request_id": request.state.request_id, "data": data, "error": None}


@router.post("/quiz-attempts/{attempt_id}/answer", response_model=Envelope)
def submit_answer(
    request: Request,
    attempt_id: int,
    payload: SubmitAnswerRequest,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    data = attempt_service.submit_answer(
        db,
        attempt_id=attempt_id,
        requester_id=int(user.id),
        question_id=payload.question_id,
        selected_answer=payload.selected_answer,
        time_spent=payload.time_spent,
    )
    return {"request_id": request.state.request_id, "data": data, "error": None}


@router.post("/quiz-attempts/{attempt_id}/complete", response_model=Envelope)
def complete_attempt(
    request: Request,
    attempt_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    data = attempt_service.complete_attempt(db, attempt_id=attempt_id, requester_id=int(user.id))
    return {"request_id": request.state.request_id, "data": data, "error": None}


@router.get("/quiz-attempts/{attempt_id}", response_model=Envelope)
def get_attempt(
    request: Request,
    attempt_id: int,
    db: Session = Depends(get_db),
    user: User = Depends(require_user),
):
    data = attempt_service.get_attempt(db, attempt_id=attempt_id, requester_id=int(user.id), is_admin=is_admin(user))
    return {"request_id": request.state.request_id, "data": data, "error": None}
