from __future__ import annotations

from datetime import datetime
from typing import Annotated, List, Literal, Optional, Union
from pydantic import BaseModel, Field

AttemptStatus = Literal["in_progress", "completed", "abandoned", "timeout"]

MAX_ANSWER_LENGTH = 500


class StartAttemptRequest(BaseModel):
    quiz_id: int = Field(ge=1)


class SubmitAnswerRequest(BaseModel):
    question_id: int = Field(ge=1)
    # Option id for choice questions; free text is accepted but never matches.
    selected_answer: Union[int, Annotated[str, Field(max_length=MAX_ANSWER_LENGTH)]]
    time_spent: int = Field(default=0, ge=0)


class AnswerOut(BaseModel):
    question_id: int
    selected_answer: str
    is_correct: bool
    points_earned: int = 0
    time_spent: int = 0


class AttemptOut(BaseModel):
    attempt_id: int
    quiz_id: int
    user_id: int
    status: AttemptStatus
    start_time: datetime
    answers: List[AnswerOut] = Field(default_factory=list)

    # Terminal-state fields.
    end_time: Optional[datetime] = None
    time_spent: Optional[int] = None
    score: Optional[int] = None
    percentage: Optional[int] = None
    passed: Optional[bool] = None


class AttemptListItemOut(BaseModel):
    """Row of an attempt listing: no answers, just how many were given."""

    attempt_id: int
    quiz_id: int
    user_id: int
    status: AttemptStatus
    start_time: datetime
    answer_count: int = 0

    # my-attempts rows carry the quiz, quiz results rows carry the player.
    quiz_title: Optional[str] = None
    quiz_category: Optional[str] = None
    user_name: Optional[str] = None
    user_email: Optional[str] = None

    end_time: Optional[datetime] = None
    time_spent: Optional[int] = None
    score: Optional[int] = None
    percentage: Optional[int] = None
    passed: Optional[bool] = None


class AttemptResultsOut(BaseModel):
    total_questions: int
    correct_answers: int
    score: int
    passed: bool
    time_spent: int
    pass_percentage: int
