from __future__ import annotations

from typing import List, Literal, Optional
from pydantic import BaseModel, Field

QuestionType = Literal["multiple-choice", "true-false", "fill-in-the-blank"]
Difficulty = Literal["easy", "medium", "hard"]
Category = Literal[
    "general",
    "science",
    "history",
    "math",
    "language",
    "technology",
    "sports",
    "entertainment",
    "other",
]


class OptionIn(BaseModel):
    text: str = Field(min_length=1, max_length=200)
    correct: bool = False


class QuestionIn(BaseModel):
    text: str = Field(min_length=1, max_length=500)
    type: QuestionType = "multiple-choice"
    options: List[OptionIn] = Field(default_factory=list)
    explanation: Optional[str] = Field(default=None, max_length=1000)
    points: int = Field(default=1, ge=1, le=10)
    time_limit: int = Field(default=60, ge=10, le=600)


class QuizCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, max_length=1000)
    category: Category = "general"
    difficulty: Difficulty = "medium"
    pass_percentage: int = Field(default=70, ge=0, le=100)
    is_published: bool = False
    questions: List[QuestionIn] = Field(default_factory=list)


class OptionOut(BaseModel):
    option_id: int
    text: str
    # Only present for the quiz author / admins.
    correct: Optional[bool] = None


class QuestionOut(BaseModel):
    question_id: int
    order_no: int
    type: str
    text: str
    points: int
    time_limit: int
    explanation: Optional[str] = None
    options: List[OptionOut]


class QuizStatsOut(BaseModel):
    total_attempts: int = 0
    average_score: int = 0
    average_time: int = 0
    completion_rate: int = 0


class QuizOut(BaseModel):
    quiz_id: int
    author_id: int
    title: str
    description: Optional[str] = None
    category: str
    difficulty: str
    pass_percentage: int
    is_published: bool
    question_count: int
    questions: List[QuestionOut]
    stats: Optional[QuizStatsOut] = None
