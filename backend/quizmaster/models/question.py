from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy import text as sa_text
from sqlalchemy.orm import Mapped, mapped_column

from quizmaster.db.base_class import Base


class Question(Base):
    __tablename__ = "questions"

    id: Mapped[int] = mapped_column(primary_key=True)
    quiz_id: Mapped[int] = mapped_column(ForeignKey("quizzes.id", ondelete="CASCADE"), index=True, nullable=False)
    order_no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # multiple-choice | true-false | fill-in-the-blank
    type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="multiple-choice",
        server_default=sa_text("'multiple-choice'"),
    )
    text: Mapped[str] = mapped_column(Text, nullable=False)
    explanation: Mapped[str | None] = mapped_column(Text, nullable=True)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=sa_text("1"))
    # Recommended time for this question, in seconds.
    time_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=60, server_default=sa_text("60"))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class QuestionOption(Base):
    __tablename__ = "question_options"

    id: Mapped[int] = mapped_column(primary_key=True)
    question_id: Mapped[int] = mapped_column(ForeignKey("questions.id", ondelete="CASCADE"), index=True, nullable=False)
    order_no: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    text: Mapped[str] = mapped_column(String(200), nullable=False)
    correct: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=sa_text("false"))
