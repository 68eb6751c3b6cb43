from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from quizmaster.db.base_class import Base


class Quiz(Base):
    __tablename__ = "quizzes"
    __table_args__ = (
        CheckConstraint("pass_percentage BETWEEN 0 AND 100", name="ck_quizzes_pass_percentage"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    author_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general", server_default=text("'general'"))
    difficulty: Mapped[str] = mapped_column(String(20), nullable=False, default="medium", server_default=text("'medium'"))
    pass_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=70, server_default=text("70"))
    is_published: Mapped[bool] = mapped_column(Boolean, index=True, nullable=False, default=False, server_default=text("false"))

    # Aggregates over completed attempts, refreshed after each completion.
    total_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    average_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    average_time: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    completion_rate: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
