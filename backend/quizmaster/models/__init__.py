from quizmaster.models.user import User
from quizmaster.models.quiz import Quiz
from quizmaster.models.question import Question, QuestionOption
from quizmaster.models.attempt import AttemptAnswer, QuizAttempt

__all__ = [
    "User",
    "Quiz",
    "Question",
    "QuestionOption",
    "QuizAttempt",
    "AttemptAnswer",
]
