from quizmaster.db.base_class import Base

# Import all models so Base.metadata sees every table
from quizmaster.models.user import User
from quizmaster.models.quiz import Quiz
from quizmaster.models.question import Question, QuestionOption
from quizmaster.models.attempt import AttemptAnswer, QuizAttempt
