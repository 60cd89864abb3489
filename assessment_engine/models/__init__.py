# assessment_engine/models/__init__.py

from .user import User
from .test import Test
from .question import Question, QuestionOption
from .submission import Submission, SubmissionAnswer

__all__ = [
    "User",
    "Test",
    "Question",
    "QuestionOption",
    "Submission",
    "SubmissionAnswer",
]
