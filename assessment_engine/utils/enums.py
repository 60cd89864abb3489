import enum


class SubmissionStatus(str, enum.Enum):
    draft = "draft"
    submitted = "submitted"
    graded = "graded"


class QuestionType(str, enum.Enum):
    single_choice = "single_choice"
    multiple_choice = "multiple_choice"
    true_false = "true_false"
    short_answer = "short_answer"
    long_answer = "long_answer"
    file_upload = "file_upload"

    @property
    def is_objective(self) -> bool:
        return self in OBJECTIVE_QUESTION_TYPES

    @property
    def answer_kind(self) -> "AnswerKind":
        if self in OBJECTIVE_QUESTION_TYPES:
            return AnswerKind.choice
        if self == QuestionType.file_upload:
            return AnswerKind.file
        return AnswerKind.text


OBJECTIVE_QUESTION_TYPES = frozenset(
    {QuestionType.single_choice, QuestionType.multiple_choice, QuestionType.true_false}
)


class AnswerKind(str, enum.Enum):
    choice = "choice"
    text = "text"
    file = "file"


class ValidationType(str, enum.Enum):
    automatic = "automatic"
    manual = "manual"
    mixed = "mixed"


class TestType(str, enum.Enum):
    __test__ = False

    formative = "formative"
    summative = "summative"


class TestPosition(str, enum.Enum):
    __test__ = False

    after_lesson = "after_lesson"
    after_chapter = "after_chapter"
    after_course = "after_course"


class Role(str, enum.Enum):
    student = "student"
    instructor = "instructor"
    admin = "admin"


class AttemptPhase(str, enum.Enum):
    """Local lifecycle of an attempt runtime, mirroring SubmissionStatus."""
    uninitialized = "uninitialized"
    draft = "draft"
    submitted = "submitted"
    graded = "graded"
