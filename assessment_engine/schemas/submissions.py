from datetime import datetime
from typing import Annotated, List, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, StringConstraints

from assessment_engine.schemas.answers import AnswerPayload
from assessment_engine.utils.enums import SubmissionStatus


class AnswerResult(BaseModel):
    question_id: UUID
    selected_options: Optional[List[UUID]] = None
    answer_text: Optional[str] = None
    answer_file: Optional[str] = None
    is_correct: Optional[bool] = None
    points_earned: Optional[int] = None
    feedback: Optional[str] = None
    # Only filled when the test reveals correct answers after submission
    correct_options: Optional[List[UUID]] = None


class SubmissionOut(BaseModel):
    id: UUID
    test_id: UUID
    user_id: UUID
    attempt_number: int
    status: SubmissionStatus
    started_at: datetime
    submitted_at: Optional[datetime] = None
    graded_at: Optional[datetime] = None
    draft_revision: int = 0
    forced: bool = False
    deadline: Optional[datetime] = None
    time_remaining_seconds: Optional[int] = None
    auto_score: Optional[int] = None
    pending_manual: bool = False
    score: Optional[int] = None
    total_points: Optional[int] = None
    percentage: Optional[float] = None
    grade: Optional[str] = None
    passed: Optional[bool] = None
    instructor_comments: Optional[str] = None
    answers: List[AnswerResult] = Field(default_factory=list)


class SaveDraftRequest(BaseModel):
    revision: int = Field(..., ge=1, description="Monotonic autosave counter for this draft")
    answers: List[AnswerPayload] = Field(default_factory=list)


class SaveDraftResult(BaseModel):
    accepted: bool
    draft_revision: int


class SubmitRequest(BaseModel):
    # None submits whatever was last autosaved
    answers: Optional[List[AnswerPayload]] = None
    forced: bool = False


class QuestionGrade(BaseModel):
    question_id: UUID
    points: int = Field(..., validation_alias=AliasChoices("points", "points_earned"))
    feedback: Optional[str] = None


class GradeSubmissionRequest(BaseModel):
    grades: List[QuestionGrade] = Field(
        ..., min_length=1, validation_alias=AliasChoices("grades", "gradings")
    )
    comments: Optional[Annotated[str, StringConstraints(strip_whitespace=True)]] = None

    model_config = ConfigDict(populate_by_name=True)
