from typing import FrozenSet, List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from assessment_engine.utils.enums import (
    QuestionType,
    TestPosition,
    TestType,
    ValidationType,
)


class OptionDefinition(BaseModel):
    id: UUID
    option_text: str
    # None in the taking view, where correctness is never exposed
    is_correct: Optional[bool] = None
    feedback: Optional[str] = None
    order: int = 0

    model_config = ConfigDict(from_attributes=True)


class QuestionDefinition(BaseModel):
    id: UUID
    question_text: str
    explanation: Optional[str] = None
    type: QuestionType
    points: int = Field(..., gt=0)
    order: int = 0
    is_required: bool = True
    options: List[OptionDefinition] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_objective(self) -> bool:
        return self.type.is_objective

    @property
    def option_ids(self) -> FrozenSet[UUID]:
        return frozenset(o.id for o in self.options)

    @property
    def correct_option_ids(self) -> FrozenSet[UUID]:
        return frozenset(o.id for o in self.options if o.is_correct)


class TestDefinition(BaseModel):
    """Test configuration plus its questions, as seen by the attempt runtime."""
    __test__ = False

    id: UUID
    title: str
    description: Optional[str] = None
    instructions: Optional[str] = None
    type: TestType = TestType.formative
    position: TestPosition = TestPosition.after_lesson
    duration_minutes: Optional[int] = None
    max_attempts: Optional[int] = None
    passing_score: int = Field(..., ge=0, le=100)
    validation_type: ValidationType = ValidationType.automatic
    show_results_immediately: bool = True
    show_correct_answers: bool = False
    randomize_questions: bool = False
    randomize_options: bool = False
    one_question_per_page: bool = False
    allow_back_navigation: bool = True
    auto_save_draft: bool = True
    disable_copy_paste: bool = False
    full_screen_required: bool = False
    webcam_monitoring: bool = False
    questions: List[QuestionDefinition] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @property
    def total_points(self) -> int:
        return sum(q.points for q in self.questions)

    def question(self, question_id: UUID) -> Optional[QuestionDefinition]:
        for q in self.questions:
            if q.id == question_id:
                return q
        return None
