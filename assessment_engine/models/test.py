import uuid
from sqlalchemy import (
    Column, String, Text, Integer, Boolean, DateTime, Enum, ForeignKey, CheckConstraint, func
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship
from assessment_engine.db.deps import Base
from assessment_engine.utils.enums import TestPosition, TestType, ValidationType


class Test(Base):
    """Instructor-owned test configuration. Read-only while attempts run."""

    __tablename__ = "tests"
    __table_args__ = (
        CheckConstraint("passing_score >= 0 AND passing_score <= 100", name="ck_tests_passing_score"),
        CheckConstraint("max_attempts IS NULL OR max_attempts > 0", name="ck_tests_max_attempts"),
        CheckConstraint("duration_minutes IS NULL OR duration_minutes > 0", name="ck_tests_duration"),
    )
    # keep pytest from collecting the model
    __test__ = False

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    instructor_id = Column(PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)
    # Polymorphic owner (lesson, chapter or course) managed by the catalog service
    testable_type = Column(String, nullable=True)
    testable_id = Column(String, nullable=True)
    title = Column(String, nullable=False)
    description = Column(Text, nullable=True)
    instructions = Column(Text, nullable=True)
    type = Column(Enum(TestType), nullable=False, default=TestType.formative)
    position = Column(Enum(TestPosition), nullable=False, default=TestPosition.after_lesson)

    duration_minutes = Column(Integer, nullable=True)
    max_attempts = Column(Integer, nullable=True)
    passing_score = Column(Integer, nullable=False, default=50)
    validation_type = Column(Enum(ValidationType), nullable=False, default=ValidationType.automatic)

    show_results_immediately = Column(Boolean, nullable=False, default=True)
    show_correct_answers = Column(Boolean, nullable=False, default=False)
    randomize_questions = Column(Boolean, nullable=False, default=False)
    randomize_options = Column(Boolean, nullable=False, default=False)
    one_question_per_page = Column(Boolean, nullable=False, default=False)
    allow_back_navigation = Column(Boolean, nullable=False, default=True)
    auto_save_draft = Column(Boolean, nullable=False, default=True)
    is_published = Column(Boolean, nullable=False, default=False)

    # Anti-cheating flags are exposed to the client only
    disable_copy_paste = Column(Boolean, nullable=False, default=False)
    full_screen_required = Column(Boolean, nullable=False, default=False)
    webcam_monitoring = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    instructor = relationship("User", back_populates="authored_tests")
    questions = relationship(
        "Question",
        back_populates="test",
        order_by="Question.order",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    submissions = relationship("Submission", back_populates="test")

    @property
    def total_points(self) -> int:
        return sum(q.points for q in self.questions)
