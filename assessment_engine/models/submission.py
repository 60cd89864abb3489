import uuid
from sqlalchemy import (
    Column, String, Text, Integer, Float, Boolean, DateTime, Enum, JSON, ForeignKey,
    UniqueConstraint, Index, func, text
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import relationship
from assessment_engine.db.deps import Base
from assessment_engine.utils.enums import SubmissionStatus


class Submission(Base):
    """One attempt of one user at one test."""

    __tablename__ = "test_submissions"
    __table_args__ = (
        UniqueConstraint("user_id", "test_id", "attempt_number", name="uq_submission_attempt"),
        # At most one open draft per (user, test)
        Index(
            "uq_submission_open_draft",
            "user_id",
            "test_id",
            unique=True,
            sqlite_where=text("status = 'draft'"),
            postgresql_where=text("status = 'draft'"),
        ),
    )

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    test_id = Column(PG_UUID(as_uuid=True), ForeignKey("tests.id"), nullable=False, index=True)
    user_id = Column(PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False, index=True)
    attempt_number = Column(Integer, nullable=False)
    status = Column(Enum(SubmissionStatus), nullable=False, default=SubmissionStatus.draft, index=True)

    started_at = Column(DateTime(timezone=True), nullable=False)
    submitted_at = Column(DateTime(timezone=True), nullable=True)
    graded_at = Column(DateTime(timezone=True), nullable=True)

    # Highest autosave revision accepted so far
    draft_revision = Column(Integer, nullable=False, default=0)
    # Submitted by the expiry timer or the sweeper rather than the student
    forced = Column(Boolean, nullable=False, default=False)

    auto_score = Column(Integer, nullable=True)
    pending_manual = Column(Boolean, nullable=False, default=False, index=True)
    score = Column(Integer, nullable=True)
    percentage = Column(Float, nullable=True)
    grade = Column(String(4), nullable=True)
    passed = Column(Boolean, nullable=True)
    instructor_comments = Column(Text, nullable=True)
    graded_by = Column(PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    test = relationship("Test", back_populates="submissions", lazy="selectin")
    user = relationship("User", back_populates="submissions", foreign_keys=[user_id])
    answers = relationship(
        "SubmissionAnswer",
        back_populates="submission",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class SubmissionAnswer(Base):
    __tablename__ = "submission_answers"
    __table_args__ = (
        UniqueConstraint("submission_id", "question_id", name="uq_submission_answer_question"),
    )

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    submission_id = Column(
        PG_UUID(as_uuid=True), ForeignKey("test_submissions.id", ondelete="CASCADE"), nullable=False, index=True
    )
    question_id = Column(PG_UUID(as_uuid=True), ForeignKey("questions.id"), nullable=False)

    # Exactly one of these is populated, matching the question type
    selected_options = Column(JSON, nullable=True)
    answer_text = Column(Text, nullable=True)
    answer_file = Column(String, nullable=True)

    is_correct = Column(Boolean, nullable=True)
    points_earned = Column(Integer, nullable=True)
    feedback = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    submission = relationship("Submission", back_populates="answers")
    question = relationship("Question", lazy="selectin")
