"""Grading workflow: turns automatic and instructor scores into a final result."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from assessment_engine.core.config import settings
from assessment_engine.core.exceptions import (
    AttemptNotActive,
    InvalidPoints,
    StaleTransition,
    SubmissionNotFound,
)
from assessment_engine.core.logging_config import get_logger
from assessment_engine.models.submission import Submission
from assessment_engine.schemas.submissions import QuestionGrade
from assessment_engine.services.certificate_notifier import (
    CertificateNotifier,
    emit_certificate_signal,
)
from assessment_engine.services.submission_store import SubmissionStore
from assessment_engine.utils.datetime_utils import get_current_utc_datetime
from assessment_engine.utils.enums import SubmissionStatus

logger = get_logger(__name__)


@dataclass(frozen=True)
class FinalResult:
    score: int
    percentage: float
    passed: bool
    grade: str


def letter_grade(
    percentage: float, thresholds: Optional[Sequence[Tuple[str, float]]] = None
) -> str:
    """Return the grade of the highest threshold not above ``percentage``."""
    table = sorted(thresholds or settings.GRADE_THRESHOLDS, key=lambda t: t[1], reverse=True)
    for grade, minimum in table:
        if percentage >= minimum:
            return grade
    return table[-1][0]


def _raw_percentage(score: int, total_points: int) -> float:
    if total_points <= 0:
        return 0.0
    return score * 100 / total_points


def compute_percentage(score: int, total_points: int) -> float:
    return round(_raw_percentage(score, total_points), 2)


def finalize(
    score: int,
    total_points: int,
    passing_score: int,
    thresholds: Optional[Sequence[Tuple[str, float]]] = None,
) -> FinalResult:
    # Thresholds apply to the exact ratio; rounding is for storage only
    raw = _raw_percentage(score, total_points)
    return FinalResult(
        score=score,
        percentage=round(raw, 2),
        passed=raw >= passing_score,
        grade=letter_grade(raw, thresholds),
    )


class GradingService:
    """Instructor-side grading of submissions parked as pending manual."""

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[CertificateNotifier] = None,
        now: Callable = get_current_utc_datetime,
    ):
        self.db = db
        self.store = SubmissionStore(db)
        self.notifier = notifier
        self._now = now

    async def list_pending(
        self,
        test_ids: Optional[Sequence[uuid.UUID]] = None,
        instructor_id: Optional[uuid.UUID] = None,
    ) -> List[Submission]:
        return await self.store.list_pending(test_ids, instructor_id)

    async def grade_submission(
        self,
        submission_id: uuid.UUID,
        grades: Sequence[QuestionGrade],
        *,
        comments: Optional[str] = None,
        grader_id: Optional[uuid.UUID] = None,
    ) -> Submission:
        submission = await self.store.get(submission_id)
        if submission is None:
            raise SubmissionNotFound("Submission not found")
        if submission.status == SubmissionStatus.draft:
            raise AttemptNotActive("Submission has not been submitted yet")
        if submission.status == SubmissionStatus.graded:
            raise StaleTransition("Submission has already been graded", data={"status": "graded"})

        test = submission.test
        questions = {q.id: q for q in test.questions}
        rows = {row.question_id: row for row in submission.answers}

        # 1. Validate everything before the first write
        for entry in grades:
            question = questions.get(entry.question_id)
            if question is None:
                raise InvalidPoints(f"Question {entry.question_id} does not belong to this test")
            if question.type.is_objective:
                raise InvalidPoints(
                    f"Question {entry.question_id} is scored automatically and cannot be graded manually"
                )
            if entry.question_id not in rows:
                raise InvalidPoints(f"Question {entry.question_id} was not answered")
            if entry.points < 0 or entry.points > question.points:
                raise InvalidPoints(
                    f"Points for question {entry.question_id} must be between 0 and {question.points}",
                    data={"question_id": str(entry.question_id), "max_points": question.points},
                )

        # 2. Write points and feedback; only full credit counts as correct
        for entry in grades:
            row = rows[entry.question_id]
            row.points_earned = entry.points
            row.feedback = entry.feedback
            row.is_correct = entry.points == questions[entry.question_id].points

        ungraded = [
            qid for qid, row in rows.items()
            if not questions[qid].type.is_objective and row.points_earned is None
        ]
        if ungraded:
            logger.warning(
                "Grading submission %s with %d ungraded manual answer(s); they count as 0",
                submission.id,
                len(ungraded),
            )

        # 3-6. Aggregate
        manual_total = sum(
            row.points_earned or 0
            for qid, row in rows.items()
            if not questions[qid].type.is_objective
        )
        result = finalize((submission.auto_score or 0) + manual_total, test.total_points, test.passing_score)

        # 7. submitted -> graded, guarded against a concurrent grader
        try:
            await self.db.flush()
            won = await self.store.mark_graded(
                submission.id,
                graded_at=self._now(),
                score=result.score,
                percentage=result.percentage,
                grade=result.grade,
                passed=result.passed,
                instructor_comments=comments,
                graded_by=grader_id,
            )
        except Exception:
            await self.db.rollback()
            raise
        if not won:
            await self.db.rollback()
            raise StaleTransition("Submission was graded concurrently", data={"status": "graded"})
        await self.db.commit()

        submission = await self.store.get(submission.id)
        logger.info(
            "Graded submission %s: score=%s percentage=%s grade=%s passed=%s",
            submission.id,
            submission.score,
            submission.percentage,
            submission.grade,
            submission.passed,
        )
        await emit_certificate_signal(self.notifier, submission, submission.test)
        return submission

