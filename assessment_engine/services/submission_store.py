"""Persistence for submissions and their answers.

State transitions are optimistic: each one is a single UPDATE guarded by the
expected current status, and a zero row count means another writer got there
first.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_engine.core.logging_config import get_logger
from assessment_engine.models.question import Question
from assessment_engine.models.submission import Submission, SubmissionAnswer
from assessment_engine.models.test import Test
from assessment_engine.schemas.answers import (
    AnswerPayload,
    ChoiceAnswer,
    FileAnswer,
    TextAnswer,
)
from assessment_engine.utils.enums import SubmissionStatus

logger = get_logger(__name__)


def answer_from_row(row: SubmissionAnswer, question: Question) -> AnswerPayload:
    """Rebuild the typed payload stored on an answer row."""
    kind = question.type.answer_kind.value
    if kind == "choice":
        return ChoiceAnswer(
            question_id=row.question_id,
            selected_options=frozenset(uuid.UUID(str(o)) for o in (row.selected_options or [])),
        )
    if kind == "file":
        return FileAnswer(question_id=row.question_id, answer_file=row.answer_file or "")
    return TextAnswer(question_id=row.question_id, answer_text=row.answer_text or "")


def _write_payload(row: SubmissionAnswer, answer: AnswerPayload) -> None:
    row.selected_options = None
    row.answer_text = None
    row.answer_file = None
    if isinstance(answer, ChoiceAnswer):
        row.selected_options = sorted(str(o) for o in answer.selected_options)
    elif isinstance(answer, TextAnswer):
        row.answer_text = answer.answer_text
    elif isinstance(answer, FileAnswer):
        row.answer_file = answer.answer_file


class SubmissionStore:
    """Submission persistence bound to one AsyncSession (one transaction at a time)."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_test(self, test_id: uuid.UUID) -> Optional[Test]:
        result = await self.db.execute(
            select(Test).where(Test.id == test_id).execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def get(self, submission_id: uuid.UUID) -> Optional[Submission]:
        # populate_existing discards identity-map state left stale by guarded UPDATEs
        result = await self.db.execute(
            select(Submission)
            .where(Submission.id == submission_id)
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def find_draft(self, user_id: uuid.UUID, test_id: uuid.UUID) -> Optional[Submission]:
        result = await self.db.execute(
            select(Submission)
            .where(
                Submission.user_id == user_id,
                Submission.test_id == test_id,
                Submission.status == SubmissionStatus.draft,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalars().first()

    async def count_attempts(self, user_id: uuid.UUID, test_id: uuid.UUID) -> int:
        """Count finished (submitted or graded) attempts."""
        result = await self.db.execute(
            select(func.count(Submission.id)).where(
                Submission.user_id == user_id,
                Submission.test_id == test_id,
                Submission.status.in_([SubmissionStatus.submitted, SubmissionStatus.graded]),
            )
        )
        return int(result.scalar_one())

    async def create_draft(
        self,
        *,
        test_id: uuid.UUID,
        user_id: uuid.UUID,
        attempt_number: int,
        started_at: datetime,
    ) -> Submission:
        submission = Submission(
            test_id=test_id,
            user_id=user_id,
            attempt_number=attempt_number,
            status=SubmissionStatus.draft,
            started_at=started_at,
            draft_revision=0,
            pending_manual=False,
            forced=False,
            answers=[],
        )
        self.db.add(submission)
        await self.db.flush()
        return submission

    async def replace_answers(
        self, submission: Submission, answers: Iterable[AnswerPayload]
    ) -> List[SubmissionAnswer]:
        """Overwrite the full answer set of a submission.

        Rows are updated in place where the question was already answered so
        the (submission, question) pair stays unique.
        """
        existing = {row.question_id: row for row in submission.answers}
        incoming = {answer.question_id: answer for answer in answers}

        for question_id, row in list(existing.items()):
            if question_id not in incoming:
                submission.answers.remove(row)

        for question_id, answer in incoming.items():
            row = existing.get(question_id)
            if row is None:
                row = SubmissionAnswer(question_id=question_id)
                submission.answers.append(row)
            _write_payload(row, answer)
            row.is_correct = None
            row.points_earned = None

        await self.db.flush()
        return list(submission.answers)

    async def accept_draft_revision(self, submission_id: uuid.UUID, revision: int) -> bool:
        """Claim ``revision`` for an autosave; False when the draft already holds a newer one
        or is no longer a draft."""
        result = await self.db.execute(
            update(Submission)
            .where(
                Submission.id == submission_id,
                Submission.status == SubmissionStatus.draft,
                Submission.draft_revision < revision,
            )
            .values(draft_revision=revision)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def claim_for_submission(
        self, submission_id: uuid.UUID, submitted_at: datetime, *, forced: bool
    ) -> bool:
        """draft -> submitted. False when the submission already left draft."""
        result = await self.db.execute(
            update(Submission)
            .where(
                Submission.id == submission_id,
                Submission.status == SubmissionStatus.draft,
            )
            .values(
                status=SubmissionStatus.submitted,
                submitted_at=submitted_at,
                forced=forced,
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def mark_graded(
        self,
        submission_id: uuid.UUID,
        *,
        graded_at: datetime,
        score: int,
        percentage: float,
        grade: str,
        passed: bool,
        instructor_comments: Optional[str] = None,
        graded_by: Optional[uuid.UUID] = None,
    ) -> bool:
        """submitted -> graded. False when another writer graded it first."""
        values = dict(
            status=SubmissionStatus.graded,
            graded_at=graded_at,
            score=score,
            percentage=percentage,
            grade=grade,
            passed=passed,
            pending_manual=False,
            graded_by=graded_by,
        )
        if instructor_comments is not None:
            values["instructor_comments"] = instructor_comments
        result = await self.db.execute(
            update(Submission)
            .where(
                Submission.id == submission_id,
                Submission.status == SubmissionStatus.submitted,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def list_pending(
        self,
        test_ids: Optional[Sequence[uuid.UUID]] = None,
        instructor_id: Optional[uuid.UUID] = None,
    ) -> List[Submission]:
        """Submitted attempts awaiting manual grading, oldest first."""
        stmt = (
            select(Submission)
            .join(Test, Test.id == Submission.test_id)
            .where(
                Submission.status == SubmissionStatus.submitted,
                Submission.pending_manual.is_(True),
            )
            .order_by(Submission.submitted_at.asc())
        )
        if test_ids is not None:
            stmt = stmt.where(Submission.test_id.in_(list(test_ids)))
        if instructor_id is not None:
            stmt = stmt.where(Test.instructor_id == instructor_id)
        return list((await self.db.execute(stmt)).scalars().all())

    async def list_for_user(self, user_id: uuid.UUID, test_id: uuid.UUID) -> List[Submission]:
        result = await self.db.execute(
            select(Submission)
            .where(Submission.user_id == user_id, Submission.test_id == test_id)
            .order_by(Submission.attempt_number.asc())
        )
        return list(result.scalars().all())

    async def list_timed_drafts(self) -> List[Submission]:
        result = await self.db.execute(
            select(Submission)
            .join(Test, Test.id == Submission.test_id)
            .where(
                Submission.status == SubmissionStatus.draft,
                Test.duration_minutes.is_not(None),
            )
            .order_by(Submission.started_at.asc())
        )
        return list(result.scalars().all())
