"""Authoritative attempt lifecycle: start, autosave, submit and scoring."""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Sequence

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_engine.core.config import settings
from assessment_engine.core.exceptions import (
    AlreadySubmitted,
    AssessmentNotFound,
    AttemptLimitExceeded,
    InvalidAnswer,
    StaleTransition,
    SubmissionNotFound,
)
from assessment_engine.core.logging_config import get_logger
from assessment_engine.models.submission import Submission
from assessment_engine.models.test import Test
from assessment_engine.schemas.answers import AnswerPayload
from assessment_engine.schemas.tests import QuestionDefinition
from assessment_engine.services.attempt_runtime.timer import remaining_seconds
from assessment_engine.services.certificate_notifier import (
    CertificateNotifier,
    emit_certificate_signal,
)
from assessment_engine.services.grading_service import finalize
from assessment_engine.services.scoring_service import score_submission, validate_answer
from assessment_engine.services.submission_store import SubmissionStore, answer_from_row
from assessment_engine.utils.datetime_utils import get_current_utc_datetime
from assessment_engine.utils.enums import SubmissionStatus

logger = get_logger(__name__)


class SubmissionService:
    """Server-side state machine for one user's attempts.

    Every operation runs in its own transaction on the bound session.
    """

    def __init__(
        self,
        db: AsyncSession,
        notifier: Optional[CertificateNotifier] = None,
        now: Callable[[], datetime] = get_current_utc_datetime,
        grace_seconds: Optional[int] = None,
    ):
        self.db = db
        self.store = SubmissionStore(db)
        self.notifier = notifier
        self._now = now
        # Slack past the deadline for a client's own forced submit to land
        self.grace_seconds = settings.EXPIRY_GRACE_SECONDS if grace_seconds is None else grace_seconds

    async def get_test(self, test_id: uuid.UUID, *, published_only: bool = True) -> Test:
        test = await self.store.get_test(test_id)
        if test is None or (published_only and not test.is_published):
            raise AssessmentNotFound("Test not found")
        return test

    async def get_submission(
        self, submission_id: uuid.UUID, user_id: Optional[uuid.UUID] = None
    ) -> Submission:
        submission = await self.store.get(submission_id)
        if submission is None or (user_id is not None and submission.user_id != user_id):
            raise SubmissionNotFound("Submission not found")
        return submission

    async def list_for_user(self, user_id: uuid.UUID, test_id: uuid.UUID) -> List[Submission]:
        return await self.store.list_for_user(user_id, test_id)

    async def start(self, user_id: uuid.UUID, test_id: uuid.UUID) -> Submission:
        """Create a draft attempt, or resume the open one unchanged."""
        test = await self.get_test(test_id)

        draft = await self.store.find_draft(user_id, test_id)
        if draft is not None:
            logger.info(
                "Resuming draft submission %s (attempt %s) for user %s",
                draft.id, draft.attempt_number, user_id,
            )
            return draft

        prior = await self.store.count_attempts(user_id, test_id)
        if test.max_attempts is not None and prior >= test.max_attempts:
            raise AttemptLimitExceeded(
                f"Maximum number of attempts ({test.max_attempts}) reached for this test",
                data={"max_attempts": test.max_attempts, "attempts_used": prior},
            )

        try:
            submission = await self.store.create_draft(
                test_id=test.id,
                user_id=user_id,
                attempt_number=prior + 1,
                started_at=self._now(),
            )
            await self.db.commit()
        except IntegrityError:
            # A concurrent start created the draft first; resume it
            await self.db.rollback()
            draft = await self.store.find_draft(user_id, test_id)
            if draft is None:
                raise StaleTransition("Attempt could not be started; please retry")
            return draft

        logger.info(
            "Started submission %s (attempt %s) for user %s on test %s",
            submission.id, submission.attempt_number, user_id, test_id,
        )
        return await self.store.get(submission.id)

    async def save_draft(
        self,
        submission_id: uuid.UUID,
        user_id: Optional[uuid.UUID],
        answers: Sequence[AnswerPayload],
        revision: int,
    ) -> bool:
        """Store a full autosaved answer set.

        Returns False when ``revision`` is not newer than the stored one (a
        delayed autosave), raises StaleTransition once the draft is gone.
        """
        submission = await self.get_submission(submission_id, user_id)
        if submission.status != SubmissionStatus.draft:
            raise StaleTransition(
                "Submission is no longer a draft", data={"status": submission.status.value}
            )
        if self._past_deadline(submission):
            raise StaleTransition(
                "Time limit has passed; the attempt no longer accepts answers",
                data={"status": submission.status.value},
            )
        self._validate_answers(submission.test, answers)

        try:
            accepted = await self.store.accept_draft_revision(submission_id, revision)
            if not accepted:
                # rollback expires every loaded instance; only the id is used from here
                await self.db.rollback()
                current = await self.store.get(submission_id)
                if current is None or current.status != SubmissionStatus.draft:
                    raise StaleTransition("Submission is no longer a draft")
                logger.info(
                    "Dropping stale autosave revision %s for submission %s (stored %s)",
                    revision, submission_id, current.draft_revision,
                )
                return False
            await self.store.replace_answers(submission, answers)
            await self.db.commit()
        except StaleTransition:
            raise
        except Exception:
            await self.db.rollback()
            raise

        logger.debug("Autosaved revision %s for submission %s", revision, submission.id)
        return True

    async def submit(
        self,
        submission_id: uuid.UUID,
        user_id: Optional[uuid.UUID],
        answers: Optional[Sequence[AnswerPayload]] = None,
        *,
        forced: bool = False,
    ) -> Submission:
        """draft -> submitted, then score.

        ``answers`` of None keeps the last autosaved set. Tests without
        pending manual questions continue straight to graded in the same
        transaction. A repeated submit raises AlreadySubmitted carrying the
        stored submission.

        Past the deadline plus grace the client's answers are ignored: the
        stored set is scored and the submission is recorded as forced.
        """
        submission = await self.get_submission(submission_id, user_id)
        if submission.status != SubmissionStatus.draft:
            raise AlreadySubmitted("Submission already recorded", data=submission)

        test = submission.test
        if self._past_deadline(submission):
            if answers is not None or not forced:
                logger.warning(
                    "Submission %s arrived after its time limit; scoring the stored answers",
                    submission_id,
                )
            answers = None
            forced = True
        if answers is not None:
            self._validate_answers(test, answers)

        now = self._now()
        try:
            claimed = await self.store.claim_for_submission(submission_id, now, forced=forced)
            if not claimed:
                # Another writer won; rollback expires the loaded instances
                await self.db.rollback()
                raise AlreadySubmitted(
                    "Submission already recorded", data=await self.store.get(submission_id)
                )

            submission = await self.store.get(submission_id)
            if answers is not None:
                await self.store.replace_answers(submission, answers)

            graded = await self._score(submission, test, now)
            await self.db.commit()
        except AlreadySubmitted:
            raise
        except Exception:
            await self.db.rollback()
            raise

        submission = await self.store.get(submission_id)
        logger.info(
            "Submission %s %s (forced=%s): auto_score=%s pending_manual=%s",
            submission.id,
            submission.status.value,
            forced,
            submission.auto_score,
            submission.pending_manual,
        )
        if graded:
            await emit_certificate_signal(self.notifier, submission, test)
        return submission

    async def _score(self, submission: Submission, test: Test, now: datetime) -> bool:
        """Apply automatic scores; grade synchronously when nothing awaits an instructor.

        Returns True when the submission reached graded.
        """
        questions = {q.id: q for q in test.questions}
        payloads = [
            answer_from_row(row, questions[row.question_id])
            for row in submission.answers
            if row.question_id in questions
        ]
        definitions = [QuestionDefinition.model_validate(q) for q in test.questions]
        result = score_submission(definitions, payloads, test.validation_type)

        for row in submission.answers:
            scored = result.answers.get(row.question_id)
            row.is_correct = scored.is_correct if scored else None
            row.points_earned = scored.points_earned if scored else None

        submission.auto_score = result.auto_score
        submission.pending_manual = result.pending_manual
        await self.db.flush()

        if result.pending_manual:
            return False

        final = finalize(result.auto_score, test.total_points, test.passing_score)
        won = await self.store.mark_graded(
            submission.id,
            graded_at=now,
            score=final.score,
            percentage=final.percentage,
            grade=final.grade,
            passed=final.passed,
        )
        if not won:
            raise StaleTransition("Submission changed state while being scored")
        return True

    def _past_deadline(self, submission: Submission) -> bool:
        """True once a timed attempt is over its time limit plus grace."""
        cutoff = self._now() - timedelta(seconds=self.grace_seconds)
        left = remaining_seconds(submission.started_at, submission.test.duration_minutes, cutoff)
        return left is not None and left <= 0

    def _validate_answers(self, test: Test, answers: Iterable[AnswerPayload]) -> None:
        questions = {q.id: QuestionDefinition.model_validate(q) for q in test.questions}
        seen = set()
        for answer in answers:
            question = questions.get(answer.question_id)
            if question is None:
                raise InvalidAnswer(f"Question {answer.question_id} does not belong to this test")
            if answer.question_id in seen:
                raise InvalidAnswer(f"Question {answer.question_id} was answered twice")
            seen.add(answer.question_id)
            validate_answer(question, answer)

    async def list_expired_drafts(self, grace_seconds: int = 0) -> List[Submission]:
        """Timed drafts whose deadline passed at least ``grace_seconds`` ago."""
        cutoff = self._now() - timedelta(seconds=grace_seconds)
        expired = []
        for submission in await self.store.list_timed_drafts():
            left = remaining_seconds(submission.started_at, submission.test.duration_minutes, cutoff)
            if left is not None and left <= 0:
                expired.append(submission)
        return expired

    async def submit_expired(self, grace_seconds: int = 0) -> List[Submission]:
        """Force-submit every abandoned timed draft with its last autosaved answers."""
        # Ids only: a lost race rolls back and expires every loaded instance
        expired_ids = [s.id for s in await self.list_expired_drafts(grace_seconds)]
        finalized = []
        for submission_id in expired_ids:
            try:
                finalized.append(await self.submit(submission_id, None, forced=True))
            except AlreadySubmitted:
                # The client's own forced submit got there first
                continue
        return finalized
