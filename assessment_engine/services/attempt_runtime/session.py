"""Client-side driver of one test attempt.

An ``AttemptSession`` mirrors the submission's lifecycle locally
(uninitialized -> draft -> submitted -> graded), buffers answers, owns the
expiry timer and the autosave loop, and talks to the submission store only
through a ``SubmissionGateway``. Scores always come back from the store; the
session never computes a trusted one.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from pydantic import BaseModel, ValidationError

from assessment_engine.core.config import settings
from assessment_engine.core.exceptions import (
    AlreadySubmitted,
    AssessmentError,
    AttemptNotActive,
    InvalidAnswer,
    PersistenceUnavailable,
)
from assessment_engine.core.logging_config import get_logger
from assessment_engine.schemas.answers import (
    AnswerPayload,
    ChoiceAnswer,
    FileAnswer,
    TextAnswer,
    answer_adapter,
)
from assessment_engine.schemas.submissions import AnswerResult, SubmissionOut
from assessment_engine.schemas.tests import QuestionDefinition, TestDefinition
from assessment_engine.services.attempt_runtime.autosave import Autosaver
from assessment_engine.services.attempt_runtime.gateways import SubmissionGateway
from assessment_engine.services.attempt_runtime.timer import (
    Clock,
    ExpiryTimer,
    remaining_seconds,
)
from assessment_engine.services.scoring_service import validate_answer
from assessment_engine.utils.datetime_utils import get_current_utc_datetime
from assessment_engine.utils.enums import AnswerKind, AttemptPhase

logger = get_logger(__name__)


def _restore_answer(question: QuestionDefinition, item: AnswerResult) -> Optional[AnswerPayload]:
    kind = question.type.answer_kind
    if kind == AnswerKind.choice:
        return ChoiceAnswer(question_id=question.id, selected_options=frozenset(item.selected_options or []))
    if kind == AnswerKind.file:
        return FileAnswer(question_id=question.id, answer_file=item.answer_file) if item.answer_file else None
    if item.answer_text is None:
        return None
    return TextAnswer(question_id=question.id, answer_text=item.answer_text)


class AttemptSession:
    def __init__(
        self,
        gateway: SubmissionGateway,
        test_id: uuid.UUID,
        *,
        autosave_interval_seconds: Optional[float] = None,
        tick_seconds: Optional[float] = None,
        max_forced_retries: Optional[int] = None,
        forced_backoff_seconds: Optional[float] = None,
        clock: Clock = get_current_utc_datetime,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.gateway = gateway
        self.test_id = test_id
        self.autosave_interval_seconds = autosave_interval_seconds or settings.AUTOSAVE_INTERVAL_SECONDS
        self.tick_seconds = tick_seconds or settings.TIMER_TICK_SECONDS
        self.max_forced_retries = (
            settings.FORCED_SUBMIT_MAX_RETRIES if max_forced_retries is None else max_forced_retries
        )
        self.forced_backoff_seconds = (
            settings.FORCED_SUBMIT_BACKOFF_SECONDS
            if forced_backoff_seconds is None
            else forced_backoff_seconds
        )
        self._clock = clock
        self._sleep = sleep

        self.phase = AttemptPhase.uninitialized
        self.test: Optional[TestDefinition] = None
        self.submission: Optional[SubmissionOut] = None
        self.expired = False
        # Set when a forced submission exhausted its retries
        self.recording_failed = False

        self._answers: Dict[uuid.UUID, AnswerPayload] = {}
        self._revision = 0
        self._submit_lock = asyncio.Lock()
        self.timer: Optional[ExpiryTimer] = None
        self.autosaver: Optional[Autosaver] = None

    @property
    def submission_id(self) -> Optional[uuid.UUID]:
        return self.submission.id if self.submission else None

    @property
    def answers(self) -> List[AnswerPayload]:
        return list(self._answers.values())

    @property
    def draft_revision(self) -> int:
        return self._revision

    def answer_for(self, question_id: uuid.UUID) -> Optional[AnswerPayload]:
        return self._answers.get(question_id)

    async def start(self) -> SubmissionOut:
        """Start a new attempt or resume the open draft.

        AttemptLimitExceeded propagates; it is not retryable.
        """
        if self.phase != AttemptPhase.uninitialized:
            return self.submission

        submission = await self.gateway.start(self.test_id)
        self.test = await self.gateway.fetch_test(self.test_id, submission.id)
        self._adopt(submission)

        if self.phase == AttemptPhase.draft:
            self._revision = submission.draft_revision
            self._restore(submission)
            self._arm()
            logger.info(
                "Attempt %s on test %s in draft (revision %s, %d answer(s) restored)",
                submission.id, self.test_id, self._revision, len(self._answers),
            )
        return submission

    def record_answer(
        self, question_id: uuid.UUID, payload: Union[AnswerPayload, Mapping[str, Any]]
    ) -> AnswerPayload:
        """Replace the local answer to one question. No network traffic."""
        question = self._draft_question(question_id)
        if isinstance(payload, BaseModel):
            answer = payload
        else:
            data = {"kind": question.type.answer_kind.value, **dict(payload), "question_id": question_id}
            try:
                answer = answer_adapter.validate_python(data)
            except ValidationError as e:
                raise InvalidAnswer(f"Invalid answer for question {question_id}: {e}") from e
        validate_answer(question, answer)
        self._answers[question_id] = answer
        return answer

    def clear_answer(self, question_id: uuid.UUID) -> None:
        self._draft_question(question_id)
        self._answers.pop(question_id, None)

    def remaining_seconds(self) -> Optional[float]:
        if self.phase != AttemptPhase.draft or self.test is None:
            return None
        return remaining_seconds(self.submission.started_at, self.test.duration_minutes, self._clock())

    def autosave_now(self) -> Optional[asyncio.Task]:
        """Upload the current answer set right away, outside the interval."""
        if self.autosaver is None:
            return None
        return self.autosaver.tick()

    async def submit(self) -> SubmissionOut:
        """Submit by the student.

        PersistenceUnavailable propagates and the attempt stays in draft so
        the call can be retried.
        """
        return await self._submit(forced=False)

    async def force_submit_on_expiry(self) -> Optional[SubmissionOut]:
        """Submit whatever is buffered once time ran out, retrying on a bounded backoff."""
        self.expired = True
        delay = self.forced_backoff_seconds
        failures = 0
        while True:
            try:
                return await self._submit(forced=True)
            except PersistenceUnavailable as e:
                failures += 1
                if failures > self.max_forced_retries:
                    self.recording_failed = True
                    logger.error(
                        "Forced submission of %s failed %d time(s); attempt may not have been recorded: %s",
                        self.submission_id, failures, e,
                    )
                    return None
                logger.warning(
                    "Forced submission of %s failed (%d/%d), retrying in %.1fs: %s",
                    self.submission_id, failures, self.max_forced_retries, delay, e,
                )
                await self._sleep(delay)
                delay *= 2
            except AssessmentError as e:
                logger.error(f"Forced submission of {self.submission_id} rejected: {e}")
                return None
            except Exception as e:
                # Runs as a detached task; nothing else would observe this failure
                self.recording_failed = True
                logger.exception(f"Forced submission of {self.submission_id} failed unexpectedly: {e}")
                return None

    async def refresh(self) -> SubmissionOut:
        """Re-read the server's view, e.g. after losing a transition race."""
        if self.submission is None:
            raise AttemptNotActive("Attempt has not been started")
        view = await self.gateway.fetch_submission(self.submission.id)
        self._adopt(view)
        if self.phase != AttemptPhase.draft:
            self._disarm()
        return view

    async def close(self) -> None:
        """Stop the timer and autosave loop and wait for uploads in flight."""
        self._disarm()
        if self.autosaver is not None:
            await self.autosaver.drain()

    async def _submit(self, *, forced: bool) -> SubmissionOut:
        # Serializes the timer-driven and the user-driven submit
        async with self._submit_lock:
            if self.phase in (AttemptPhase.submitted, AttemptPhase.graded):
                return self.submission
            if self.phase != AttemptPhase.draft:
                raise AttemptNotActive("Attempt has not been started")

            if self.autosaver is not None:
                self.autosaver.stop()
            try:
                view = await self.gateway.submit(self.submission.id, self.answers, forced=forced)
            except AlreadySubmitted:
                view = await self.gateway.fetch_submission(self.submission.id)
            except PersistenceUnavailable:
                if not forced:
                    self._restart_autosave()
                raise

            self._adopt(view)
            self._disarm()
            logger.info(
                "Attempt %s submitted (forced=%s), status=%s", view.id, forced, view.status.value
            )
            return view

    def _draft_question(self, question_id: uuid.UUID) -> QuestionDefinition:
        if self.phase != AttemptPhase.draft or self.expired:
            raise AttemptNotActive("Answers can only change while the attempt is a draft")
        question = self.test.question(question_id)
        if question is None:
            raise InvalidAnswer(f"Question {question_id} does not belong to this test")
        return question

    def _adopt(self, view: SubmissionOut) -> None:
        self.submission = view
        self.phase = AttemptPhase(view.status.value)

    def _restore(self, view: SubmissionOut) -> None:
        for item in view.answers:
            question = self.test.question(item.question_id)
            if question is None:
                continue
            answer = _restore_answer(question, item)
            if answer is not None:
                self._answers[question.id] = answer

    def _arm(self) -> None:
        if self.test.duration_minutes is not None:
            self.timer = ExpiryTimer(
                self.submission.started_at,
                self.test.duration_minutes,
                self.force_submit_on_expiry,
                tick_seconds=self.tick_seconds,
                clock=self._clock,
            )
            self.timer.start()
        self.autosaver = Autosaver(self._prepare_upload, interval_seconds=self.autosave_interval_seconds)
        if self.test.auto_save_draft:
            self.autosaver.start()

    def _restart_autosave(self) -> None:
        if self.autosaver is not None and self.test.auto_save_draft:
            self.autosaver.start()

    def _disarm(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
        if self.autosaver is not None:
            self.autosaver.stop()

    def _prepare_upload(self) -> Optional[Awaitable]:
        if self.phase != AttemptPhase.draft or not self._answers:
            return None
        self._revision += 1
        return self.gateway.save_draft(self.submission.id, self.answers, self._revision)
