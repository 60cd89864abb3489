from __future__ import annotations

import asyncio
from typing import List, Optional

import pytest

from assessment_engine.core.exceptions import (
    AttemptLimitExceeded,
    AttemptNotActive,
    InvalidAnswer,
    PersistenceUnavailable,
)
from assessment_engine.schemas.answers import ChoiceAnswer, TextAnswer
from assessment_engine.services.attempt_runtime.gateways import ServiceSubmissionGateway
from assessment_engine.services.attempt_runtime.session import AttemptSession
from assessment_engine.services.submission_service import SubmissionService
from assessment_engine.utils.enums import AttemptPhase, QuestionType, Role, SubmissionStatus

pytestmark = pytest.mark.anyio

CHOICE = {
    "type": QuestionType.single_choice,
    "points": 10,
    "options": [("Right", True), ("Wrong", False)],
}
ESSAY = {"type": QuestionType.short_answer, "points": 10}


class ScriptedGateway:
    """Wraps a real gateway to inject outages and hold autosaves."""

    def __init__(self, inner, submit_failures: int = 0, submit_error: Optional[Exception] = None):
        self.inner = inner
        self.submit_failures = submit_failures
        self.submit_error = submit_error
        self.submit_calls = 0
        self.hold_drafts: Optional[asyncio.Event] = None

    async def fetch_test(self, test_id, submission_id=None):
        return await self.inner.fetch_test(test_id, submission_id)

    async def start(self, test_id):
        return await self.inner.start(test_id)

    async def save_draft(self, submission_id, answers, revision):
        if self.hold_drafts is not None:
            await self.hold_drafts.wait()
        return await self.inner.save_draft(submission_id, answers, revision)

    async def submit(self, submission_id, answers, *, forced=False):
        self.submit_calls += 1
        if self.submit_error is not None:
            raise self.submit_error
        if self.submit_failures:
            self.submit_failures -= 1
            raise PersistenceUnavailable("store offline")
        return await self.inner.submit(submission_id, answers, forced=forced)

    async def fetch_submission(self, submission_id):
        return await self.inner.fetch_submission(submission_id)


class RecordingSleep:
    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


async def _wait_until(predicate, timeout: float = 2.0) -> None:
    async def _poll():
        while not predicate():
            await asyncio.sleep(0.005)

    await asyncio.wait_for(_poll(), timeout)


async def _setup(seed, session_factory, clock, questions=(CHOICE, ESSAY), **config):
    student = await seed.user(Role.student)
    test = await seed.test(list(questions), **config)
    gateway = ServiceSubmissionGateway(session_factory, student.id, clock=clock)
    return student, test, gateway


def _session(gateway, test, clock, **kwargs) -> AttemptSession:
    kwargs.setdefault("autosave_interval_seconds", 3600)
    kwargs.setdefault("tick_seconds", 0.01)
    return AttemptSession(gateway, test.id, clock=clock, **kwargs)


async def test_start_record_and_submit(seed, session_factory, clock):
    _, test, gateway = await _setup(seed, session_factory, clock, questions=(CHOICE,))
    choice_q = test.questions[0]
    session = _session(gateway, test, clock)

    await session.start()
    assert session.phase == AttemptPhase.draft
    assert session.remaining_seconds() is None

    session.record_answer(choice_q.id, {"selected_options": [str(seed.correct_ids(choice_q)[0])]})
    view = await session.submit()

    assert session.phase == AttemptPhase.graded
    assert view.score == 10
    assert view.forced is False
    await session.close()


async def test_record_answer_validates_payload(seed, session_factory, clock):
    _, test, gateway = await _setup(seed, session_factory, clock)
    choice_q, essay_q = test.questions
    session = _session(gateway, test, clock)
    await session.start()

    with pytest.raises(InvalidAnswer):
        session.record_answer(choice_q.id, TextAnswer(question_id=choice_q.id, answer_text="Right"))
    with pytest.raises(InvalidAnswer):
        session.record_answer(essay_q.id, {"selected_options": []})

    answer = session.record_answer(essay_q.id, {"answer_text": "my answer"})
    assert isinstance(answer, TextAnswer)
    session.clear_answer(essay_q.id)
    assert session.answers == []
    await session.close()


async def test_answers_are_frozen_outside_draft(seed, session_factory, clock):
    _, test, gateway = await _setup(seed, session_factory, clock)
    choice_q = test.questions[0]
    session = _session(gateway, test, clock)

    with pytest.raises(AttemptNotActive):
        session.record_answer(choice_q.id, {"selected_options": []})

    await session.start()
    await session.submit()
    with pytest.raises(AttemptNotActive):
        session.record_answer(choice_q.id, {"selected_options": []})
    await session.close()


async def test_resume_restores_autosaved_answers(seed, session_factory, clock):
    _, test, gateway = await _setup(seed, session_factory, clock)
    choice_q, essay_q = test.questions

    first = _session(gateway, test, clock)
    await first.start()
    first.record_answer(essay_q.id, {"answer_text": "draft essay"})
    first.record_answer(choice_q.id, {"selected_options": [str(seed.wrong_ids(choice_q)[0])]})
    await first.autosave_now()
    await first.autosave_now()
    await first.close()

    resumed = _session(gateway, test, clock)
    view = await resumed.start()

    assert view.id == first.submission_id
    assert resumed.draft_revision == 2
    assert resumed.answer_for(essay_q.id) == TextAnswer(question_id=essay_q.id, answer_text="draft essay")
    assert resumed.answer_for(choice_q.id).selected_options == frozenset(seed.wrong_ids(choice_q))
    await resumed.close()


async def test_expiry_force_submits_latest_answers(seed, session_factory, clock):
    _, test, gateway = await _setup(seed, session_factory, clock, questions=(CHOICE,), duration_minutes=1)
    choice_q = test.questions[0]
    session = _session(gateway, test, clock)
    await session.start()
    assert session.remaining_seconds() == 60

    session.record_answer(choice_q.id, {"selected_options": [str(seed.correct_ids(choice_q)[0])]})
    clock.advance(61)

    await _wait_until(lambda: session.timer.fired)
    await session.timer.expiry_task

    assert session.expired is True
    assert session.phase == AttemptPhase.graded
    assert session.submission.forced is True
    assert session.submission.score == 10
    await session.close()


async def test_forced_submit_retries_with_backoff(seed, session_factory, clock):
    _, test, inner = await _setup(seed, session_factory, clock, questions=(CHOICE,))
    gateway = ScriptedGateway(inner, submit_failures=2)
    sleep = RecordingSleep()
    session = _session(
        gateway, test, clock, max_forced_retries=3, forced_backoff_seconds=0.5, sleep=sleep
    )
    await session.start()

    view = await session.force_submit_on_expiry()

    assert view is not None
    assert gateway.submit_calls == 3
    assert sleep.delays == [0.5, 1.0]
    assert session.recording_failed is False
    assert session.phase == AttemptPhase.graded
    await session.close()


async def test_forced_submit_gives_up_and_flags_recording_failure(seed, session_factory, clock):
    _, test, inner = await _setup(seed, session_factory, clock, questions=(CHOICE,))
    gateway = ScriptedGateway(inner, submit_failures=100)
    sleep = RecordingSleep()
    session = _session(gateway, test, clock, max_forced_retries=2, forced_backoff_seconds=1, sleep=sleep)
    await session.start()

    assert await session.force_submit_on_expiry() is None

    assert session.recording_failed is True
    assert gateway.submit_calls == 3
    assert sleep.delays == [1, 2]
    assert session.phase == AttemptPhase.draft
    await session.close()


async def test_forced_submit_flags_recording_failure_on_unexpected_error(seed, session_factory, clock):
    _, test, inner = await _setup(seed, session_factory, clock, questions=(CHOICE,))
    gateway = ScriptedGateway(inner, submit_error=RuntimeError("malformed store reply"))
    sleep = RecordingSleep()
    session = _session(gateway, test, clock, sleep=sleep)
    await session.start()

    assert await session.force_submit_on_expiry() is None

    assert session.recording_failed is True
    assert gateway.submit_calls == 1
    assert sleep.delays == []
    assert session.phase == AttemptPhase.draft
    await session.close()


async def test_failed_manual_submit_stays_in_draft(seed, session_factory, clock):
    _, test, inner = await _setup(seed, session_factory, clock, questions=(CHOICE,))
    gateway = ScriptedGateway(inner, submit_failures=1)
    session = _session(gateway, test, clock)
    await session.start()

    with pytest.raises(PersistenceUnavailable):
        await session.submit()
    assert session.phase == AttemptPhase.draft

    await session.submit()
    assert session.phase == AttemptPhase.graded
    await session.close()


async def test_concurrent_submits_reach_the_store_once(seed, session_factory, clock):
    _, test, inner = await _setup(seed, session_factory, clock, questions=(CHOICE,))
    gateway = ScriptedGateway(inner)
    session = _session(gateway, test, clock)
    await session.start()

    manual, forced = await asyncio.gather(session.submit(), session.force_submit_on_expiry())

    assert gateway.submit_calls == 1
    assert manual.id == forced.id
    await session.close()


async def test_autosave_landing_after_submit_is_dropped(seed, session_factory, clock):
    _, test, inner = await _setup(seed, session_factory, clock, questions=(CHOICE,))
    choice_q = test.questions[0]
    gateway = ScriptedGateway(inner)
    gateway.hold_drafts = asyncio.Event()
    session = _session(gateway, test, clock)
    await session.start()

    session.record_answer(choice_q.id, {"selected_options": [str(seed.wrong_ids(choice_q)[0])]})
    delayed = session.autosave_now()
    session.record_answer(choice_q.id, {"selected_options": [str(seed.correct_ids(choice_q)[0])]})
    await session.submit()

    gateway.hold_drafts.set()
    await delayed

    stored = await inner.fetch_submission(session.submission_id)
    assert stored.status == SubmissionStatus.graded
    assert stored.score == 10
    assert [a.selected_options for a in stored.answers] == [seed.correct_ids(choice_q)]
    await session.close()


async def test_refresh_adopts_submission_finalized_elsewhere(db_session, seed, session_factory, clock):
    student, test, gateway = await _setup(seed, session_factory, clock, questions=(CHOICE,), duration_minutes=5)
    session = _session(gateway, test, clock)
    await session.start()

    await SubmissionService(db_session, now=clock).submit(session.submission_id, student.id, None, forced=True)
    view = await session.refresh()

    assert view.status == SubmissionStatus.graded
    assert session.phase == AttemptPhase.graded
    assert session.remaining_seconds() is None
    await session.close()


async def test_attempt_limit_is_not_retried(seed, session_factory, clock):
    _, test, gateway = await _setup(seed, session_factory, clock, questions=(CHOICE,), max_attempts=1)
    first = _session(gateway, test, clock)
    await first.start()
    await first.submit()
    await first.close()

    second = _session(gateway, test, clock)
    with pytest.raises(AttemptLimitExceeded):
        await second.start()
    assert second.phase == AttemptPhase.uninitialized


async def test_record_answer_accepts_model_payload(seed, session_factory, clock):
    _, test, gateway = await _setup(seed, session_factory, clock, questions=(CHOICE,))
    choice_q = test.questions[0]
    session = _session(gateway, test, clock)
    await session.start()

    payload = ChoiceAnswer(question_id=choice_q.id, selected_options=frozenset(seed.correct_ids(choice_q)))
    assert session.record_answer(choice_q.id, payload) is payload
    await session.close()
