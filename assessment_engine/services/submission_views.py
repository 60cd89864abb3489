"""Student- and instructor-facing views of tests and submissions."""

from __future__ import annotations

import random
from datetime import datetime
from typing import Optional

from assessment_engine.models.submission import Submission
from assessment_engine.models.test import Test
from assessment_engine.schemas.submissions import AnswerResult, SubmissionOut
from assessment_engine.schemas.tests import OptionDefinition, QuestionDefinition, TestDefinition
from assessment_engine.services.attempt_runtime.timer import deadline_for, remaining_seconds
from assessment_engine.utils.datetime_utils import ensure_aware, get_current_utc_datetime
from assessment_engine.utils.enums import SubmissionStatus


def full_definition(test: Test) -> TestDefinition:
    """Full definition, correct options included. Server side only."""
    return TestDefinition.model_validate(test)


def build_taking_view(test: Test, seed: Optional[str] = None) -> TestDefinition:
    """Definition handed to a student: correctness stripped, order randomized
    per attempt when the test asks for it.

    The shuffle is seeded (usually with the submission id) so a resumed
    attempt sees the same order.
    """
    definition = TestDefinition.model_validate(test)
    rng = random.Random(seed) if seed is not None else random.Random()

    questions = []
    for question in definition.questions:
        options = [
            OptionDefinition(id=o.id, option_text=o.option_text, order=o.order)
            for o in question.options
        ]
        if definition.randomize_options:
            rng.shuffle(options)
        questions.append(question.model_copy(update={"options": options}))

    if definition.randomize_questions:
        rng.shuffle(questions)
    return definition.model_copy(update={"questions": questions})


def _reveal_results(submission: Submission, test: Test, for_instructor: bool) -> bool:
    if for_instructor or submission.status == SubmissionStatus.graded:
        return True
    return submission.status == SubmissionStatus.submitted and test.show_results_immediately


def build_submission_view(
    submission: Submission,
    *,
    for_instructor: bool = False,
    now: Optional[datetime] = None,
) -> SubmissionOut:
    test = submission.test
    questions = {q.id: QuestionDefinition.model_validate(q) for q in test.questions}
    reveal = _reveal_results(submission, test, for_instructor)
    reveal_correct = submission.status != SubmissionStatus.draft and (
        for_instructor or test.show_correct_answers
    )

    answers = []
    for row in submission.answers:
        question = questions.get(row.question_id)
        item = AnswerResult(
            question_id=row.question_id,
            selected_options=row.selected_options,
            answer_text=row.answer_text,
            answer_file=row.answer_file,
        )
        if reveal:
            item.is_correct = row.is_correct
            item.points_earned = row.points_earned
            item.feedback = row.feedback
        if reveal_correct and question is not None and question.is_objective:
            item.correct_options = sorted(question.correct_option_ids, key=str)
        answers.append(item)

    time_left = None
    deadline = None
    if submission.status == SubmissionStatus.draft:
        deadline = deadline_for(submission.started_at, test.duration_minutes)
        left = remaining_seconds(
            submission.started_at, test.duration_minutes, now or get_current_utc_datetime()
        )
        time_left = int(left) if left is not None else None

    view = SubmissionOut(
        id=submission.id,
        test_id=submission.test_id,
        user_id=submission.user_id,
        attempt_number=submission.attempt_number,
        status=submission.status,
        started_at=ensure_aware(submission.started_at),
        submitted_at=ensure_aware(submission.submitted_at) if submission.submitted_at else None,
        graded_at=ensure_aware(submission.graded_at) if submission.graded_at else None,
        draft_revision=submission.draft_revision or 0,
        forced=bool(submission.forced),
        deadline=deadline,
        time_remaining_seconds=time_left,
        pending_manual=bool(submission.pending_manual),
        total_points=test.total_points,
        answers=answers,
    )
    if reveal:
        view.auto_score = submission.auto_score
        view.score = submission.score
        view.percentage = submission.percentage
        view.grade = submission.grade
        view.passed = submission.passed
        view.instructor_comments = submission.instructor_comments
    return view
