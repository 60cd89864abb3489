"""Scoring engine: evaluates submitted answers against question rules.

Objective (choice-based) questions are scored here. Free-text and file
questions are never scored automatically; whether they are queued for an
instructor depends on the test's validation type.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, Optional
from uuid import UUID

from assessment_engine.core.exceptions import InvalidAnswer
from assessment_engine.core.logging_config import get_logger
from assessment_engine.schemas.answers import AnswerPayload, ChoiceAnswer
from assessment_engine.schemas.tests import QuestionDefinition
from assessment_engine.utils.enums import ValidationType

logger = get_logger(__name__)

MANUAL_VALIDATION_TYPES = frozenset({ValidationType.manual, ValidationType.mixed})


@dataclass(frozen=True)
class AnswerScore:
    question_id: UUID
    # Both stay None for questions awaiting (or excluded from) manual grading
    is_correct: Optional[bool]
    points_earned: Optional[int]

    @property
    def is_scored(self) -> bool:
        return self.points_earned is not None


@dataclass(frozen=True)
class ScoringResult:
    answers: Dict[UUID, AnswerScore] = field(default_factory=dict)
    auto_score: int = 0
    pending_manual: bool = False
    manual_question_ids: FrozenSet[UUID] = frozenset()


def validate_answer(question: QuestionDefinition, answer: AnswerPayload) -> None:
    """Reject a payload whose shape does not fit the question."""
    if answer.question_id != question.id:
        raise InvalidAnswer(
            f"Answer for question {answer.question_id} was recorded against {question.id}"
        )
    expected = question.type.answer_kind
    if answer.kind != expected.value:
        raise InvalidAnswer(
            f"Question {question.id} ({question.type.value}) expects a {expected.value} answer, "
            f"got {answer.kind}"
        )
    if isinstance(answer, ChoiceAnswer):
        unknown = answer.selected_options - question.option_ids
        if unknown:
            raise InvalidAnswer(
                f"Question {question.id} has no option(s) {sorted(str(o) for o in unknown)}"
            )


def score_answer(question: QuestionDefinition, answer: AnswerPayload) -> AnswerScore:
    """Score one answer. Only exact matches of the correct option set earn points."""
    if not question.is_objective:
        return AnswerScore(question.id, None, None)

    if not isinstance(answer, ChoiceAnswer):
        # Shape mismatches are rejected upstream; never award points for one
        logger.warning(
            "Non-choice answer for objective question %s scored as incorrect", question.id
        )
        return AnswerScore(question.id, False, 0)

    # single_choice/true_false have one correct id, multiple_choice one or more;
    # set equality covers both and rules out subset/superset partial credit.
    is_correct = answer.selected_options == question.correct_option_ids
    return AnswerScore(question.id, is_correct, question.points if is_correct else 0)


def score_submission(
    questions: Iterable[QuestionDefinition],
    answers: Iterable[AnswerPayload],
    validation_type: ValidationType,
) -> ScoringResult:
    """Score every answered question of a submission.

    Unanswered questions earn nothing and produce no entry. ``pending_manual``
    is set when at least one non-objective question was answered and the
    test's validation type allows manual grading.
    """
    by_id = {q.id: q for q in questions}
    results: Dict[UUID, AnswerScore] = {}
    manual_ids = set()
    auto_score = 0

    for answer in answers:
        question = by_id.get(answer.question_id)
        if question is None:
            logger.warning("Ignoring answer for unknown question %s", answer.question_id)
            continue
        scored = score_answer(question, answer)
        results[question.id] = scored
        if scored.is_scored:
            auto_score += scored.points_earned
        elif not question.is_objective:
            manual_ids.add(question.id)

    pending_manual = bool(manual_ids) and validation_type in MANUAL_VALIDATION_TYPES
    return ScoringResult(
        answers=results,
        auto_score=auto_score,
        pending_manual=pending_manual,
        manual_question_ids=frozenset(manual_ids) if pending_manual else frozenset(),
    )
