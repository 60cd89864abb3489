"""Error model shared by the service layer, the API and the attempt runtime."""

from __future__ import annotations

from typing import Any, Optional


class AssessmentError(Exception):
    """Base exception for assessment engine failures."""

    error_code = "ASSESSMENT_ERROR"
    status_code = 400

    def __init__(self, message: str, *, data: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.data = data


class AttemptLimitExceeded(AssessmentError):
    """Raised when starting a new attempt would exceed max_attempts."""

    error_code = "ATTEMPT_LIMIT_EXCEEDED"
    status_code = 409


class AlreadySubmitted(AssessmentError):
    """Raised on a duplicate submit. Callers treat it as an idempotent success."""

    error_code = "ALREADY_SUBMITTED"
    status_code = 200


class InvalidPoints(AssessmentError):
    """Raised when manual grading input falls outside a question's range."""

    error_code = "INVALID_POINTS"
    status_code = 422


class InvalidAnswer(AssessmentError):
    """Raised when an answer payload does not match its question's type."""

    error_code = "INVALID_ANSWER"
    status_code = 422


class StaleTransition(AssessmentError):
    """Raised to the loser of a state-transition race."""

    error_code = "STALE_TRANSITION"
    status_code = 409


class AttemptNotActive(AssessmentError):
    """Raised when an operation requires a draft attempt and there is none."""

    error_code = "ATTEMPT_NOT_ACTIVE"
    status_code = 409


class PersistenceUnavailable(AssessmentError):
    """Raised when the submission store cannot be reached."""

    error_code = "PERSISTENCE_UNAVAILABLE"
    status_code = 503


class SubmissionNotFound(AssessmentError):
    error_code = "NOT_FOUND"
    status_code = 404


class AssessmentNotFound(AssessmentError):
    error_code = "NOT_FOUND"
    status_code = 404


_ERRORS_BY_CODE = {
    cls.error_code: cls
    for cls in (
        AttemptLimitExceeded,
        AlreadySubmitted,
        InvalidPoints,
        InvalidAnswer,
        StaleTransition,
        AttemptNotActive,
        PersistenceUnavailable,
        SubmissionNotFound,
    )
}


def error_from_code(error_code: Optional[str], message: str, data: Any = None) -> AssessmentError:
    """Rebuild the exception a remote service reported through its error_code."""
    cls = _ERRORS_BY_CODE.get(error_code or "", AssessmentError)
    return cls(message, data=data)
