"""Signals certificate issuance when a course-completion test is passed."""

from __future__ import annotations

from typing import Protocol

import httpx

from assessment_engine.core.config import settings
from assessment_engine.core.logging_config import get_logger
from assessment_engine.models.submission import Submission
from assessment_engine.models.test import Test
from assessment_engine.utils.enums import SubmissionStatus, TestPosition

logger = get_logger(__name__)


class CertificateNotifier(Protocol):
    async def submission_passed(self, submission: Submission, test: Test) -> None:
        ...


class LoggingCertificateNotifier:
    """Default notifier: records the signal in the application log."""

    async def submission_passed(self, submission: Submission, test: Test) -> None:
        logger.info(
            "certificate_signal submission_id=%s user_id=%s test_id=%s percentage=%s",
            submission.id,
            submission.user_id,
            test.id,
            submission.percentage,
        )


class WebhookCertificateNotifier:
    """Posts the signal to the certificate service."""

    def __init__(self, url: str, secret: str | None = None, timeout: float | None = None):
        self.url = url
        self.secret = secret
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS

    async def submission_passed(self, submission: Submission, test: Test) -> None:
        headers = {"Content-Type": "application/json"}
        if self.secret:
            headers["X-Webhook-Secret"] = self.secret
        payload = {
            "event": "test.passed",
            "submission_id": str(submission.id),
            "user_id": str(submission.user_id),
            "test_id": str(test.id),
            "testable_type": test.testable_type,
            "testable_id": test.testable_id,
            "score": submission.score,
            "percentage": submission.percentage,
            "grade": submission.grade,
            "graded_at": submission.graded_at.isoformat() if submission.graded_at else None,
        }
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            response = await client.post(self.url, json=payload, headers=headers)
            response.raise_for_status()


def get_certificate_notifier() -> CertificateNotifier:
    if settings.CERTIFICATE_WEBHOOK_URL:
        return WebhookCertificateNotifier(
            settings.CERTIFICATE_WEBHOOK_URL, settings.CERTIFICATE_WEBHOOK_SECRET
        )
    return LoggingCertificateNotifier()


def qualifies_for_certificate(submission: Submission, test: Test) -> bool:
    return (
        submission.status == SubmissionStatus.graded
        and bool(submission.passed)
        and test.position == TestPosition.after_course
    )


async def emit_certificate_signal(
    notifier: CertificateNotifier | None, submission: Submission, test: Test
) -> bool:
    """Fire the signal for a submission that just reached graded.

    Callers invoke this only after winning the submitted -> graded
    transition, which is what makes the signal fire once per submission.
    Delivery failures are logged, never propagated into the grading result.
    """
    if notifier is None or not qualifies_for_certificate(submission, test):
        return False
    try:
        await notifier.submission_passed(submission, test)
    except Exception as e:
        logger.exception(f"Certificate signal failed for submission {submission.id}: {e}")
        return False
    return True
