"""Transports an AttemptSession uses to reach the authoritative submission store."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Protocol, Sequence

import httpx
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from assessment_engine.core.config import settings
from assessment_engine.core.exceptions import (
    AlreadySubmitted,
    PersistenceUnavailable,
    error_from_code,
)
from assessment_engine.core.logging_config import get_logger
from assessment_engine.schemas.answers import AnswerPayload
from assessment_engine.schemas.submissions import SaveDraftResult, SubmissionOut
from assessment_engine.schemas.tests import TestDefinition
from assessment_engine.services.certificate_notifier import CertificateNotifier
from assessment_engine.services.submission_service import SubmissionService
from assessment_engine.services.submission_views import (
    build_submission_view,
    build_taking_view,
)
from assessment_engine.utils.datetime_utils import get_current_utc_datetime

logger = get_logger(__name__)


class SubmissionGateway(Protocol):
    async def fetch_test(
        self, test_id: uuid.UUID, submission_id: Optional[uuid.UUID] = None
    ) -> TestDefinition:
        ...

    async def start(self, test_id: uuid.UUID) -> SubmissionOut:
        ...

    async def save_draft(
        self, submission_id: uuid.UUID, answers: Sequence[AnswerPayload], revision: int
    ) -> SaveDraftResult:
        ...

    async def submit(
        self,
        submission_id: uuid.UUID,
        answers: Sequence[AnswerPayload],
        *,
        forced: bool = False,
    ) -> SubmissionOut:
        ...

    async def fetch_submission(self, submission_id: uuid.UUID) -> SubmissionOut:
        ...


class ServiceSubmissionGateway:
    """Calls the service layer directly, one database session per operation."""

    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        user_id: uuid.UUID,
        *,
        notifier: Optional[CertificateNotifier] = None,
        clock: Callable = get_current_utc_datetime,
    ):
        self._session_factory = session_factory
        self.user_id = user_id
        self._notifier = notifier
        self._clock = clock

    @asynccontextmanager
    async def _service(self) -> AsyncIterator[SubmissionService]:
        try:
            async with self._session_factory() as db:
                yield SubmissionService(db, notifier=self._notifier, now=self._clock)
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Submission store unavailable: {e}")
            raise PersistenceUnavailable("Submission store unavailable") from e

    async def fetch_test(
        self, test_id: uuid.UUID, submission_id: Optional[uuid.UUID] = None
    ) -> TestDefinition:
        async with self._service() as service:
            test = await service.get_test(test_id)
            return build_taking_view(test, seed=str(submission_id) if submission_id else None)

    async def start(self, test_id: uuid.UUID) -> SubmissionOut:
        async with self._service() as service:
            submission = await service.start(self.user_id, test_id)
            return build_submission_view(submission, now=self._clock())

    async def save_draft(
        self, submission_id: uuid.UUID, answers: Sequence[AnswerPayload], revision: int
    ) -> SaveDraftResult:
        async with self._service() as service:
            accepted = await service.save_draft(submission_id, self.user_id, answers, revision)
            return SaveDraftResult(accepted=accepted, draft_revision=revision)

    async def submit(
        self,
        submission_id: uuid.UUID,
        answers: Sequence[AnswerPayload],
        *,
        forced: bool = False,
    ) -> SubmissionOut:
        async with self._service() as service:
            try:
                submission = await service.submit(
                    submission_id, self.user_id, list(answers), forced=forced
                )
            except AlreadySubmitted as e:
                submission = e.data
            return build_submission_view(submission, now=self._clock())

    async def fetch_submission(self, submission_id: uuid.UUID) -> SubmissionOut:
        async with self._service() as service:
            submission = await service.get_submission(submission_id, self.user_id)
            return build_submission_view(submission, now=self._clock())


class HttpSubmissionGateway:
    """Talks to the REST API with a bearer token."""

    def __init__(
        self,
        token: str,
        base_url: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.base_url = (base_url or settings.API_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.HTTP_TIMEOUT_SECONDS
        self._headers = {"Authorization": f"Bearer {token}"}
        self._client = client

    async def _request(
        self, method: str, path: str, json: Optional[Dict[str, Any]] = None, params=None
    ) -> Any:
        url = f"{self.base_url}{path}"
        try:
            if self._client is not None:
                response = await self._client.request(
                    method, url, json=json, params=params, headers=self._headers
                )
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.request(
                        method, url, json=json, params=params, headers=self._headers
                    )
        except httpx.HTTPError as exc:
            logger.error("Assessment API request %s %s failed: %s", method, path, exc)
            raise PersistenceUnavailable("Assessment API unreachable") from exc

        if response.status_code >= 500:
            logger.error(
                "Assessment API returned %s for %s %s", response.status_code, method, path
            )
            raise PersistenceUnavailable(
                f"Assessment API responded with status {response.status_code}"
            )

        try:
            body = response.json()
        except ValueError as exc:
            raise PersistenceUnavailable("Assessment API returned a malformed response") from exc

        if response.status_code >= 400 or body.get("status") != "success":
            raise error_from_code(
                body.get("error_code"), body.get("msg", "Request failed"), body.get("data")
            )
        return body.get("data")

    @staticmethod
    def _dump_answers(answers: Sequence[AnswerPayload]) -> List[Dict[str, Any]]:
        return [answer.model_dump(mode="json") for answer in answers]

    async def fetch_test(
        self, test_id: uuid.UUID, submission_id: Optional[uuid.UUID] = None
    ) -> TestDefinition:
        params = {"submission_id": str(submission_id)} if submission_id else None
        data = await self._request("GET", f"/tests/{test_id}", params=params)
        return TestDefinition.model_validate(data)

    async def start(self, test_id: uuid.UUID) -> SubmissionOut:
        data = await self._request("POST", f"/tests/{test_id}/start")
        return SubmissionOut.model_validate(data)

    async def save_draft(
        self, submission_id: uuid.UUID, answers: Sequence[AnswerPayload], revision: int
    ) -> SaveDraftResult:
        data = await self._request(
            "POST",
            f"/submissions/{submission_id}/draft",
            json={"revision": revision, "answers": self._dump_answers(answers)},
        )
        return SaveDraftResult.model_validate(data)

    async def submit(
        self,
        submission_id: uuid.UUID,
        answers: Sequence[AnswerPayload],
        *,
        forced: bool = False,
    ) -> SubmissionOut:
        # A duplicate submit comes back as a 200 carrying the stored submission
        data = await self._request(
            "POST",
            f"/submissions/{submission_id}/submit",
            json={"answers": self._dump_answers(answers), "forced": forced},
        )
        return SubmissionOut.model_validate(data)

    async def fetch_submission(self, submission_id: uuid.UUID) -> SubmissionOut:
        data = await self._request("GET", f"/submissions/{submission_id}")
        return SubmissionOut.model_validate(data)
