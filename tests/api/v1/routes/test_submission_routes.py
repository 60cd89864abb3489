from __future__ import annotations

import uuid
from typing import Any, Dict

import httpx
import pytest

from assessment_engine.core.exceptions import (
    AttemptLimitExceeded,
    PersistenceUnavailable,
    SubmissionNotFound,
)
from assessment_engine.services.attempt_runtime.gateways import HttpSubmissionGateway
from assessment_engine.services.attempt_runtime.session import AttemptSession
from assessment_engine.utils.enums import AttemptPhase, QuestionType, Role, ValidationType

pytestmark = pytest.mark.anyio

API = "/api/v1"

CHOICE = {
    "type": QuestionType.single_choice,
    "points": 40,
    "options": [("Right", True), ("Wrong", False), ("Also wrong", False)],
}
ESSAY = {"type": QuestionType.short_answer, "points": 60}


def _choice(question_id, option_ids) -> Dict[str, Any]:
    return {"kind": "choice", "question_id": str(question_id), "selected_options": [str(o) for o in option_ids]}


def _text(question_id, text) -> Dict[str, Any]:
    return {"kind": "text", "question_id": str(question_id), "answer_text": text}


async def _start(client, headers, test_id) -> Dict[str, Any]:
    response = await client.post(f"{API}/tests/{test_id}/start", headers=headers)
    assert response.status_code == 200, response.text
    return response.json()["data"]


async def test_requests_without_token_are_rejected(client, seed):
    test = await seed.test([CHOICE])

    response = await client.post(f"{API}/tests/{test.id}/start")

    assert response.status_code == 401
    assert response.json()["status"] == "error"


async def test_taking_view_hides_correct_options(client, seed, auth_headers):
    student = await seed.user()
    test = await seed.test([CHOICE], randomize_options=True)

    response = await client.get(f"{API}/tests/{test.id}", headers=auth_headers(student))
    assert response.status_code == 200
    question = response.json()["data"]["questions"][0]
    assert len(question["options"]) == 3
    assert all(option.get("is_correct") is None for option in question["options"])

    # Same seed, same order
    submission_id = uuid.uuid4()
    orders = []
    for _ in range(2):
        response = await client.get(
            f"{API}/tests/{test.id}",
            params={"submission_id": str(submission_id)},
            headers=auth_headers(student),
        )
        orders.append([o["id"] for o in response.json()["data"]["questions"][0]["options"]])
    assert orders[0] == orders[1]


async def test_staff_see_full_definition(client, seed, auth_headers):
    instructor = await seed.user(Role.instructor)
    test = await seed.test([CHOICE], is_published=False, instructor_id=instructor.id)

    response = await client.get(f"{API}/tests/{test.id}", headers=auth_headers(instructor))

    options = response.json()["data"]["questions"][0]["options"]
    assert [o["is_correct"] for o in options] == [True, False, False]


async def test_unknown_test_is_not_found(client, seed, auth_headers):
    student = await seed.user()

    response = await client.post(f"{API}/tests/{uuid.uuid4()}/start", headers=auth_headers(student))

    assert response.status_code == 404
    assert response.json()["error_code"] == "NOT_FOUND"


async def test_attempt_limit_maps_to_conflict(client, seed, auth_headers):
    student = await seed.user()
    test = await seed.test([CHOICE], max_attempts=1)
    headers = auth_headers(student)

    draft = await _start(client, headers, test.id)
    await client.post(f"{API}/submissions/{draft['id']}/submit", headers=headers)
    response = await client.post(f"{API}/tests/{test.id}/start", headers=headers)

    assert response.status_code == 409
    body = response.json()
    assert body["error_code"] == "ATTEMPT_LIMIT_EXCEEDED"
    assert body["data"] == {"max_attempts": 1, "attempts_used": 1}


async def test_autosave_submit_and_duplicate_submit(client, seed, auth_headers):
    student = await seed.user()
    test = await seed.test([CHOICE], passing_score=50)
    choice_q = test.questions[0]
    headers = auth_headers(student)
    draft = await _start(client, headers, test.id)

    saved = await client.post(
        f"{API}/submissions/{draft['id']}/draft",
        json={"revision": 1, "answers": [_choice(choice_q.id, seed.correct_ids(choice_q))]},
        headers=headers,
    )
    assert saved.json()["data"] == {"accepted": True, "draft_revision": 1}

    stale = await client.post(
        f"{API}/submissions/{draft['id']}/draft",
        json={"revision": 1, "answers": []},
        headers=headers,
    )
    assert stale.status_code == 200
    assert stale.json()["data"]["accepted"] is False

    # No body: the autosaved answers are what gets scored
    first = await client.post(f"{API}/submissions/{draft['id']}/submit", headers=headers)
    assert first.status_code == 200
    result = first.json()["data"]
    assert result["status"] == "graded"
    assert result["score"] == 40
    assert result["passed"] is True

    again = await client.post(
        f"{API}/submissions/{draft['id']}/submit", json={"answers": []}, headers=headers
    )
    assert again.status_code == 200
    assert again.json()["status"] == "success"
    assert again.json()["data"]["id"] == result["id"]
    assert again.json()["data"]["score"] == 40

    late = await client.post(
        f"{API}/submissions/{draft['id']}/draft",
        json={"revision": 2, "answers": []},
        headers=headers,
    )
    assert late.status_code == 409
    assert late.json()["error_code"] == "STALE_TRANSITION"


async def test_mismatched_answer_is_unprocessable(client, seed, auth_headers):
    student = await seed.user()
    test = await seed.test([CHOICE])
    headers = auth_headers(student)
    draft = await _start(client, headers, test.id)

    response = await client.post(
        f"{API}/submissions/{draft['id']}/draft",
        json={"revision": 1, "answers": [_text(test.questions[0].id, "Right")]},
        headers=headers,
    )

    assert response.status_code == 422
    assert response.json()["error_code"] == "INVALID_ANSWER"


async def test_malformed_body_lists_rejected_fields(client, seed, auth_headers):
    student = await seed.user()
    test = await seed.test([CHOICE])
    headers = auth_headers(student)
    draft = await _start(client, headers, test.id)

    response = await client.post(
        f"{API}/submissions/{draft['id']}/draft", json={"answers": []}, headers=headers
    )

    assert response.status_code == 422
    body = response.json()
    assert body["error_code"] == "INVALID_REQUEST"
    assert [f["field"] for f in body["fields"]] == ["revision"]


async def test_submissions_are_private_to_their_owner(client, seed, auth_headers):
    student = await seed.user()
    other = await seed.user()
    test = await seed.test([CHOICE])
    draft = await _start(client, auth_headers(student), test.id)

    response = await client.get(f"{API}/submissions/{draft['id']}", headers=auth_headers(other))

    assert response.status_code == 404


async def _submit_mixed(client, seed, auth_headers, instructor):
    student = await seed.user()
    test = await seed.test(
        [CHOICE, ESSAY], validation_type=ValidationType.mixed, instructor_id=instructor.id
    )
    choice_q, essay_q = test.questions
    headers = auth_headers(student)
    draft = await _start(client, headers, test.id)
    response = await client.post(
        f"{API}/submissions/{draft['id']}/submit",
        json={
            "answers": [
                _choice(choice_q.id, seed.correct_ids(choice_q)),
                _text(essay_q.id, "An essay"),
            ]
        },
        headers=headers,
    )
    return student, essay_q, response.json()["data"]


async def test_manual_grading_flow(client, seed, auth_headers, notifier):
    instructor = await seed.user(Role.instructor)
    student, essay_q, submitted = await _submit_mixed(client, seed, auth_headers, instructor)
    assert submitted["status"] == "submitted"
    assert submitted["pending_manual"] is True

    pending = await client.get(f"{API}/submissions/pending-grading", headers=auth_headers(instructor))
    assert [s["id"] for s in pending.json()["data"]] == [submitted["id"]]

    forbidden = await client.post(
        f"{API}/submissions/{submitted['id']}/grade",
        json={"grades": [{"question_id": str(essay_q.id), "points": 30}]},
        headers=auth_headers(student),
    )
    assert forbidden.status_code == 403

    too_many = await client.post(
        f"{API}/submissions/{submitted['id']}/grade",
        json={"grades": [{"question_id": str(essay_q.id), "points": 61}]},
        headers=auth_headers(instructor),
    )
    assert too_many.status_code == 422
    assert too_many.json()["error_code"] == "INVALID_POINTS"

    graded = await client.post(
        f"{API}/submissions/{submitted['id']}/grade",
        json={"grades": [{"question_id": str(essay_q.id), "points": 30}], "comments": "Good"},
        headers=auth_headers(instructor),
    )
    assert graded.status_code == 200
    data = graded.json()["data"]
    assert data["status"] == "graded"
    assert data["score"] == 70
    assert data["grade"] == "B"

    regrade = await client.post(
        f"{API}/submissions/{submitted['id']}/grade",
        json={"grades": [{"question_id": str(essay_q.id), "points": 60}]},
        headers=auth_headers(instructor),
    )
    assert regrade.status_code == 409

    pending = await client.get(f"{API}/submissions/pending-grading", headers=auth_headers(instructor))
    assert pending.json()["data"] == []


async def test_instructors_only_grade_their_own_tests(client, seed, auth_headers):
    owner = await seed.user(Role.instructor)
    stranger = await seed.user(Role.instructor)
    _, essay_q, submitted = await _submit_mixed(client, seed, auth_headers, owner)

    response = await client.post(
        f"{API}/submissions/{submitted['id']}/grade",
        json={"grades": [{"question_id": str(essay_q.id), "points": 10}]},
        headers=auth_headers(stranger),
    )
    assert response.status_code == 403

    pending = await client.get(f"{API}/submissions/pending-grading", headers=auth_headers(stranger))
    assert pending.json()["data"] == []


async def test_http_gateway_drives_an_attempt(client, seed, token_for):
    student = await seed.user()
    test = await seed.test([CHOICE, ESSAY], validation_type=ValidationType.automatic)
    choice_q = test.questions[0]
    gateway = HttpSubmissionGateway(
        token_for(student), base_url=f"http://testserver{API}", client=client
    )
    session = AttemptSession(gateway, test.id, autosave_interval_seconds=3600, tick_seconds=0.01)

    await session.start()
    assert session.phase == AttemptPhase.draft
    assert all(o.is_correct is None for q in session.test.questions for o in q.options)

    session.record_answer(choice_q.id, {"selected_options": [str(seed.correct_ids(choice_q)[0])]})
    await session.autosave_now()
    stored = await gateway.fetch_submission(session.submission_id)
    assert stored.draft_revision == 1

    view = await session.submit()
    assert session.phase == AttemptPhase.graded
    assert view.score == 40

    # Duplicate submit through the API is an idempotent success
    again = await gateway.submit(session.submission_id, [])
    assert again.id == view.id
    assert again.score == 40
    await session.close()


async def test_http_gateway_maps_error_codes(client, seed, token_for):
    student = await seed.user()
    test = await seed.test([CHOICE], max_attempts=1)
    gateway = HttpSubmissionGateway(
        token_for(student), base_url=f"http://testserver{API}", client=client
    )

    draft = await gateway.start(test.id)
    await gateway.submit(draft.id, [])

    with pytest.raises(AttemptLimitExceeded):
        await gateway.start(test.id)
    with pytest.raises(SubmissionNotFound):
        await gateway.fetch_submission(uuid.uuid4())


async def test_http_gateway_reports_outages_as_persistence_unavailable():
    def _unavailable(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, json={"status": "error", "msg": "down"})

    def _unreachable(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    for handler in (_unavailable, _unreachable):
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as mock_client:
            gateway = HttpSubmissionGateway("token", base_url="http://assessments", client=mock_client)
            with pytest.raises(PersistenceUnavailable):
                await gateway.fetch_submission(uuid.uuid4())
