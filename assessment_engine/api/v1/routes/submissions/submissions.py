# Standard library imports
import uuid
from typing import Optional

# Third-party imports
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

# Local imports
from assessment_engine.core.exceptions import AlreadySubmitted
from assessment_engine.core.logging_config import get_logger
from assessment_engine.core.response import ResponseModel, success_response
from assessment_engine.core.security import get_current_user, require_roles
from assessment_engine.db.deps import get_db
from assessment_engine.schemas.submissions import (
    GradeSubmissionRequest,
    SaveDraftRequest,
    SaveDraftResult,
    SubmitRequest,
)
from assessment_engine.services.certificate_notifier import (
    CertificateNotifier,
    get_certificate_notifier,
)
from assessment_engine.services.grading_service import GradingService
from assessment_engine.services.submission_service import SubmissionService
from assessment_engine.services.submission_views import build_submission_view
from assessment_engine.utils.enums import Role

logger = get_logger(__name__)

router = APIRouter(prefix="/submissions", tags=["submissions"])

STAFF_ROLES = (Role.instructor, Role.admin)


def _ensure_grader(current_user, test) -> None:
    # Instructors grade their own tests; admins grade any
    if current_user.role == Role.instructor and test.instructor_id != current_user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions"
        )


@router.get("/pending-grading", response_model=ResponseModel)
async def pending_grading(
    test_id: Optional[uuid.UUID] = None,
    current_user=Depends(require_roles(*STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    """Submissions waiting for manual grading, oldest first."""
    service = GradingService(db)
    submissions = await service.list_pending(
        test_ids=[test_id] if test_id else None,
        instructor_id=current_user.id if current_user.role == Role.instructor else None,
    )
    return success_response(
        msg="Pending submissions retrieved",
        data=[
            build_submission_view(s, for_instructor=True).model_dump(mode="json")
            for s in submissions
        ],
    )


@router.get("/{submission_id}", response_model=ResponseModel)
async def get_submission(
    submission_id: uuid.UUID,
    current_user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    service = SubmissionService(db)
    if current_user.role in STAFF_ROLES:
        submission = await service.get_submission(submission_id)
        _ensure_grader(current_user, submission.test)
        view = build_submission_view(submission, for_instructor=True)
    else:
        submission = await service.get_submission(submission_id, current_user.id)
        view = build_submission_view(submission)
    return success_response(msg="Submission retrieved", data=view.model_dump(mode="json"))


@router.post("/{submission_id}/draft", response_model=ResponseModel)
async def save_draft(
    submission_id: uuid.UUID,
    body: SaveDraftRequest,
    current_user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Autosave. A revision older than the stored one is acknowledged but dropped."""
    service = SubmissionService(db)
    accepted = await service.save_draft(
        submission_id, current_user.id, body.answers, body.revision
    )
    result = SaveDraftResult(accepted=accepted, draft_revision=body.revision)
    return success_response(
        msg="Draft saved" if accepted else "Stale draft ignored",
        data=result.model_dump(mode="json"),
    )


@router.post("/{submission_id}/submit", response_model=ResponseModel)
async def submit_submission(
    submission_id: uuid.UUID,
    body: Optional[SubmitRequest] = None,
    current_user=Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    notifier: CertificateNotifier = Depends(get_certificate_notifier),
):
    body = body or SubmitRequest()
    service = SubmissionService(db, notifier=notifier)
    try:
        submission = await service.submit(
            submission_id, current_user.id, body.answers, forced=body.forced
        )
    except AlreadySubmitted as e:
        # Duplicate submits are idempotent: hand back what was recorded
        logger.info(f"Duplicate submit for submission {submission_id}")
        return success_response(
            msg=e.message,
            data=build_submission_view(e.data).model_dump(mode="json"),
        )
    return success_response(
        msg="Test submitted",
        data=build_submission_view(submission).model_dump(mode="json"),
    )


@router.post("/{submission_id}/grade", response_model=ResponseModel)
async def grade_submission(
    submission_id: uuid.UUID,
    body: GradeSubmissionRequest,
    current_user=Depends(require_roles(*STAFF_ROLES)),
    db: AsyncSession = Depends(get_db),
    notifier: CertificateNotifier = Depends(get_certificate_notifier),
):
    submission = await SubmissionService(db).get_submission(submission_id)
    _ensure_grader(current_user, submission.test)

    service = GradingService(db, notifier=notifier)
    graded = await service.grade_submission(
        submission_id, body.grades, comments=body.comments, grader_id=current_user.id
    )
    return success_response(
        msg="Submission graded",
        data=build_submission_view(graded, for_instructor=True).model_dump(mode="json"),
    )
