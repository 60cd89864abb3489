# Main Router - assessment_engine/api/v1/routes/router.py
from fastapi import APIRouter
from assessment_engine.api.v1.routes.tests.tests import router as tests_router
from assessment_engine.api.v1.routes.submissions.submissions import router as submissions_router

router = APIRouter()

# Every route authenticates the caller through get_current_user
router.include_router(tests_router)
router.include_router(submissions_router)
