import asyncio
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from assessment_engine.core.config import settings
from assessment_engine.core.logging_config import get_logger
from assessment_engine.db.deps import AsyncSessionLocal
from assessment_engine.services.certificate_notifier import (
    CertificateNotifier,
    get_certificate_notifier,
)
from assessment_engine.services.submission_service import SubmissionService
from assessment_engine.utils.datetime_utils import get_current_utc_datetime


logger = get_logger("expiry_sweeper")


async def sweep_expired_drafts_once(
    session_factory: Callable[[], AsyncSession] = AsyncSessionLocal,
    *,
    grace_seconds: Optional[int] = None,
    notifier: Optional[CertificateNotifier] = None,
    now: Callable[[], datetime] = get_current_utc_datetime,
) -> int:
    """Force-submit timed drafts whose deadline plus grace has passed.

    The stored (last autosaved) answers are what gets scored. Returns the
    number of drafts finalized by this sweep.
    """
    grace = settings.EXPIRY_GRACE_SECONDS if grace_seconds is None else grace_seconds
    async with session_factory() as db:
        service = SubmissionService(db, notifier=notifier, now=now, grace_seconds=grace)
        finalized = await service.submit_expired(grace)
    if finalized:
        logger.info(f"Expiry sweeper: force-submitted {len(finalized)} abandoned draft(s)")
    return len(finalized)


async def run_expiry_sweeper_task(poll_seconds: int = 60):
    """Background loop: periodically finalize abandoned timed attempts."""
    logger.info(f"Starting expiry sweeper task (interval={poll_seconds}s)")
    notifier = get_certificate_notifier()
    try:
        while True:
            try:
                await sweep_expired_drafts_once(notifier=notifier)
            except Exception as e:
                logger.exception(f"Expiry sweeper error: {e}")
            await asyncio.sleep(poll_seconds)
    except asyncio.CancelledError:
        logger.info("Expiry sweeper task cancelled; shutting down")
        raise
