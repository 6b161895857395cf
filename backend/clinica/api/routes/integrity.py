"""API routes for post-onboarding integrity verification."""

import logging

from fastapi import APIRouter, HTTPException, status

from clinica.api.deps import AdminUser, CurrentUser, Repository
from clinica.core.config import settings
from clinica.onboarding.integrity import IntegrityVerifier, describe_status
from clinica.onboarding.models import (
    AutoFixResult,
    BatchVerificationRequest,
    UserIntegrityReport,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrity", tags=["integrity"])


class IntegrityReportResponse(UserIntegrityReport):
    """Integrity report plus a user-facing status sentence."""

    status_message: str


def _with_message(report: UserIntegrityReport) -> IntegrityReportResponse:
    return IntegrityReportResponse(
        **report.model_dump(),
        status_message=describe_status(report.overall_status),
    )


@router.get("/me", response_model=IntegrityReportResponse)
async def verify_me(
    current_user: CurrentUser,
    repository: Repository,
) -> IntegrityReportResponse:
    """Integrity report for the caller."""
    report = await IntegrityVerifier(repository).verify_user(current_user.id)
    return _with_message(report)


@router.post("/me/auto-fix", response_model=AutoFixResult)
async def auto_fix_me(
    current_user: CurrentUser,
    repository: Repository,
) -> AutoFixResult:
    """Mark the caller's onboarding complete when only the flags are missing."""
    return await IntegrityVerifier(repository).auto_fix(current_user.id)


@router.get("/users/{user_id}", response_model=IntegrityReportResponse)
async def verify_user(
    user_id: str,
    admin_user: AdminUser,
    repository: Repository,
) -> IntegrityReportResponse:
    """Integrity report for any user (admin only)."""
    report = await IntegrityVerifier(repository).verify_user(user_id)
    return _with_message(report)


@router.post("/batch", response_model=list[IntegrityReportResponse])
async def verify_batch(
    body: BatchVerificationRequest,
    admin_user: AdminUser,
    repository: Repository,
) -> list[IntegrityReportResponse]:
    """Integrity reports for several users (admin only)."""
    if len(body.user_ids) > settings.INTEGRITY_BATCH_MAX_USERS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"At most {settings.INTEGRITY_BATCH_MAX_USERS} users per batch",
        )

    logger.info(
        "Batch integrity verification",
        extra={"admin_id": admin_user.id, "user_count": len(body.user_ids)},
    )
    reports = await IntegrityVerifier(repository).verify_batch(body.user_ids)
    return [_with_message(report) for report in reports]
