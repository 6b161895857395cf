"""API routes for the onboarding wizard and its final submission."""

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse

from clinica.api.deps import CurrentUser, Repository
from clinica.core.exceptions import ValidationError
from clinica.onboarding.models import (
    CompleteOnboardingRequest,
    OnboardingStatus,
    OnboardingStep,
    StepValidation,
    WizardData,
)
from clinica.onboarding.payload import assemble_payload
from clinica.onboarding.routing import OnboardingStatusService
from clinica.onboarding.transaction import SAGA_FAILURE_MESSAGE, OnboardingTransaction
from clinica.onboarding.validation import validate_step

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/onboarding", tags=["onboarding"])


@router.get("/status", response_model=OnboardingStatus)
async def get_onboarding_status(
    current_user: CurrentUser,
    repository: Repository,
) -> OnboardingStatus:
    """Whether the caller still has to complete the wizard."""
    return await OnboardingStatusService(repository).get_status(current_user.id)


@router.post("/steps/{step}/validate", response_model=StepValidation)
async def validate_wizard_step(
    step: OnboardingStep,
    body: WizardData,
    current_user: CurrentUser,
) -> StepValidation:
    """Run a step's validator against the submitted wizard data."""
    return validate_step(step, body)


@router.post("/complete", response_model=None)
async def complete_onboarding(
    body: CompleteOnboardingRequest,
    current_user: CurrentUser,
    repository: Repository,
) -> Any:
    """Create the caller's clinic and related records.

    Returns 200 with the new clinic id, or 422 when the saga failed and
    was rolled back.
    """
    if body.payload is not None:
        payload = body.payload
    elif body.wizard is not None:
        email = body.email or getattr(current_user, "email", None) or ""
        try:
            payload = assemble_payload(body.wizard, email)
        except ValidationError as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"message": e.message, **e.details},
            ) from e
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either payload or wizard data is required",
        )

    result = await OnboardingTransaction(repository).run(current_user.id, payload)

    if not result.success:
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "success": False,
                "error": result.error,
                "message": SAGA_FAILURE_MESSAGE,
            },
        )

    return {"success": True, "clinic_id": result.clinic_id}
