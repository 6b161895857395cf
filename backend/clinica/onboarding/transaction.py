"""Onboarding transaction: the eight-step saga that sets up a clinic owner.

The store has no cross-table transactions, so the records created during
onboarding are written one at a time in dependency order. Every step that
creates something registers a compensation; steps that hit a unique
constraint re-read the existing row instead and register nothing, which
makes a retried run safe.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from clinica.core.exceptions import ConflictError, OnboardingStepError
from clinica.db.clinic_repository import ClinicRepository, Row, get_clinic_repository
from clinica.onboarding.models import (
    OWNER_ROLE,
    OnboardingPayload,
    OnboardingResult,
    ProgressEvent,
)
from clinica.onboarding.saga import Saga, SagaStep, StepOutcome

logger = logging.getLogger(__name__)

SAGA_FAILURE_MESSAGE = "Onboarding not completed, please retry."

OWNER_LINK_TITLE = "Owner"

STARTER_TEMPLATES: list[dict[str, Any]] = [
    {
        "procedure_type": "skin_cleansing",
        "name": "Basic skin cleansing",
        "description": "Deep cleansing with blackhead extraction",
        "default_duration_minutes": 60,
        "base_price": 80.00,
    },
    {
        "procedure_type": "chemical_peel",
        "name": "Chemical peel",
        "description": "Superficial chemical peel",
        "default_duration_minutes": 45,
        "base_price": 120.00,
    },
]

CUSTOM_PROCEDURE_TYPE = "custom"

OnProgress = Callable[[ProgressEvent], Awaitable[None] | None]


@dataclass
class OnboardingContext:
    """State shared by the onboarding steps of one run."""

    repository: ClinicRepository
    identity_id: str
    payload: OnboardingPayload
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    role: Row | None = None
    clinic_id: str | None = None
    professional: Row | None = None
    link: Row | None = None
    template_ids: list[str] = field(default_factory=list)

    def require_role(self, step: str) -> Row:
        if self.role is None:
            raise OnboardingStepError(step, "Owner role was not created")
        return self.role

    def require_clinic_id(self, step: str) -> str:
        if self.clinic_id is None:
            raise OnboardingStepError(step, "Clinic was not created")
        return self.clinic_id


async def _create_or_fetch(
    step: str,
    create: Callable[[], Awaitable[Row]],
    fetch: Callable[[], Awaitable[Row | None]],
) -> StepOutcome:
    """Insert a row, falling back to the existing one on a unique conflict."""
    try:
        return StepOutcome(value=await create(), created=True)
    except ConflictError:
        existing = await fetch()
        if existing is None:
            raise OnboardingStepError(step, "Row conflicted on insert but could not be read") from None
        logger.info("Reusing existing row after conflict", extra={"step": step})
        return StepOutcome(value=existing, created=False)


# ---------------------------------------------------------------------------
# Steps
# ---------------------------------------------------------------------------


class UpsertProfileStep(SagaStep[OnboardingContext]):
    name = "create_profile"
    message = "Creating user profile..."

    async def execute(self, context: OnboardingContext) -> StepOutcome:
        profile = context.payload.profile
        if not profile.full_name.strip() or not profile.email.strip():
            raise OnboardingStepError(self.name, "Profile name and email are required")

        fields: dict[str, Any] = {
            "full_name": profile.full_name.strip(),
            "email": profile.email.strip(),
            "first_access": True,
            "active": True,
            "updated_at": context.started_at.isoformat(),
        }
        # No phone in the wizard keeps the one stored at signup
        if profile.phone is not None:
            fields["phone"] = profile.phone

        row = await context.repository.upsert_profile(context.identity_id, fields)
        return StepOutcome(value=row)

    async def compensate(self, context: OnboardingContext, outcome: StepOutcome) -> None:
        await context.repository.update_profile(context.identity_id, {"first_access": True})


class CreateOwnerRoleStep(SagaStep[OnboardingContext]):
    name = "create_role"
    message = "Creating user role..."

    async def execute(self, context: OnboardingContext) -> StepOutcome:
        repository = context.repository
        outcome = await _create_or_fetch(
            self.name,
            lambda: repository.insert_role(
                {
                    "user_id": context.identity_id,
                    "role": OWNER_ROLE,
                    "clinic_id": None,
                    "active": True,
                }
            ),
            lambda: repository.get_role(context.identity_id, OWNER_ROLE),
        )
        context.role = outcome.value
        return outcome

    async def compensate(self, context: OnboardingContext, outcome: StepOutcome) -> None:
        await context.repository.delete_role(outcome.value["id"])


class CreateClinicStep(SagaStep[OnboardingContext]):
    name = "create_clinic"
    message = "Creating clinic..."

    async def execute(self, context: OnboardingContext) -> StepOutcome:
        clinic = context.payload.clinic
        if not clinic.name.strip():
            raise OnboardingStepError(self.name, "Clinic name is required")

        role = context.require_role(self.name)
        existing_id = role.get("clinic_id")
        if existing_id:
            # A previous run already got as far as linking the role
            existing = await context.repository.get_clinic(existing_id)
            if existing is not None and existing.get("owner_id") == context.identity_id:
                context.clinic_id = existing["id"]
                logger.info(
                    "Reusing clinic from previous onboarding run",
                    extra={"user_id": context.identity_id, "clinic_id": context.clinic_id},
                )
                return StepOutcome(value=existing, created=False)

        row = await context.repository.insert_clinic(
            {
                "name": clinic.name.strip(),
                "tax_id": clinic.tax_id,
                "phone": clinic.phone,
                "email": clinic.email,
                "address": clinic.address,
                "opening_hours": clinic.opening_hours,
                "owner_id": context.identity_id,
                "active": True,
            }
        )
        if not row.get("id"):
            raise OnboardingStepError(self.name, "Store did not return a clinic id")
        context.clinic_id = row["id"]
        return StepOutcome(value=row)

    async def compensate(self, context: OnboardingContext, outcome: StepOutcome) -> None:
        await context.repository.delete_clinic(outcome.value["id"])


class LinkRoleToClinicStep(SagaStep[OnboardingContext]):
    name = "update_role_with_clinic"
    message = "Updating role with clinic..."

    async def execute(self, context: OnboardingContext) -> StepOutcome:
        role = context.require_role(self.name)
        clinic_id = context.require_clinic_id(self.name)
        previous = role.get("clinic_id")
        if previous == clinic_id:
            return StepOutcome(value=previous, created=False)

        updated = await context.repository.update_role(role["id"], {"clinic_id": clinic_id})
        if updated is None:
            raise OnboardingStepError(self.name, "Owner role disappeared before it could be linked")
        context.role = updated
        # The value kept for compensation is the clinic id to restore
        return StepOutcome(value=previous, created=True)

    async def compensate(self, context: OnboardingContext, outcome: StepOutcome) -> None:
        role = context.require_role(self.name)
        await context.repository.update_role(role["id"], {"clinic_id": outcome.value})


class CreateProfessionalStep(SagaStep[OnboardingContext]):
    name = "create_professional"
    message = "Creating professional record..."

    async def execute(self, context: OnboardingContext) -> StepOutcome:
        professional = context.payload.professional
        repository = context.repository
        outcome = await _create_or_fetch(
            self.name,
            lambda: repository.insert_professional(
                {
                    "user_id": context.identity_id,
                    "specialties": list(professional.specialties),
                    "registration_number": professional.registration_number,
                    "active": True,
                }
            ),
            lambda: repository.get_professional(context.identity_id),
        )
        context.professional = outcome.value
        return outcome

    async def compensate(self, context: OnboardingContext, outcome: StepOutcome) -> None:
        await context.repository.delete_professional(outcome.value["id"])


class LinkProfessionalToClinicStep(SagaStep[OnboardingContext]):
    name = "link_professional_to_clinic"
    message = "Linking professional to clinic..."

    async def execute(self, context: OnboardingContext) -> StepOutcome:
        clinic_id = context.require_clinic_id(self.name)
        repository = context.repository
        outcome = await _create_or_fetch(
            self.name,
            lambda: repository.insert_clinic_link(
                {
                    "clinic_id": clinic_id,
                    "user_id": context.identity_id,
                    "title": OWNER_LINK_TITLE,
                    "can_create_records": True,
                    "can_edit_records": True,
                    "can_view_finance": True,
                    "active": True,
                }
            ),
            lambda: repository.get_clinic_link(clinic_id, context.identity_id),
        )
        context.link = outcome.value
        return outcome

    async def compensate(self, context: OnboardingContext, outcome: StepOutcome) -> None:
        await context.repository.delete_clinic_link(outcome.value["id"])


class CreateStarterTemplatesStep(SagaStep[OnboardingContext]):
    name = "create_templates"
    message = "Creating procedure templates..."

    def _candidates(self, context: OnboardingContext) -> list[dict[str, Any]]:
        candidates = [dict(template) for template in STARTER_TEMPLATES]
        service = context.payload.service
        if service is not None:
            candidates.append(
                {
                    "procedure_type": CUSTOM_PROCEDURE_TYPE,
                    "name": service.name,
                    "description": service.description,
                    "default_duration_minutes": service.duration_minutes,
                    "base_price": service.price,
                }
            )
        return candidates

    async def execute(self, context: OnboardingContext) -> StepOutcome:
        owned = await context.repository.list_templates(context.identity_id)
        owned_names = {template.get("name") for template in owned}

        rows = [
            {**candidate, "created_by": context.identity_id, "active": True}
            for candidate in self._candidates(context)
            if candidate["name"] not in owned_names
        ]
        if not rows:
            return StepOutcome(value=[], created=False)

        inserted = await context.repository.insert_templates(rows)
        template_ids = [row["id"] for row in inserted if row.get("id")]
        context.template_ids = template_ids
        return StepOutcome(value=template_ids, created=bool(template_ids))

    async def compensate(self, context: OnboardingContext, outcome: StepOutcome) -> None:
        await context.repository.delete_templates(outcome.value)


class MarkProfileCompleteStep(SagaStep[OnboardingContext]):
    name = "mark_onboarding_complete"
    message = "Finalizing onboarding..."

    async def execute(self, context: OnboardingContext) -> StepOutcome:
        now = datetime.now(UTC).isoformat()
        updated = await context.repository.update_profile(
            context.identity_id,
            {"first_access": False, "onboarding_completed_at": now, "updated_at": now},
        )
        if updated is None:
            raise OnboardingStepError(self.name, "Profile not found")
        # Terminal step: nothing runs after it that could fail
        return StepOutcome(value=updated, created=False)


def build_onboarding_saga() -> Saga[OnboardingContext]:
    return Saga(
        "onboarding",
        [
            UpsertProfileStep(),
            CreateOwnerRoleStep(),
            CreateClinicStep(),
            LinkRoleToClinicStep(),
            CreateProfessionalStep(),
            LinkProfessionalToClinicStep(),
            CreateStarterTemplatesStep(),
            MarkProfileCompleteStep(),
        ],
    )


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------


def validate_payload(payload: OnboardingPayload) -> list[str]:
    """Checks run before any write; an empty list means the payload is usable."""
    errors: list[str] = []
    if not payload.profile.full_name.strip():
        errors.append("Profile name is required")
    if not payload.profile.email.strip():
        errors.append("Profile email is required")
    if not payload.clinic.name.strip():
        errors.append("Clinic name is required")
    if not [s for s in payload.professional.specialties if s.strip()]:
        errors.append("At least one specialty is required")
    return errors


class OnboardingTransaction:
    """Runs the onboarding saga for one identity."""

    def __init__(self, repository: ClinicRepository | None = None) -> None:
        self._repository = repository
        self._saga = build_onboarding_saga()

    @property
    def repository(self) -> ClinicRepository:
        if self._repository is None:
            self._repository = get_clinic_repository()
        return self._repository

    async def run(
        self,
        identity_id: str,
        payload: OnboardingPayload,
        on_progress: OnProgress | None = None,
    ) -> OnboardingResult:
        """Create every onboarding record, rolling back on failure.

        Args:
            identity_id: The authenticated user's id.
            payload: Assembled wizard data.
            on_progress: Receives a ProgressEvent before each step.

        Returns:
            OnboardingResult with the clinic id on success, or the
            originating error on failure.
        """
        errors = validate_payload(payload)
        if errors:
            logger.info(
                "Onboarding payload rejected before any write",
                extra={"user_id": identity_id, "errors": errors},
            )
            return OnboardingResult(success=False, error="; ".join(errors))

        context = OnboardingContext(
            repository=self.repository,
            identity_id=identity_id,
            payload=payload,
        )

        async def progress(step_name: str, percentage: float, message: str) -> None:
            if on_progress is None:
                return
            pending = on_progress(
                ProgressEvent(step_name=step_name, percentage=percentage, message=message)
            )
            if pending is not None:
                await pending

        result = await self._saga.run(context, progress)

        if not result.success:
            logger.warning(
                "Onboarding failed",
                extra={
                    "user_id": identity_id,
                    "failed_step": result.failed_step,
                    "compensation_failures": result.compensation_failures,
                },
            )
            return OnboardingResult(success=False, error=result.error)

        logger.info(
            "Onboarding completed",
            extra={"user_id": identity_id, "clinic_id": context.clinic_id},
        )
        return OnboardingResult(success=True, clinic_id=context.clinic_id)


async def run_onboarding(
    identity_id: str,
    payload: OnboardingPayload,
    on_progress: OnProgress | None = None,
    repository: ClinicRepository | None = None,
) -> OnboardingResult:
    """Run the onboarding saga with the default or a given repository."""
    return await OnboardingTransaction(repository).run(identity_id, payload, on_progress)
