"""Pydantic models for the onboarding wizard, saga and integrity reports."""

from datetime import datetime
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, EmailStr, Field


class OnboardingStep(str, Enum):
    """Steps in the onboarding wizard."""

    PERSONAL_DATA = "personal_data"
    CLINIC_SETUP = "clinic_setup"
    PROFESSIONAL_SETUP = "professional_setup"
    SERVICE_SETUP = "service_setup"
    CONFIGURATION = "configuration"
    COMPLETION = "completion"


# Ordered step sequence, drives navigation logic
STEP_ORDER: list[OnboardingStep] = [
    OnboardingStep.PERSONAL_DATA,
    OnboardingStep.CLINIC_SETUP,
    OnboardingStep.PROFESSIONAL_SETUP,
    OnboardingStep.SERVICE_SETUP,
    OnboardingStep.CONFIGURATION,
    OnboardingStep.COMPLETION,
]

# Role kind granted to the person who onboards a clinic
OWNER_ROLE = "owner"
ADMIN_ROLE = "super_admin"


# ---------------------------------------------------------------------------
# Wizard state
# ---------------------------------------------------------------------------


class WizardData(BaseModel):
    """Every field collected across the wizard steps."""

    # Personal data
    full_name: str = ""
    phone: str = ""
    specialty: str = ""

    # Clinic network (only when the user runs several clinics)
    has_multiple_clinics: bool = False
    network_name: str = ""
    network_tax_id: str = ""

    # Clinic
    clinic_name: str = ""
    tax_id: str = ""
    address_street: str = ""
    address_number: str = ""
    address_complement: str = ""
    address_district: str = ""
    address_city: str = ""
    address_state: str = ""
    address_zip: str = ""
    clinic_phone: str = ""
    clinic_email: str = ""

    # First professional
    is_self_professional: bool = False
    professional_name: str = ""
    professional_email: str = ""
    professional_specialty: str = ""

    # First service
    service_name: str = ""
    service_duration: int = 60
    service_price: str = ""
    service_description: str = ""

    # Opening hours
    opening_time: str = "08:00"
    closing_time: str = "18:00"


class StepValidation(BaseModel):
    """Result of validating one wizard step."""

    is_valid: bool
    errors: dict[str, str] = Field(default_factory=dict)
    required_fields: list[str] = Field(default_factory=list)


class OnboardingState(BaseModel):
    """Complete wizard state held by the state machine."""

    model_config = {"frozen": True}

    current_step: OnboardingStep = OnboardingStep.PERSONAL_DATA
    data: WizardData = Field(default_factory=WizardData)
    is_loading: bool = False
    error: str | None = None
    can_proceed: bool = False
    validation_errors: dict[str, str] = Field(default_factory=dict)
    is_transitioning: bool = False
    persisted_at: datetime | None = None


class Progress(BaseModel):
    """Wizard progress over the non-terminal steps."""

    current: int
    total: int
    percentage: float


class Navigation(BaseModel):
    """What the navigation guard currently allows."""

    can_go_next: bool
    can_go_previous: bool
    next_step: OnboardingStep | None = None
    previous_step: OnboardingStep | None = None


# ---------------------------------------------------------------------------
# Saga input / output
# ---------------------------------------------------------------------------


class ProfilePayload(BaseModel):
    """Profile fields written by the saga."""

    full_name: str = Field("", alias="name")
    email: str = ""
    phone: str | None = None

    model_config = {"populate_by_name": True}


class ClinicPayload(BaseModel):
    """Clinic fields written by the saga."""

    name: str = ""
    tax_id: str | None = None
    phone: str | None = None
    email: str | None = None
    address: dict[str, Any] | None = None
    opening_hours: dict[str, Any] | None = None


class ProfessionalPayload(BaseModel):
    """Professional record fields written by the saga."""

    specialties: list[str] = Field(default_factory=list)
    registration_number: str | None = None


class ServicePayload(BaseModel):
    """The first service the clinic offers, stored as a procedure template."""

    name: str
    duration_minutes: int = 60
    price: float = 0.0
    description: str | None = None


class OnboardingPayload(BaseModel):
    """Fully assembled wizard data, partitioned per resource."""

    profile: ProfilePayload = Field(default_factory=ProfilePayload)
    clinic: ClinicPayload = Field(default_factory=ClinicPayload)
    professional: ProfessionalPayload = Field(default_factory=ProfessionalPayload)
    service: ServicePayload | None = None


class ProgressEvent(BaseModel):
    """Emitted to the progress callback before each saga step runs."""

    step_name: str
    percentage: float
    message: str


class OnboardingResult(BaseModel):
    """Overall outcome of an onboarding saga run."""

    success: bool
    clinic_id: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Integrity reports
# ---------------------------------------------------------------------------

OverallStatus = Literal["valid", "warning", "invalid"]


class IntegrityCheckResult(BaseModel):
    """Findings of one integrity check."""

    is_valid: bool = True
    errors: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)
    details: dict[str, Any] = Field(default_factory=dict)

    def add_error(self, message: str) -> None:
        self.is_valid = False
        self.errors.append(message)


class IntegrityChecks(BaseModel):
    """The seven independent checks of a user report."""

    profile: IntegrityCheckResult
    user_role: IntegrityCheckResult
    clinic: IntegrityCheckResult
    professional: IntegrityCheckResult
    clinic_professional_link: IntegrityCheckResult
    templates: IntegrityCheckResult
    onboarding_completion: IntegrityCheckResult


class IntegritySummary(BaseModel):
    """Check counts for a report."""

    total_checks: int
    passed_checks: int
    failed_checks: int
    warning_checks: int


class UserIntegrityReport(BaseModel):
    """Integrity report for one identity."""

    user_id: str
    email: str
    overall_status: OverallStatus
    checks: IntegrityChecks
    summary: IntegritySummary
    recommendations: list[str] = Field(default_factory=list)
    generated_at: datetime


class AutoFixResult(BaseModel):
    """Repairs attempted by the verifier's auto-fix."""

    fixed: list[str] = Field(default_factory=list)
    failed: list[str] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------


class OnboardingStatus(BaseModel):
    """Whether a signed-in user still has to go through the wizard."""

    needs_onboarding: bool
    reason: str
    can_skip: bool


# ---------------------------------------------------------------------------
# Request bodies
# ---------------------------------------------------------------------------


class BatchVerificationRequest(BaseModel):
    """Request body for batch integrity verification."""

    user_ids: list[str] = Field(..., min_length=1)


class CompleteOnboardingRequest(BaseModel):
    """Request body for submitting the wizard.

    Either an assembled ``payload`` or the raw ``wizard`` data may be sent;
    raw data is mapped with the caller's account email.
    """

    payload: OnboardingPayload | None = None
    wizard: WizardData | None = None
    email: EmailStr | None = None
