"""Validation rules for each onboarding wizard step.

Every validator is a pure function of the accumulated wizard data. They
never touch the network; the state machine re-runs them on every change.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, time

from clinica.onboarding.models import STEP_ORDER, OnboardingStep, StepValidation, WizardData

Validator = Callable[[WizardData], StepValidation]


@dataclass(frozen=True)
class StepConfig:
    """Static description of a wizard step."""

    step: OnboardingStep
    title: str
    description: str
    validate: Validator
    can_navigate_from: bool = True
    can_navigate_to: bool = True


def _blank(value: str | None) -> bool:
    return not (value or "").strip()


def _result(errors: dict[str, str], required_fields: list[str]) -> StepValidation:
    return StepValidation(
        is_valid=not errors,
        errors=errors,
        required_fields=required_fields,
    )


def _parse_time(value: str) -> time | None:
    try:
        return datetime.strptime(value.strip(), "%H:%M").time()
    except ValueError:
        return None


def validate_personal_data(data: WizardData) -> StepValidation:
    errors: dict[str, str] = {}
    required_fields = ["full_name", "phone", "specialty"]

    if _blank(data.full_name):
        errors["full_name"] = "Full name is required"
    if _blank(data.phone):
        errors["phone"] = "Phone is required"
    if _blank(data.specialty):
        errors["specialty"] = "Specialty is required"

    return _result(errors, required_fields)


def validate_clinic_setup(data: WizardData) -> StepValidation:
    errors: dict[str, str] = {}
    required_fields = ["clinic_name", "address_city", "address_state"]

    if _blank(data.clinic_name):
        errors["clinic_name"] = "Clinic name is required"
    if _blank(data.address_city):
        errors["address_city"] = "City is required"
    if _blank(data.address_state):
        errors["address_state"] = "State is required"

    if data.has_multiple_clinics:
        required_fields.append("network_name")
        if _blank(data.network_name):
            errors["network_name"] = "Network name is required when running multiple clinics"

    return _result(errors, required_fields)


def validate_professional_setup(data: WizardData) -> StepValidation:
    errors: dict[str, str] = {}
    required_fields: list[str] = []

    # The owner's own specialty was collected in personal_data
    if not data.is_self_professional:
        required_fields.extend(["professional_name", "professional_specialty"])
        if _blank(data.professional_name):
            errors["professional_name"] = "Professional name is required"
        if _blank(data.professional_specialty):
            errors["professional_specialty"] = "Professional specialty is required"

    return _result(errors, required_fields)


def validate_service_setup(data: WizardData) -> StepValidation:
    errors: dict[str, str] = {}
    required_fields = ["service_name", "service_duration", "service_price"]

    if _blank(data.service_name):
        errors["service_name"] = "Service name is required"
    if not data.service_duration or data.service_duration <= 0:
        errors["service_duration"] = "Duration must be greater than zero"
    if _blank(data.service_price):
        errors["service_price"] = "Service price is required"

    return _result(errors, required_fields)


def validate_configuration(data: WizardData) -> StepValidation:
    """Opening hours must both be set and describe a non-empty range."""
    errors: dict[str, str] = {}
    required_fields = ["opening_time", "closing_time"]

    opening = closing = None
    if _blank(data.opening_time):
        errors["opening_time"] = "Opening time is required"
    else:
        opening = _parse_time(data.opening_time)
        if opening is None:
            errors["opening_time"] = "Opening time must use the HH:MM format"

    if _blank(data.closing_time):
        errors["closing_time"] = "Closing time is required"
    else:
        closing = _parse_time(data.closing_time)
        if closing is None:
            errors["closing_time"] = "Closing time must use the HH:MM format"

    if opening is not None and closing is not None and opening >= closing:
        errors["closing_time"] = "Closing time must be later than opening time"

    return _result(errors, required_fields)


def validate_completion(_data: WizardData) -> StepValidation:
    return _result({}, [])


ONBOARDING_STEPS: dict[OnboardingStep, StepConfig] = {
    OnboardingStep.PERSONAL_DATA: StepConfig(
        step=OnboardingStep.PERSONAL_DATA,
        title="Personal data",
        description="Basic information about you.",
        validate=validate_personal_data,
    ),
    OnboardingStep.CLINIC_SETUP: StepConfig(
        step=OnboardingStep.CLINIC_SETUP,
        title="Your clinic",
        description="Where and how your clinic operates.",
        validate=validate_clinic_setup,
    ),
    OnboardingStep.PROFESSIONAL_SETUP: StepConfig(
        step=OnboardingStep.PROFESSIONAL_SETUP,
        title="First professional",
        description="The first professional working at the clinic.",
        validate=validate_professional_setup,
    ),
    OnboardingStep.SERVICE_SETUP: StepConfig(
        step=OnboardingStep.SERVICE_SETUP,
        title="First service",
        description="The first service the clinic offers.",
        validate=validate_service_setup,
    ),
    OnboardingStep.CONFIGURATION: StepConfig(
        step=OnboardingStep.CONFIGURATION,
        title="Settings",
        description="Opening hours of the clinic.",
        validate=validate_configuration,
    ),
    OnboardingStep.COMPLETION: StepConfig(
        step=OnboardingStep.COMPLETION,
        title="Done",
        description="Finishing your clinic setup.",
        validate=validate_completion,
        can_navigate_from=False,
        can_navigate_to=False,
    ),
}


def get_step_config(step: OnboardingStep) -> StepConfig:
    return ONBOARDING_STEPS[step]


def validate_step(step: OnboardingStep, data: WizardData) -> StepValidation:
    """Run the validator of a single step."""
    return ONBOARDING_STEPS[step].validate(data)


def validate_all_steps(data: WizardData) -> dict[OnboardingStep, StepValidation]:
    """Validate every step that collects data (the terminal step is skipped)."""
    return {
        step: validate_step(step, data)
        for step in STEP_ORDER
        if step != OnboardingStep.COMPLETION
    }
