"""Mapping from accumulated wizard data to the onboarding saga input."""

from typing import Any

from clinica.core.exceptions import ValidationError
from clinica.onboarding.models import (
    ClinicPayload,
    OnboardingPayload,
    ProfessionalPayload,
    ProfilePayload,
    ServicePayload,
    WizardData,
)
from clinica.onboarding.validation import validate_all_steps

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday")
WEEKEND = ("saturday", "sunday")


def _or_none(value: str) -> str | None:
    value = value.strip()
    return value or None


def build_opening_hours(opening_time: str, closing_time: str) -> dict[str, Any]:
    """Weekly schedule with weekdays open and the weekend closed."""
    hours: dict[str, Any] = {}
    for day in WEEKDAYS:
        hours[day] = {"start": opening_time, "end": closing_time, "active": True}
    for day in WEEKEND:
        hours[day] = {"start": opening_time, "end": closing_time, "active": False}
    return hours


def build_address(data: WizardData) -> dict[str, str | None]:
    return {
        "street": _or_none(data.address_street),
        "number": _or_none(data.address_number),
        "complement": _or_none(data.address_complement),
        "district": _or_none(data.address_district),
        "city": _or_none(data.address_city),
        "state": _or_none(data.address_state),
        "zip": _or_none(data.address_zip),
    }


def parse_price(value: str) -> float:
    """Parse a price typed as ``150``, ``150.00`` or ``150,00``.

    Raises:
        ValidationError: If the value is not a non-negative number.
    """
    cleaned = value.strip().replace(" ", "")
    if "," in cleaned:
        cleaned = cleaned.replace(".", "").replace(",", ".")
    try:
        price = float(cleaned)
    except ValueError as e:
        raise ValidationError("Service price must be a number", field="service_price") from e
    if price < 0:
        raise ValidationError("Service price cannot be negative", field="service_price")
    return price


def build_onboarding_payload(data: WizardData, email: str) -> OnboardingPayload:
    """Partition wizard data into the per-resource payloads the saga writes.

    Args:
        data: Accumulated wizard data.
        email: Account email of the identity being onboarded.

    Returns:
        The assembled saga input. ``service`` is omitted when no service
        name was entered.
    """
    if data.is_self_professional:
        specialty = data.specialty.strip()
    else:
        specialty = data.professional_specialty.strip()

    service = None
    if data.service_name.strip():
        service = ServicePayload(
            name=data.service_name.strip(),
            duration_minutes=data.service_duration,
            price=parse_price(data.service_price) if data.service_price.strip() else 0.0,
            description=_or_none(data.service_description),
        )

    return OnboardingPayload(
        profile=ProfilePayload(
            full_name=data.full_name.strip(),
            email=email.strip(),
            phone=_or_none(data.phone),
        ),
        clinic=ClinicPayload(
            name=data.clinic_name.strip(),
            tax_id=_or_none(data.tax_id),
            phone=_or_none(data.clinic_phone),
            email=_or_none(data.clinic_email),
            address=build_address(data),
            opening_hours=build_opening_hours(data.opening_time, data.closing_time),
        ),
        professional=ProfessionalPayload(specialties=[specialty] if specialty else []),
        service=service,
    )


def assemble_payload(data: WizardData, email: str) -> OnboardingPayload:
    """Validate every data step, then build the saga input.

    Raises:
        ValidationError: If any step is invalid (``field_errors`` keyed by
            step name) or the service price cannot be parsed.
    """
    invalid = {
        step.value: result.errors
        for step, result in validate_all_steps(data).items()
        if not result.is_valid
    }
    if invalid:
        raise ValidationError("Wizard data is incomplete", field_errors=invalid)
    return build_onboarding_payload(data, email)
