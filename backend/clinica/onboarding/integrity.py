"""Post-onboarding integrity verification.

Re-derives, for one identity, whether every record the onboarding saga
should have created exists and is well formed. Findings are reported,
never raised. The only repair offered is flipping the completion flags
when everything structural is in place.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Literal

from clinica.db.clinic_repository import ClinicRepository, Row, get_clinic_repository
from clinica.onboarding.models import (
    OWNER_ROLE,
    AutoFixResult,
    IntegrityCheckResult,
    IntegrityChecks,
    IntegritySummary,
    OverallStatus,
    UserIntegrityReport,
)

logger = logging.getLogger(__name__)

STATUS_MESSAGES: dict[str, str] = {
    "valid": "Setup complete",
    "warning": "Mostly fine, minor gaps",
    "invalid": "Setup incomplete, contact support or retry onboarding",
}

RECOMMENDATIONS: dict[str, str] = {
    "profile": "Complete the user's profile data",
    "user_role": "Configure the user's roles correctly",
    "clinic": "Complete the clinic data",
    "professional": "Create the user's professional record",
    "clinic_professional_link": "Link the professional to the clinic",
    "templates": "Create starter procedure templates",
    "onboarding_completion": "Mark onboarding as completed",
}

REPORT_FAILED_RECOMMENDATION = "Integrity report could not be generated"

LINK_CAPABILITIES = ("can_create_records", "can_edit_records", "can_view_finance")

# Checks that must pass before auto-fix may touch the completion flags
STRUCTURAL_CHECKS = ("profile", "user_role", "clinic", "professional", "clinic_professional_link")


def describe_status(status: OverallStatus) -> str:
    """User-facing sentence for an overall report status."""
    return STATUS_MESSAGES[status]


@dataclass(frozen=True)
class ClinicLookup:
    """Result of following the owner role to its clinic.

    ``reference_missing`` means there is no owner role or it carries no
    clinic id; ``not_found`` means the id points at nothing.
    """

    status: Literal["found", "not_found", "reference_missing"]
    clinic_id: str | None = None
    clinic: Row | None = None


class IntegrityVerifier:
    """Audits the onboarding data graph of a user."""

    def __init__(self, repository: ClinicRepository | None = None) -> None:
        self._repository = repository

    @property
    def repository(self) -> ClinicRepository:
        if self._repository is None:
            self._repository = get_clinic_repository()
        return self._repository

    async def resolve_owner_clinic(self, user_id: str) -> ClinicLookup:
        role = await self.repository.get_role(user_id, OWNER_ROLE)
        clinic_id = role.get("clinic_id") if role else None
        if not clinic_id:
            return ClinicLookup(status="reference_missing")

        clinic = await self.repository.get_clinic(clinic_id)
        if clinic is None:
            return ClinicLookup(status="not_found", clinic_id=clinic_id)
        return ClinicLookup(status="found", clinic_id=clinic_id, clinic=clinic)

    # -- Checks ---------------------------------------------------------------

    async def _guarded(
        self,
        label: str,
        check: Callable[[IntegrityCheckResult], Awaitable[None]],
    ) -> IntegrityCheckResult:
        """Run a check, turning a failed read into an error finding."""
        result = IntegrityCheckResult()
        try:
            await check(result)
        except Exception as e:
            logger.warning("Integrity check raised", extra={"check": label, "error": str(e)})
            result.add_error(f"Error checking {label}: {e}")
        return result

    async def check_profile(self, user_id: str) -> IntegrityCheckResult:
        async def run(result: IntegrityCheckResult) -> None:
            profile = await self.repository.get_profile(user_id)
            if profile is None:
                result.add_error("Profile not found")
                return
            result.details["profile"] = profile

            if not profile.get("email"):
                result.add_error("Profile has no email")
            if not profile.get("full_name"):
                result.add_error("Profile has no full name")
            if not profile.get("phone"):
                result.warnings.append("Phone not set")
            if profile.get("first_access") is None:
                result.warnings.append("First access status not set")

        return await self._guarded("profile", run)

    async def check_user_role(self, user_id: str) -> IntegrityCheckResult:
        async def run(result: IntegrityCheckResult) -> None:
            roles = await self.repository.list_roles(user_id)
            result.details["roles"] = roles
            if not roles:
                result.add_error("User has no role")
                return

            owner = next((role for role in roles if role.get("role") == OWNER_ROLE), None)
            if owner is None:
                result.warnings.append("User has no owner role")
            else:
                result.details["primary_role"] = owner
                if not owner.get("clinic_id"):
                    result.add_error("Owner role has no clinic_id")

            kinds = [role.get("role") for role in roles]
            if len(kinds) != len(set(kinds)):
                result.warnings.append("User has duplicate roles")

        return await self._guarded("roles", run)

    async def check_clinic(self, user_id: str) -> IntegrityCheckResult:
        async def run(result: IntegrityCheckResult) -> None:
            lookup = await self.resolve_owner_clinic(user_id)
            if lookup.status == "reference_missing":
                result.add_error("User has no associated clinic")
                return
            if lookup.status == "not_found" or lookup.clinic is None:
                result.add_error("Clinic not found")
                return

            clinic = lookup.clinic
            result.details["clinic"] = clinic
            if not clinic.get("name"):
                result.add_error("Clinic has no name")
            if clinic.get("owner_id") != user_id:
                result.add_error("Clinic is owned by another user")
            if not clinic.get("tax_id"):
                result.warnings.append("Clinic tax id not set")
            if not clinic.get("phone"):
                result.warnings.append("Clinic phone not set")
            if not clinic.get("address"):
                result.warnings.append("Clinic address not set")
            if not clinic.get("active"):
                result.warnings.append("Clinic is marked as inactive")

        return await self._guarded("clinic", run)

    async def check_professional(self, user_id: str) -> IntegrityCheckResult:
        async def run(result: IntegrityCheckResult) -> None:
            professional = await self.repository.get_professional(user_id)
            if professional is None:
                result.add_error("Professional record not found")
                return
            result.details["professional"] = professional

            if not professional.get("active"):
                result.warnings.append("Professional record is inactive")
            if not professional.get("specialties"):
                result.warnings.append("Specialties not set")

        return await self._guarded("professional record", run)

    async def check_clinic_professional_link(self, user_id: str) -> IntegrityCheckResult:
        async def run(result: IntegrityCheckResult) -> None:
            lookup = await self.resolve_owner_clinic(user_id)
            if lookup.clinic_id is None:
                result.add_error("Could not determine the user's clinic")
                return

            link = await self.repository.get_clinic_link(lookup.clinic_id, user_id)
            if link is None:
                result.add_error("Professional is not linked to the clinic")
                return
            result.details["link"] = link

            if not link.get("active"):
                result.warnings.append("Clinic link is inactive")
            missing = [flag for flag in LINK_CAPABILITIES if not link.get(flag)]
            if missing:
                result.warnings.append(f"Permissions not set: {', '.join(missing)}")

        return await self._guarded("clinic link", run)

    async def check_templates(self, user_id: str) -> IntegrityCheckResult:
        async def run(result: IntegrityCheckResult) -> None:
            templates = await self.repository.list_templates(user_id)
            result.details["templates"] = templates
            if not templates:
                result.warnings.append("No procedure templates created")
                return

            incomplete = [
                t
                for t in templates
                if not t.get("name")
                or not t.get("procedure_type")
                or not t.get("default_duration_minutes")
                or t.get("base_price") is None
            ]
            if incomplete:
                result.warnings.append(f"{len(incomplete)} template(s) with incomplete data")

            inactive = [t for t in templates if not t.get("active")]
            if inactive:
                result.warnings.append(f"{len(inactive)} inactive template(s)")

        return await self._guarded("templates", run)

    async def check_onboarding_completion(self, user_id: str) -> IntegrityCheckResult:
        async def run(result: IntegrityCheckResult) -> None:
            profile = await self.repository.get_profile(user_id)
            if profile is None:
                result.add_error("Profile not found, cannot check onboarding status")
                return
            result.details["onboarding_status"] = {
                "first_access": profile.get("first_access"),
                "onboarding_completed_at": profile.get("onboarding_completed_at"),
            }

            if profile.get("first_access") is True:
                result.warnings.append("Onboarding not yet marked as completed")
            if not profile.get("onboarding_completed_at"):
                result.warnings.append("Onboarding completion date not recorded")

        return await self._guarded("onboarding status", run)

    # -- Reports --------------------------------------------------------------

    async def verify_user(self, user_id: str) -> UserIntegrityReport:
        """Build the full integrity report for one user.

        Checks run sequentially; each records its own read failures as
        findings.

        Args:
            user_id: Identity to verify.

        Returns:
            UserIntegrityReport with overall status, summary and
            recommendations.

        Raises:
            DatabaseError: If the profile email lookup itself fails.
        """
        profile = await self.repository.get_profile(user_id)
        email = (profile or {}).get("email") or "unknown"

        checks = IntegrityChecks(
            profile=await self.check_profile(user_id),
            user_role=await self.check_user_role(user_id),
            clinic=await self.check_clinic(user_id),
            professional=await self.check_professional(user_id),
            clinic_professional_link=await self.check_clinic_professional_link(user_id),
            templates=await self.check_templates(user_id),
            onboarding_completion=await self.check_onboarding_completion(user_id),
        )

        summary = summarize(checks)
        report = UserIntegrityReport(
            user_id=user_id,
            email=email,
            overall_status=overall_status(checks),
            checks=checks,
            summary=summary,
            recommendations=recommendations_for(checks),
            generated_at=datetime.now(UTC),
        )

        logger.info(
            "Integrity report generated",
            extra={
                "user_id": user_id,
                "overall_status": report.overall_status,
                "failed_checks": summary.failed_checks,
                "warning_checks": summary.warning_checks,
            },
        )
        return report

    async def verify_batch(self, user_ids: list[str]) -> list[UserIntegrityReport]:
        """Verify several users in order; a failing report never aborts the batch."""
        reports: list[UserIntegrityReport] = []
        for user_id in user_ids:
            try:
                reports.append(await self.verify_user(user_id))
            except Exception:
                logger.exception("Integrity report failed", extra={"user_id": user_id})
                reports.append(failed_report(user_id))
        return reports

    async def auto_fix(self, user_id: str) -> AutoFixResult:
        """Mark onboarding complete when only the completion flags are off.

        Acts only when the overall status is ``warning`` and every
        structural check passes. Missing records are never created here.
        """
        result = AutoFixResult()
        try:
            report = await self.verify_user(user_id)
            structural_ok = all(getattr(report.checks, name).is_valid for name in STRUCTURAL_CHECKS)
            if report.overall_status != "warning" or not structural_ok:
                logger.info(
                    "Auto-fix not applicable",
                    extra={"user_id": user_id, "overall_status": report.overall_status},
                )
                return result

            now = datetime.now(UTC).isoformat()
            updated = await self.repository.update_profile(
                user_id,
                {"first_access": False, "onboarding_completed_at": now, "updated_at": now},
            )
            if updated is None:
                result.failed.append("Failed to mark onboarding as completed")
            else:
                result.fixed.append("Onboarding marked as completed")
        except Exception as e:
            logger.warning("Auto-fix failed", extra={"user_id": user_id, "error": str(e)})
            result.failed.append(f"Error during auto-fix: {e}")

        logger.info(
            "Auto-fix finished",
            extra={"user_id": user_id, "fixed": result.fixed, "failed": result.failed},
        )
        return result


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------


def _all_checks(checks: IntegrityChecks) -> dict[str, IntegrityCheckResult]:
    return {name: getattr(checks, name) for name in IntegrityChecks.model_fields}


def _failed(check: IntegrityCheckResult) -> bool:
    return not check.is_valid or bool(check.errors)


def overall_status(checks: IntegrityChecks) -> OverallStatus:
    results = _all_checks(checks).values()
    if any(_failed(check) for check in results):
        return "invalid"
    if any(check.warnings for check in results):
        return "warning"
    return "valid"


def summarize(checks: IntegrityChecks) -> IntegritySummary:
    results = list(_all_checks(checks).values())
    failed = sum(1 for check in results if _failed(check))
    return IntegritySummary(
        total_checks=len(results),
        passed_checks=len(results) - failed,
        failed_checks=failed,
        warning_checks=sum(1 for check in results if check.warnings),
    )


def recommendations_for(checks: IntegrityChecks) -> list[str]:
    """Fixed recommendation per failing check, in check order."""
    recommendations: list[str] = []
    for name, check in _all_checks(checks).items():
        if name in STRUCTURAL_CHECKS:
            flagged = _failed(check)
        else:
            flagged = _failed(check) or bool(check.warnings)
        if flagged:
            recommendations.append(RECOMMENDATIONS[name])
    return recommendations


def failed_report(user_id: str) -> UserIntegrityReport:
    """All-error report standing in for one whose generation threw."""

    def errored() -> IntegrityCheckResult:
        return IntegrityCheckResult(is_valid=False, errors=["Integrity report could not be generated"])

    checks = IntegrityChecks(
        profile=errored(),
        user_role=errored(),
        clinic=errored(),
        professional=errored(),
        clinic_professional_link=errored(),
        templates=errored(),
        onboarding_completion=errored(),
    )
    return UserIntegrityReport(
        user_id=user_id,
        email="error",
        overall_status="invalid",
        checks=checks,
        summary=summarize(checks),
        recommendations=[REPORT_FAILED_RECOMMENDATION],
        generated_at=datetime.now(UTC),
    )
