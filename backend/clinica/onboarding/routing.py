"""Decides whether a signed-in user has to go through the onboarding wizard."""

import logging
from typing import Any

from clinica.db.clinic_repository import ClinicRepository, get_clinic_repository
from clinica.onboarding.models import OnboardingStatus

logger = logging.getLogger(__name__)


def _has_basic_info(profile: dict[str, Any]) -> bool:
    return bool(profile.get("full_name") and profile.get("email"))


def check_onboarding_status(
    profile: dict[str, Any] | None,
    roles: list[dict[str, Any]],
) -> OnboardingStatus:
    """Classify a user from their profile and role rows.

    Args:
        profile: Profile row, or None when it does not exist.
        roles: Role rows held by the user.

    Returns:
        OnboardingStatus with the reason behind the decision.
    """
    if profile is None and not roles:
        return OnboardingStatus(
            needs_onboarding=True, reason="No profile and no roles found", can_skip=False
        )

    if profile is None:
        return OnboardingStatus(needs_onboarding=True, reason="No profile found", can_skip=False)

    if profile.get("first_access"):
        return OnboardingStatus(
            needs_onboarding=True, reason="First access flag is set", can_skip=False
        )

    if not roles:
        if _has_basic_info(profile):
            return OnboardingStatus(
                needs_onboarding=True,
                reason="Missing roles but profile has basic info",
                can_skip=True,
            )
        return OnboardingStatus(
            needs_onboarding=True, reason="Incomplete profile and no roles", can_skip=False
        )

    return OnboardingStatus(
        needs_onboarding=False, reason="Complete profile and roles exist", can_skip=True
    )


def can_access_basic_features(profile: dict[str, Any] | None) -> bool:
    """Whether the dashboard basics are usable before onboarding finishes."""
    if profile is None or profile.get("first_access"):
        return False
    return _has_basic_info(profile) and bool(profile.get("active"))


class OnboardingStatusService:
    """Loads the rows ``check_onboarding_status`` needs."""

    def __init__(self, repository: ClinicRepository | None = None) -> None:
        self._repository = repository

    @property
    def repository(self) -> ClinicRepository:
        if self._repository is None:
            self._repository = get_clinic_repository()
        return self._repository

    async def get_status(self, user_id: str) -> OnboardingStatus:
        profile = await self.repository.get_profile(user_id)
        roles = await self.repository.list_roles(user_id)
        status = check_onboarding_status(profile, roles)
        logger.debug(
            "Onboarding status resolved",
            extra={"user_id": user_id, "needs_onboarding": status.needs_onboarding},
        )
        return status
