"""Onboarding wizard state machine.

State transitions are expressed as a pure reducer, ``reduce(state, action)``,
so they can be exercised without any UI attached. ``OnboardingStateMachine``
wraps the reducer with the navigation guard, an explicit listener list and
snapshot (de)serialization for page-reload resilience. Nothing in this
module performs I/O.
"""

import json
import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from clinica.core.config import settings
from clinica.core.exceptions import SnapshotError
from clinica.onboarding.models import (
    STEP_ORDER,
    Navigation,
    OnboardingState,
    OnboardingStep,
    Progress,
    StepValidation,
    WizardData,
)
from clinica.onboarding.validation import (
    StepConfig,
    get_step_config,
    validate_all_steps,
    validate_step,
)

logger = logging.getLogger(__name__)

Listener = Callable[[OnboardingState], None]


# ---------------------------------------------------------------------------
# Actions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class UpdateData:
    """Merge fields into the wizard data."""

    changes: Mapping[str, Any]
    modified_at: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass(frozen=True)
class BeginTransition:
    """Lock navigation while a step change is being checked."""


@dataclass(frozen=True)
class CompleteTransition:
    """Move to the target step and release the navigation lock."""

    target: OnboardingStep


@dataclass(frozen=True)
class RejectTransition:
    """Release the navigation lock without moving."""

    error: str


@dataclass(frozen=True)
class SetLoading:
    is_loading: bool


@dataclass(frozen=True)
class SetError:
    error: str | None


@dataclass(frozen=True)
class MarkComplete:
    """Enter the terminal step after a successful submission."""


@dataclass(frozen=True)
class Reset:
    """Discard everything and start over."""


Action = (
    UpdateData
    | BeginTransition
    | CompleteTransition
    | RejectTransition
    | SetLoading
    | SetError
    | MarkComplete
    | Reset
)


# ---------------------------------------------------------------------------
# Reducer
# ---------------------------------------------------------------------------


def with_validation(state: OnboardingState) -> OnboardingState:
    """Recompute ``can_proceed`` and ``validation_errors`` for the current step."""
    validation = validate_step(state.current_step, state.data)
    return state.model_copy(
        update={
            "can_proceed": validation.is_valid,
            "validation_errors": validation.errors,
        }
    )


def merge_data(data: WizardData, changes: Mapping[str, Any]) -> tuple[WizardData, dict[str, str]]:
    """Merge form input into wizard data, coercing it the way a snapshot restore does.

    Unknown keys are ignored. A value that cannot be coerced to its field's
    type is left out of the merge, keeping the previous value, and comes
    back in the second element as ``{field: message}``.
    """
    known = {k: v for k, v in changes.items() if k in WizardData.model_fields}
    current = data.model_dump()
    try:
        return WizardData.model_validate({**current, **known}), {}
    except PydanticValidationError as e:
        rejected = {str(err["loc"][0]): err["msg"] for err in e.errors() if err["loc"]}

    accepted = {k: v for k, v in known.items() if k not in rejected}
    return WizardData.model_validate({**current, **accepted}), rejected


def reduce(state: OnboardingState, action: Action) -> OnboardingState:
    """Apply an action to a state and return the next state.

    Args:
        state: Current state (never mutated).
        action: The action to apply.

    Returns:
        The next state.
    """
    if isinstance(action, UpdateData):
        data, rejected = merge_data(state.data, action.changes)
        next_state = with_validation(
            state.model_copy(update={"data": data, "persisted_at": action.modified_at})
        )
        if not rejected:
            return next_state
        return next_state.model_copy(
            update={
                "can_proceed": False,
                "validation_errors": {**next_state.validation_errors, **rejected},
            }
        )

    if isinstance(action, BeginTransition):
        return state.model_copy(update={"is_transitioning": True})

    if isinstance(action, CompleteTransition):
        return with_validation(
            state.model_copy(
                update={
                    "current_step": action.target,
                    "is_transitioning": False,
                    "error": None,
                }
            )
        )

    if isinstance(action, RejectTransition):
        return state.model_copy(update={"is_transitioning": False, "error": action.error})

    if isinstance(action, SetLoading):
        return state.model_copy(update={"is_loading": action.is_loading})

    if isinstance(action, SetError):
        return state.model_copy(update={"error": action.error})

    if isinstance(action, MarkComplete):
        return with_validation(
            state.model_copy(
                update={
                    "current_step": OnboardingStep.COMPLETION,
                    "is_transitioning": False,
                    "error": None,
                }
            )
        )

    if isinstance(action, Reset):
        return with_validation(OnboardingState())

    raise TypeError(f"Unknown onboarding action: {action!r}")


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


class OnboardingStateMachine:
    """Holds wizard state and guards navigation between steps."""

    def __init__(self, initial_state: OnboardingState | None = None) -> None:
        """Initialize the machine.

        Args:
            initial_state: State to start from. Validation flags are always
                recomputed, never trusted.
        """
        self._state = with_validation(initial_state or OnboardingState())
        self._listeners: list[Listener] = []

    # -- Queries --------------------------------------------------------------

    @property
    def state(self) -> OnboardingState:
        return self._state

    @property
    def current_step(self) -> OnboardingStep:
        return self._state.current_step

    @property
    def data(self) -> WizardData:
        return self._state.data

    def get_step_config(self, step: OnboardingStep | None = None) -> StepConfig:
        return get_step_config(step or self._state.current_step)

    def get_navigation(self) -> Navigation:
        index = STEP_ORDER.index(self._state.current_step)
        leaving_allowed = self.get_step_config().can_navigate_from
        idle = not self._state.is_transitioning

        can_go_previous = index > 0 and idle and leaving_allowed
        can_go_next = (
            self._state.can_proceed
            and index < len(STEP_ORDER) - 1
            and idle
            and leaving_allowed
            and get_step_config(STEP_ORDER[index + 1]).can_navigate_to
        )
        return Navigation(
            can_go_next=can_go_next,
            can_go_previous=can_go_previous,
            next_step=STEP_ORDER[index + 1] if can_go_next else None,
            previous_step=STEP_ORDER[index - 1] if can_go_previous else None,
        )

    def can_navigate_to_step(self, target: OnboardingStep) -> bool:
        """Whether ``target`` is reachable from the current step.

        Reachable means any earlier step (or the current one), or exactly
        the next step when the current step validates.
        """
        current = self._state.current_step
        if not get_step_config(target).can_navigate_to:
            return False
        if target != current and not get_step_config(current).can_navigate_from:
            return False

        target_index = STEP_ORDER.index(target)
        current_index = STEP_ORDER.index(current)
        return target_index <= current_index or (
            target_index == current_index + 1 and self._state.can_proceed
        )

    def validate_step(self, step: OnboardingStep) -> StepValidation:
        return validate_step(step, self._state.data)

    def validate_all_steps(self) -> dict[OnboardingStep, StepValidation]:
        return validate_all_steps(self._state.data)

    def get_progress(self) -> Progress:
        """Progress over the steps preceding the terminal step."""
        index = STEP_ORDER.index(self._state.current_step)
        total = len(STEP_ORDER) - 1
        current = min(index + 1, total)
        return Progress(current=current, total=total, percentage=current / total * 100)

    # -- Mutations ------------------------------------------------------------

    def update_data(self, changes: Mapping[str, Any]) -> None:
        """Merge fields into the wizard data and re-validate the current step.

        Keys that are not wizard fields are ignored.
        """
        self._dispatch(UpdateData(changes=dict(changes)))

    def set_loading(self, is_loading: bool) -> None:
        self._dispatch(SetLoading(is_loading=is_loading))

    def set_error(self, error: str | None) -> None:
        self._dispatch(SetError(error=error))

    def go_to_step(self, target: OnboardingStep | str) -> bool:
        """Navigate to ``target`` if the navigation guard allows it.

        The guard fails closed: an unknown step, an unreachable step or a
        call made while another transition is in flight is denied.

        Returns:
            True if the current step changed to ``target``.
        """
        if self._state.is_transitioning:
            logger.debug("Navigation ignored: transition already in progress")
            return False

        self._dispatch(BeginTransition())

        try:
            step = OnboardingStep(target)
        except ValueError:
            self._dispatch(RejectTransition(error=f"Unknown onboarding step '{target}'"))
            return False

        if not self.can_navigate_to_step(step):
            self._dispatch(
                RejectTransition(
                    error=f"Cannot navigate from '{self.current_step.value}' to '{step.value}'"
                )
            )
            return False

        self._dispatch(CompleteTransition(target=step))
        return True

    def go_next(self) -> bool:
        navigation = self.get_navigation()
        if not navigation.can_go_next or navigation.next_step is None:
            return False
        return self.go_to_step(navigation.next_step)

    def go_previous(self) -> bool:
        navigation = self.get_navigation()
        if not navigation.can_go_previous or navigation.previous_step is None:
            return False
        return self.go_to_step(navigation.previous_step)

    def mark_complete(self) -> bool:
        """Enter the terminal step once every data step validates.

        Called after the onboarding saga succeeded; the terminal step is
        otherwise unreachable through navigation.
        """
        invalid = [
            step.value for step, result in self.validate_all_steps().items() if not result.is_valid
        ]
        if invalid:
            self._dispatch(SetError(error=f"Steps still invalid: {', '.join(invalid)}"))
            return False
        self._dispatch(MarkComplete())
        return True

    def reset(self) -> None:
        self._dispatch(Reset())

    # -- Subscriptions --------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register a listener called with the new state after every change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _dispatch(self, action: Action) -> None:
        self._state = reduce(self._state, action)
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("Onboarding state listener failed")

    # -- Snapshots ------------------------------------------------------------

    def to_snapshot(self) -> dict[str, Any]:
        """Flat snapshot: every wizard field plus ``current_step`` and ``persisted_at``."""
        return {
            **self._state.data.model_dump(),
            "current_step": self._state.current_step.value,
            "persisted_at": datetime.now(UTC).isoformat(),
        }

    def serialize(self) -> str:
        return json.dumps(self.to_snapshot())

    @classmethod
    def deserialize(
        cls,
        snapshot: str | Mapping[str, Any],
        max_age: timedelta | None = None,
        now: datetime | None = None,
    ) -> "OnboardingStateMachine":
        """Restore a machine from a snapshot.

        Validation is re-run on the restored data; stored flags are ignored.

        Args:
            snapshot: JSON string or mapping produced by :meth:`serialize`.
            max_age: Oldest acceptable snapshot; defaults to
                ``ONBOARDING_SNAPSHOT_MAX_AGE_HOURS``.
            now: Reference time for the age check.

        Raises:
            SnapshotError: If the snapshot is malformed or expired.
        """
        if isinstance(snapshot, str):
            try:
                snapshot = json.loads(snapshot)
            except json.JSONDecodeError as e:
                raise SnapshotError("Onboarding snapshot is not valid JSON") from e
        if not isinstance(snapshot, Mapping):
            raise SnapshotError("Onboarding snapshot must be an object")

        fields = dict(snapshot)
        raw_step = fields.pop("current_step", OnboardingStep.PERSONAL_DATA.value)
        raw_persisted_at = fields.pop("persisted_at", None)

        try:
            step = OnboardingStep(raw_step)
        except ValueError as e:
            raise SnapshotError(f"Unknown onboarding step '{raw_step}'") from e

        persisted_at = None
        if raw_persisted_at is not None:
            try:
                persisted_at = datetime.fromisoformat(str(raw_persisted_at))
            except ValueError as e:
                raise SnapshotError("Invalid persisted_at timestamp") from e
            if persisted_at.tzinfo is None:
                persisted_at = persisted_at.replace(tzinfo=UTC)

            limit = max_age
            if limit is None:
                limit = timedelta(hours=settings.ONBOARDING_SNAPSHOT_MAX_AGE_HOURS)
            if (now or datetime.now(UTC)) - persisted_at > limit:
                raise SnapshotError("Onboarding snapshot expired")

        try:
            data = WizardData.model_validate(fields)
        except PydanticValidationError as e:
            raise SnapshotError(f"Invalid onboarding data: {e.error_count()} field error(s)") from e

        return cls(OnboardingState(current_step=step, data=data, persisted_at=persisted_at))
