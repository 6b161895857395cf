"""Tests for the onboarding wizard state machine."""

import json
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from clinica.core.exceptions import SnapshotError
from clinica.onboarding.models import STEP_ORDER, OnboardingState, OnboardingStep
from clinica.onboarding.state_machine import (
    BeginTransition,
    CompleteTransition,
    OnboardingStateMachine,
    RejectTransition,
    Reset,
    UpdateData,
    reduce,
)

PERSONAL = {"full_name": "Ana Souza", "phone": "+55 11 99999-0000", "specialty": "facial"}
CLINIC = {"clinic_name": "Clínica Ana", "address_city": "São Paulo", "address_state": "SP"}
SERVICE = {"service_name": "Skin cleansing", "service_duration": 60, "service_price": "150"}
ALL_DATA: dict[str, Any] = {**PERSONAL, **CLINIC, **SERVICE, "is_self_professional": True}


def _machine_at(step: OnboardingStep) -> OnboardingStateMachine:
    """A machine holding complete data, walked forward to ``step``."""
    machine = OnboardingStateMachine()
    machine.update_data(ALL_DATA)
    while machine.current_step != step:
        assert machine.go_next()
    return machine


# --- Reducer ---


def test_reducer_does_not_mutate_input() -> None:
    state = OnboardingState()
    new_state = reduce(state, UpdateData(changes=PERSONAL))

    assert state.data.full_name == ""
    assert new_state.data.full_name == "Ana Souza"
    assert new_state.can_proceed is True


def test_reducer_ignores_unknown_fields() -> None:
    state = reduce(OnboardingState(), UpdateData(changes={"favourite_colour": "teal"}))
    assert not hasattr(state.data, "favourite_colour")


def test_reducer_transition_lifecycle() -> None:
    state = reduce(OnboardingState(), BeginTransition())
    assert state.is_transitioning is True

    rejected = reduce(state, RejectTransition(error="nope"))
    assert rejected.is_transitioning is False
    assert rejected.error == "nope"

    moved = reduce(state, CompleteTransition(target=OnboardingStep.CLINIC_SETUP))
    assert moved.current_step == OnboardingStep.CLINIC_SETUP
    assert moved.is_transitioning is False
    # Clinic data is missing, so the new step is re-validated as blocked
    assert moved.can_proceed is False
    assert "clinic_name" in moved.validation_errors


def test_reducer_reset_returns_initial_state() -> None:
    state = reduce(OnboardingState(), UpdateData(changes=PERSONAL))
    assert reduce(state, Reset()).data.full_name == ""


# --- Data and validation ---


def test_update_data_revalidates_current_step() -> None:
    machine = OnboardingStateMachine()
    assert machine.state.can_proceed is False
    assert "full_name" in machine.state.validation_errors

    machine.update_data(PERSONAL)

    assert machine.state.can_proceed is True
    assert machine.state.validation_errors == {}
    assert machine.state.persisted_at is not None


# --- Navigation ---


def test_go_next_blocked_until_step_is_valid() -> None:
    machine = OnboardingStateMachine()
    assert machine.go_next() is False
    assert machine.current_step == OnboardingStep.PERSONAL_DATA

    machine.update_data(PERSONAL)
    assert machine.go_next() is True
    assert machine.current_step == OnboardingStep.CLINIC_SETUP


def test_skipping_ahead_is_rejected_without_moving() -> None:
    machine = OnboardingStateMachine()

    assert machine.go_to_step(OnboardingStep.SERVICE_SETUP) is False
    assert machine.current_step == OnboardingStep.PERSONAL_DATA
    assert machine.state.error is not None
    assert machine.state.is_transitioning is False


def test_skipping_two_ahead_rejected_even_when_current_step_valid() -> None:
    machine = OnboardingStateMachine()
    machine.update_data(ALL_DATA)

    assert machine.go_to_step(OnboardingStep.PROFESSIONAL_SETUP) is False
    assert machine.current_step == OnboardingStep.PERSONAL_DATA


def test_go_previous_from_first_step_is_noop() -> None:
    machine = OnboardingStateMachine()
    assert machine.go_previous() is False
    assert machine.current_step == OnboardingStep.PERSONAL_DATA


@pytest.mark.parametrize("step", STEP_ORDER[1:-1])
def test_go_previous_steps_back_exactly_one(step: OnboardingStep) -> None:
    machine = _machine_at(step)
    index = STEP_ORDER.index(step)

    assert machine.go_previous() is True
    assert machine.current_step == STEP_ORDER[index - 1]


def test_backward_jump_allowed_even_when_current_step_invalid() -> None:
    machine = _machine_at(OnboardingStep.SERVICE_SETUP)
    machine.update_data({"service_name": ""})

    assert machine.go_to_step(OnboardingStep.PERSONAL_DATA) is True
    assert machine.current_step == OnboardingStep.PERSONAL_DATA


def test_unknown_step_is_denied() -> None:
    machine = OnboardingStateMachine()
    assert machine.go_to_step("billing") is False
    assert machine.current_step == OnboardingStep.PERSONAL_DATA


def test_completion_unreachable_through_navigation() -> None:
    machine = _machine_at(OnboardingStep.CONFIGURATION)

    assert machine.get_navigation().can_go_next is False
    assert machine.go_next() is False
    assert machine.go_to_step(OnboardingStep.COMPLETION) is False
    assert machine.current_step == OnboardingStep.CONFIGURATION


def test_mark_complete_enters_terminal_step() -> None:
    machine = _machine_at(OnboardingStep.CONFIGURATION)

    assert machine.mark_complete() is True
    assert machine.current_step == OnboardingStep.COMPLETION
    # Terminal step cannot be left
    assert machine.go_previous() is False
    assert machine.go_to_step(OnboardingStep.PERSONAL_DATA) is False


def test_mark_complete_refused_with_invalid_steps() -> None:
    machine = OnboardingStateMachine()
    machine.update_data(PERSONAL)

    assert machine.mark_complete() is False
    assert machine.current_step == OnboardingStep.PERSONAL_DATA
    assert "clinic_setup" in (machine.state.error or "")


def test_reentrant_navigation_is_rejected() -> None:
    """A listener navigating mid-transition is turned away."""
    machine = OnboardingStateMachine()
    machine.update_data(ALL_DATA)
    nested: list[bool] = []

    def listener(state: OnboardingState) -> None:
        if state.is_transitioning:
            nested.append(machine.go_next())

    machine.subscribe(listener)

    assert machine.go_next() is True
    assert nested == [False]
    assert machine.current_step == OnboardingStep.CLINIC_SETUP


def test_navigation_query() -> None:
    machine = OnboardingStateMachine()
    navigation = machine.get_navigation()
    assert navigation.can_go_previous is False
    assert navigation.can_go_next is False
    assert navigation.next_step is None

    machine.update_data(PERSONAL)
    navigation = machine.get_navigation()
    assert navigation.can_go_next is True
    assert navigation.next_step == OnboardingStep.CLINIC_SETUP


# --- Progress ---


@pytest.mark.parametrize(
    ("step", "current", "percentage"),
    [
        (OnboardingStep.PERSONAL_DATA, 1, 20.0),
        (OnboardingStep.SERVICE_SETUP, 4, 80.0),
        (OnboardingStep.CONFIGURATION, 5, 100.0),
    ],
)
def test_progress_excludes_terminal_step(step: OnboardingStep, current: int, percentage: float) -> None:
    progress = _machine_at(step).get_progress()

    assert progress.total == 5
    assert progress.current == current
    assert progress.percentage == pytest.approx(percentage)


def test_progress_capped_on_terminal_step() -> None:
    machine = _machine_at(OnboardingStep.CONFIGURATION)
    machine.mark_complete()
    assert machine.get_progress().current == 5


# --- Listeners ---


def test_listeners_notified_until_unsubscribed() -> None:
    machine = OnboardingStateMachine()
    seen: list[str] = []
    unsubscribe = machine.subscribe(lambda state: seen.append(state.data.full_name))

    machine.update_data({"full_name": "Ana"})
    unsubscribe()
    machine.update_data({"full_name": "Bia"})

    assert seen == ["Ana"]


def test_failing_listener_does_not_break_dispatch() -> None:
    machine = OnboardingStateMachine()

    def broken(_state: OnboardingState) -> None:
        raise RuntimeError("listener bug")

    machine.subscribe(broken)
    machine.update_data(PERSONAL)

    assert machine.state.can_proceed is True


# --- Snapshots ---


def test_snapshot_is_flat() -> None:
    machine = _machine_at(OnboardingStep.CLINIC_SETUP)
    snapshot = json.loads(machine.serialize())

    assert snapshot["current_step"] == "clinic_setup"
    assert snapshot["clinic_name"] == "Clínica Ana"
    assert "persisted_at" in snapshot
    assert "can_proceed" not in snapshot


def test_deserialize_restores_step_and_data() -> None:
    machine = _machine_at(OnboardingStep.SERVICE_SETUP)

    restored = OnboardingStateMachine.deserialize(machine.serialize())

    assert restored.current_step == OnboardingStep.SERVICE_SETUP
    assert restored.data == machine.data
    assert restored.state.can_proceed is True


def test_deserialize_recomputes_validation_flags() -> None:
    snapshot = {
        "current_step": "clinic_setup",
        "clinic_name": "",
        "can_proceed": True,
        "persisted_at": datetime.now(UTC).isoformat(),
    }

    restored = OnboardingStateMachine.deserialize(snapshot)

    assert restored.state.can_proceed is False
    assert "clinic_name" in restored.state.validation_errors


def test_deserialize_rejects_expired_snapshot() -> None:
    persisted_at = datetime(2026, 1, 1, tzinfo=UTC)
    snapshot = {"current_step": "personal_data", "persisted_at": persisted_at.isoformat()}

    with pytest.raises(SnapshotError, match="expired"):
        OnboardingStateMachine.deserialize(snapshot, now=persisted_at + timedelta(hours=25))

    restored = OnboardingStateMachine.deserialize(
        snapshot, max_age=timedelta(days=7), now=persisted_at + timedelta(hours=25)
    )
    assert restored.current_step == OnboardingStep.PERSONAL_DATA


@pytest.mark.parametrize(
    "snapshot",
    [
        "{not json",
        "[1, 2]",
        {"current_step": "billing"},
        {"current_step": "personal_data", "persisted_at": "yesterday"},
        {"current_step": "personal_data", "service_duration": "an hour"},
    ],
)
def test_deserialize_rejects_malformed_snapshots(snapshot: Any) -> None:
    with pytest.raises(SnapshotError):
        OnboardingStateMachine.deserialize(snapshot)


def test_deserialize_honours_zero_max_age() -> None:
    persisted_at = datetime(2026, 1, 1, tzinfo=UTC)
    snapshot = {"current_step": "personal_data", "persisted_at": persisted_at.isoformat()}

    with pytest.raises(SnapshotError, match="expired"):
        OnboardingStateMachine.deserialize(
            snapshot, max_age=timedelta(0), now=persisted_at + timedelta(seconds=1)
        )


# --- Form input coercion ---


def test_update_data_coerces_numeric_strings() -> None:
    machine = _machine_at(OnboardingStep.SERVICE_SETUP)

    machine.update_data({"service_name": "Peeling", "service_duration": "45", "service_price": "10"})

    assert machine.data.service_duration == 45
    assert machine.state.can_proceed is True
    assert machine.state.validation_errors == {}


@pytest.mark.parametrize(("raw", "needs_network"), [("false", False), ("true", True)])
def test_update_data_coerces_boolean_strings(raw: str, needs_network: bool) -> None:
    machine = _machine_at(OnboardingStep.CLINIC_SETUP)

    machine.update_data({"has_multiple_clinics": raw})

    assert machine.data.has_multiple_clinics is needs_network
    assert ("network_name" in machine.state.validation_errors) is needs_network
    assert machine.state.can_proceed is not needs_network


def test_update_data_reports_uncoercible_value_as_field_error() -> None:
    machine = _machine_at(OnboardingStep.SERVICE_SETUP)

    machine.update_data({"service_duration": "an hour", "service_name": "Peeling"})

    assert machine.data.service_duration == 60
    assert machine.data.service_name == "Peeling"
    assert machine.state.can_proceed is False
    assert "service_duration" in machine.state.validation_errors
    assert machine.go_next() is False


def test_live_and_restored_sessions_validate_alike() -> None:
    machine = _machine_at(OnboardingStep.SERVICE_SETUP)
    machine.update_data({"service_duration": "30"})

    restored = OnboardingStateMachine.deserialize(machine.serialize())

    assert restored.data == machine.data
    assert restored.state.can_proceed == machine.state.can_proceed
