"""Generic saga runner.

A saga is an ordered list of steps, each able to undo its own effect.
The runner executes steps in order, remembers a compensation for every
step that created something, and on failure unwinds those compensations
in reverse order. Compensation is best-effort: failures are logged and
never raised, and nothing is persisted between runs.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

logger = logging.getLogger(__name__)

ContextT = TypeVar("ContextT")

ProgressCallback = Callable[[str, float, str], Awaitable[None] | None]


@dataclass(frozen=True)
class StepOutcome:
    """Successful result of a saga step.

    Attributes:
        value: Whatever the step produced (e.g. the created row).
        created: False when the step reused an existing resource; such
            steps register no compensation.
    """

    value: Any = None
    created: bool = True


@dataclass
class SagaResult:
    """Outcome of a saga run."""

    success: bool
    error: str | None = None
    failed_step: str | None = None
    completed_steps: list[str] = field(default_factory=list)
    compensated_steps: list[str] = field(default_factory=list)
    compensation_failures: list[str] = field(default_factory=list)


class SagaStep(ABC, Generic[ContextT]):
    """One named step of a saga."""

    name: str = ""
    message: str = ""

    @abstractmethod
    async def execute(self, context: ContextT) -> StepOutcome:
        """Perform the step.

        Raises:
            Exception: Any failure aborts the saga and triggers rollback.
        """

    async def compensate(self, context: ContextT, outcome: StepOutcome) -> None:
        """Undo the step. Only called when ``outcome.created`` is true."""


class Saga(Generic[ContextT]):
    """Runs saga steps in order with LIFO compensation on failure."""

    def __init__(self, name: str, steps: Sequence[SagaStep[ContextT]]) -> None:
        """Initialize the saga.

        Args:
            name: Name used in log records.
            steps: Steps in execution order.
        """
        self._name = name
        self._steps = list(steps)

    @property
    def steps(self) -> list[SagaStep[ContextT]]:
        return list(self._steps)

    async def run(
        self,
        context: ContextT,
        on_progress: ProgressCallback | None = None,
    ) -> SagaResult:
        """Execute every step, rolling back on the first failure.

        Args:
            context: Mutable state shared by the steps.
            on_progress: Called with ``(step_name, percentage, message)``
                before each step executes.

        Returns:
            SagaResult describing what ran and what was undone.
        """
        result = SagaResult(success=False)
        compensations: list[tuple[SagaStep[ContextT], StepOutcome]] = []
        total = len(self._steps)

        logger.info("Saga started", extra={"saga": self._name, "steps": total})

        for index, step in enumerate(self._steps):
            if on_progress is not None:
                await self._notify(on_progress, step, (index + 1) / total * 100)

            try:
                outcome = await step.execute(context)
            except Exception as e:
                logger.warning(
                    "Saga step failed, rolling back",
                    extra={"saga": self._name, "step": step.name, "error": str(e)},
                )
                result.error = str(e)
                result.failed_step = step.name
                await self._rollback(context, compensations, result)
                return result

            result.completed_steps.append(step.name)
            if outcome.created:
                compensations.append((step, outcome))
            logger.info(
                "Saga step completed",
                extra={"saga": self._name, "step": step.name, "reused": not outcome.created},
            )

        result.success = True
        logger.info("Saga completed", extra={"saga": self._name})
        return result

    async def _notify(self, on_progress: ProgressCallback, step: SagaStep[ContextT], pct: float) -> None:
        try:
            pending = on_progress(step.name, pct, step.message)
            if pending is not None:
                await pending
        except Exception:
            logger.exception(
                "Saga progress callback failed",
                extra={"saga": self._name, "step": step.name},
            )

    async def _rollback(
        self,
        context: ContextT,
        compensations: list[tuple[SagaStep[ContextT], StepOutcome]],
        result: SagaResult,
    ) -> None:
        while compensations:
            step, outcome = compensations.pop()
            try:
                await step.compensate(context, outcome)
                result.compensated_steps.append(step.name)
            except Exception:
                result.compensation_failures.append(step.name)
                logger.exception(
                    "Compensation failed",
                    extra={"saga": self._name, "step": step.name},
                )

        logger.warning(
            "Saga rolled back",
            extra={
                "saga": self._name,
                "compensated": result.compensated_steps,
                "compensation_failures": result.compensation_failures,
            },
        )
