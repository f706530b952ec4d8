"""Step sequencer that drives a migration plan one confirmed step at a time."""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import replace
from typing import TYPE_CHECKING, Protocol

import typer

from .models import (
    AbortReason,
    MigrationPlan,
    MigrationReport,
    SequencerState,
    Step,
    StepContext,
    StepExecutionError,
    StepResult,
    Transition,
)

if TYPE_CHECKING:
    from ..config import AppConfig
    from ..providers.kubernetes import ResourceClient

AFFIRMATIVE_TOKEN = "Y"
CONFIRM_PROMPT = f"    Do you want to continue? ({AFFIRMATIVE_TOKEN}/N)"


class ConfirmationGate(Protocol):
    """Ask the operator whether to run the next step."""

    def confirm(self, prompt: str) -> bool: ...


class PromptConfirmationGate:
    """Interactive gate reading an answer from the terminal.

    Only the exact, case-sensitive token ``Y`` counts as a yes. End of input
    (Ctrl-D, closed stdin) is a decline.
    """

    def confirm(self, prompt: str) -> bool:
        """Prompt with *prompt* and compare the raw answer to ``Y``."""
        try:
            answer = typer.prompt(prompt, default="", show_default=False)
        except typer.Abort:
            return False
        return answer == AFFIRMATIVE_TOKEN


def _duration_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)


def create_step_context(
    plan: MigrationPlan,
    client: ResourceClient,
    config: AppConfig,
    *,
    report: Callable[[str], None] | None = None,
    sleep: Callable[[float], None] | None = None,
) -> StepContext:
    """Build a StepContext from the plan and runtime configuration."""
    context = StepContext(
        run=plan.context,
        client=client,
        poll=config.poll,
        copy_job=config.copy_job,
        reserved_annotation_prefixes=config.reserved_annotation_prefixes,
    )
    if report is not None:
        context = replace(context, report=report)
    if sleep is not None:
        context = replace(context, sleep=sleep)
    return context


class StepSequencer:
    """Run each step of a plan in order, halting on the first decline or failure.

    Every action is invoked at most once. Nothing is retried or rolled back:
    after an abort the cluster stays in the state the last successful step
    left it in.
    """

    def __init__(
        self,
        plan: MigrationPlan,
        context: StepContext,
        gate: ConfirmationGate,
        *,
        listener: Callable[[Transition], None] | None = None,
    ) -> None:
        """Store the plan, the step context, the gate and an optional listener."""
        self._plan = plan
        self._context = context
        self._gate = gate
        self._listener = listener
        self._state = SequencerState.NOT_STARTED
        self._index: int | None = None
        self._results: list[StepResult] = []

    @property
    def state(self) -> SequencerState:
        """Return the current state."""
        return self._state

    @property
    def index(self) -> int | None:
        """Return the index of the step being handled, if any."""
        return self._index

    def run(self) -> MigrationReport:
        """Drive the plan until it completes or aborts."""
        if self._state is not SequencerState.NOT_STARTED:
            raise RuntimeError("A StepSequencer can only be run once.")

        for index, step in enumerate(self._plan.steps):
            self._transition(SequencerState.AWAITING_CONFIRMATION, index, step)
            if not self._gate.confirm(CONFIRM_PROMPT):
                result = StepResult(
                    index=index,
                    step_id=step.id,
                    description=step.description,
                    status="declined",
                )
                return self._abort(index, step, result, AbortReason.DECLINED)

            self._transition(SequencerState.RUNNING, index, step)
            result = self._run_step(index, step)
            if result.error is not None:
                return self._abort(index, step, result, AbortReason.STEP_FAILED)
            self._results.append(result)
            self._transition(SequencerState.STEP_SUCCEEDED, index, step, result)

        self._transition(SequencerState.COMPLETED)
        return MigrationReport(outcome=SequencerState.COMPLETED, results=tuple(self._results))

    def _run_step(self, index: int, step: Step) -> StepResult:
        start = time.perf_counter()
        error: StepExecutionError | None = None
        try:
            succeeded = step.run(self._context)
        except Exception as exc:
            error = StepExecutionError.from_exception(exc)
        else:
            if not succeeded:
                error = StepExecutionError(f"Step {index + 1} reported failure.")
        return StepResult(
            index=index,
            step_id=step.id,
            description=step.description,
            status="failed" if error is not None else "succeeded",
            error=error,
            duration_ms=_duration_ms(start),
        )

    def _abort(
        self,
        index: int,
        step: Step,
        result: StepResult,
        reason: AbortReason,
    ) -> MigrationReport:
        self._results.append(result)
        self._transition(SequencerState.ABORTED, index, step, result)
        return MigrationReport(
            outcome=SequencerState.ABORTED,
            results=tuple(self._results),
            aborted_at=index,
            reason=reason,
            error=result.error,
        )

    def _transition(
        self,
        state: SequencerState,
        index: int | None = None,
        step: Step | None = None,
        result: StepResult | None = None,
    ) -> None:
        self._state = state
        if index is not None:
            self._index = index
        if self._listener is not None:
            self._listener(Transition(state=state, index=index, step=step, result=result))


__all__ = [
    "AFFIRMATIVE_TOKEN",
    "CONFIRM_PROMPT",
    "ConfirmationGate",
    "PromptConfirmationGate",
    "StepSequencer",
    "create_step_context",
]
