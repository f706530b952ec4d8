"""Migration engine: plan, step catalog, poll loop and sequencer."""

from __future__ import annotations

from .engine import (
    AFFIRMATIVE_TOKEN,
    ConfirmationGate,
    PromptConfirmationGate,
    StepSequencer,
    create_step_context,
)
from .models import (
    AbortReason,
    MigrationPlan,
    MigrationReport,
    PollResult,
    ResourceReference,
    RunContext,
    SequencerState,
    Step,
    StepContext,
    StepExecutionError,
    StepResult,
    Transition,
)
from .polling import PollTimeoutError, claim_deletion_status, job_completion_status, poll_until
from .steps import build_plan

__all__ = [
    "AFFIRMATIVE_TOKEN",
    "AbortReason",
    "ConfirmationGate",
    "MigrationPlan",
    "MigrationReport",
    "PollResult",
    "PollTimeoutError",
    "PromptConfirmationGate",
    "ResourceReference",
    "RunContext",
    "SequencerState",
    "Step",
    "StepContext",
    "StepExecutionError",
    "StepResult",
    "StepSequencer",
    "Transition",
    "build_plan",
    "claim_deletion_status",
    "create_step_context",
    "job_completion_status",
    "poll_until",
]
