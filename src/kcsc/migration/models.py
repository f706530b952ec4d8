"""Data models shared by the migration engine and its steps."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..config import CopyJobConfig, PollConfig
    from ..identity import RunIdentity
    from ..providers.kubernetes import ResourceClient


class PollResult(str, Enum):
    """Outcome of a single poll evaluation."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` when polling should stop."""
        return self is not PollResult.PENDING


class SequencerState(str, Enum):
    """States of the step sequencer."""

    NOT_STARTED = "not-started"
    AWAITING_CONFIRMATION = "awaiting-confirmation"
    RUNNING = "running"
    STEP_SUCCEEDED = "step-succeeded"
    ABORTED = "aborted"
    COMPLETED = "completed"

    @property
    def is_terminal(self) -> bool:
        """Return ``True`` for states the sequencer never leaves."""
        return self in (SequencerState.ABORTED, SequencerState.COMPLETED)


class AbortReason(str, Enum):
    """Why a run stopped before completing."""

    DECLINED = "declined"
    STEP_FAILED = "step-failed"


@dataclass(slots=True, frozen=True)
class ResourceReference:
    """Kind, namespace and name of a cluster object."""

    kind: str
    name: str
    namespace: str | None = None

    def __str__(self) -> str:
        """Render as ``Kind namespace/name`` (or ``Kind name`` when cluster scoped)."""
        if self.namespace:
            return f"{self.kind} {self.namespace}/{self.name}"
        return f"{self.kind} {self.name}"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"kind": self.kind, "namespace": self.namespace, "name": self.name}


@dataclass(slots=True, frozen=True)
class RunContext:
    """Everything the steps know about the migration being performed.

    Built once by discovery, which guarantees ``claim`` and ``volume`` carry
    every field the steps read. Only ``mounting_pods`` changes afterwards.
    """

    identity: RunIdentity
    namespace: str
    claim_name: str
    target_storage_class: str
    source_storage_class: str
    claim: Mapping[str, Any]
    volume: Mapping[str, Any]
    volume_name: str
    mounting_pods: list[str] = field(default_factory=list)

    @property
    def run_id(self) -> str:
        """Return the run token."""
        return self.identity.token

    @property
    def claim_ref(self) -> ResourceReference:
        """Reference to the claim being migrated."""
        return ResourceReference("PersistentVolumeClaim", self.claim_name, self.namespace)

    @property
    def volume_ref(self) -> ResourceReference:
        """Reference to the volume currently holding the data."""
        return ResourceReference("PersistentVolume", self.volume_name)

    @property
    def temp_claim_ref(self) -> ResourceReference:
        """Reference to the temporary claim that exposes the old volume."""
        return ResourceReference(
            "PersistentVolumeClaim", self.identity.temp_claim_name(), self.namespace
        )

    @property
    def copy_job_ref(self) -> ResourceReference:
        """Reference to the data-copy Job."""
        return ResourceReference("Job", self.identity.copy_job_name(), self.namespace)

    def refresh_mounting_pods(self, pods: Sequence[str]) -> None:
        """Replace the recorded list of pods mounting the claim."""
        self.mounting_pods[:] = list(pods)


@dataclass(slots=True, frozen=True)
class StepContext:
    """Execution context handed to each step action."""

    run: RunContext
    client: ResourceClient
    poll: PollConfig
    copy_job: CopyJobConfig
    reserved_annotation_prefixes: tuple[str, ...]
    report: Callable[[str], None] = lambda message: None
    sleep: Callable[[float], None] = time.sleep


@dataclass(slots=True, frozen=True)
class Step:
    """Description + callable for one migration step."""

    id: str
    description: str
    run: Callable[[StepContext], bool]


@dataclass(slots=True, frozen=True)
class MigrationPlan:
    """Ordered, fixed sequence of steps for one run."""

    context: RunContext
    steps: tuple[Step, ...]

    def __len__(self) -> int:
        """Return the number of steps."""
        return len(self.steps)


class StepExecutionError(RuntimeError):
    """Raised (or captured) when a step cannot complete."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        body: str | None = None,
    ) -> None:
        """Store the API status and body when they are known."""
        super().__init__(message)
        self.status = status
        self.body = body

    @classmethod
    def from_exception(cls, exc: BaseException) -> StepExecutionError:
        """Wrap *exc*, keeping HTTP details exposed by API errors."""
        if isinstance(exc, StepExecutionError):
            return exc
        status = getattr(exc, "status", None)
        body = getattr(exc, "body", None)
        return cls(
            str(exc) or type(exc).__name__,
            status=status if isinstance(status, int) else None,
            body=body if isinstance(body, str) else None,
        )

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation."""
        return {"message": str(self), "status": self.status, "body": self.body}


@dataclass(slots=True, frozen=True)
class StepResult:
    """Outcome of one step that reached the confirmation gate."""

    index: int
    step_id: str
    description: str
    status: str
    error: StepExecutionError | None = None
    duration_ms: int | None = None


@dataclass(slots=True, frozen=True)
class Transition:
    """Event published by the sequencer whenever its state changes."""

    state: SequencerState
    index: int | None = None
    step: Step | None = None
    result: StepResult | None = None


@dataclass(slots=True, frozen=True)
class MigrationReport:
    """Final report for a sequencer run."""

    outcome: SequencerState
    results: tuple[StepResult, ...]
    aborted_at: int | None = None
    reason: AbortReason | None = None
    error: StepExecutionError | None = None

    @property
    def completed(self) -> bool:
        """Return ``True`` when every step succeeded."""
        return self.outcome is SequencerState.COMPLETED

    @property
    def failed_step(self) -> StepResult | None:
        """Return the result of the step the run stopped at, if any."""
        if self.aborted_at is None:
            return None
        for result in self.results:
            if result.index == self.aborted_at:
                return result
        return None
