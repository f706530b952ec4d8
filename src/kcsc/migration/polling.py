"""Poll-until-terminal primitive and the predicates the steps wait on."""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from typing import TYPE_CHECKING, Any

from ..providers.kubernetes import ResourceNotFoundError
from .models import PollResult

if TYPE_CHECKING:
    from ..providers.kubernetes import ResourceClient


class PollTimeoutError(RuntimeError):
    """Raised when a bounded poll does not reach a terminal result in time."""

    def __init__(self, timeout: float, attempts: int) -> None:
        """Record the configured timeout and how many checks ran."""
        super().__init__(
            f"Gave up waiting after {timeout:g}s ({attempts} checks without a result)."
        )
        self.timeout = timeout
        self.attempts = attempts


def poll_until(
    check: Callable[[], PollResult],
    *,
    interval: float,
    on_pending: Callable[[int], None] | None = None,
    timeout: float | None = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> PollResult:
    """Evaluate *check* every *interval* seconds until it stops being pending.

    ``on_pending`` receives the 1-based attempt number after each pending
    evaluation, before sleeping. Errors raised by ``check`` propagate. Without
    a *timeout* the loop only ends on a terminal result.
    """
    deadline = clock() + timeout if timeout is not None else None
    attempt = 0
    while True:
        attempt += 1
        result = check()
        if result.is_terminal:
            return result
        if on_pending is not None:
            on_pending(attempt)
        if deadline is not None and clock() + interval > deadline:
            raise PollTimeoutError(timeout or 0.0, attempt)
        sleep(interval)


def claim_deletion_status(client: ResourceClient, namespace: str, name: str) -> PollResult:
    """Return SUCCEEDED once the claim is gone, PENDING while it still exists."""
    try:
        client.read_claim(namespace, name)
    except ResourceNotFoundError:
        return PollResult.SUCCEEDED
    return PollResult.PENDING


def job_completion_status(job: Mapping[str, Any]) -> PollResult:
    """Classify a Job from its status counters; failures win over successes."""
    status = job.get("status")
    if not isinstance(status, Mapping):
        return PollResult.PENDING
    if _count(status.get("failed")) > 0:
        return PollResult.FAILED
    if _count(status.get("succeeded")) > 0:
        return PollResult.SUCCEEDED
    return PollResult.PENDING


def _count(value: object) -> int:
    if isinstance(value, bool):
        return 0
    if isinstance(value, int):
        return value
    return 0


__all__ = [
    "PollTimeoutError",
    "claim_deletion_status",
    "job_completion_status",
    "poll_until",
]
