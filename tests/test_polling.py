"""Tests for the poll loop and the predicates built on it."""
from __future__ import annotations

import pytest

from kcsc.migration import (
    PollResult,
    PollTimeoutError,
    claim_deletion_status,
    job_completion_status,
    poll_until,
)
from kcsc.providers.kubernetes import KubernetesError


class FakeClock:
    """Monotonic clock advanced only by the fake sleep."""

    def __init__(self) -> None:
        """Start at zero."""
        self.now = 0.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _sequence(*results: PollResult):
    remaining = list(results)
    calls: list[int] = []

    def check() -> PollResult:
        calls.append(1)
        return remaining.pop(0)

    return check, calls


def test_poll_until_reports_each_pending_tick() -> None:
    """Pending results trigger a report and a sleep; terminal ones return."""
    clock = FakeClock()
    check, calls = _sequence(PollResult.PENDING, PollResult.PENDING, PollResult.SUCCEEDED)
    ticks: list[int] = []

    result = poll_until(
        check,
        interval=1.0,
        on_pending=ticks.append,
        sleep=clock.sleep,
        clock=clock,
    )

    assert result is PollResult.SUCCEEDED
    assert len(calls) == 3
    assert ticks == [1, 2]
    assert clock.sleeps == [1.0, 1.0]


def test_poll_until_returns_failed_immediately() -> None:
    """A terminal first evaluation never sleeps or reports."""
    clock = FakeClock()
    ticks: list[int] = []

    result = poll_until(
        lambda: PollResult.FAILED,
        interval=1.0,
        on_pending=ticks.append,
        sleep=clock.sleep,
        clock=clock,
    )

    assert result is PollResult.FAILED
    assert ticks == []
    assert clock.sleeps == []


def test_poll_until_propagates_check_errors() -> None:
    """Errors raised by the predicate escape the loop."""

    def check() -> PollResult:
        raise KubernetesError("boom", status=500)

    with pytest.raises(KubernetesError, match="boom"):
        poll_until(check, interval=1.0, sleep=lambda seconds: None)


def test_poll_until_honours_timeout() -> None:
    """A configured timeout raises once the next check would be too late."""
    clock = FakeClock()

    with pytest.raises(PollTimeoutError) as excinfo:
        poll_until(
            lambda: PollResult.PENDING,
            interval=1.0,
            timeout=2.5,
            sleep=clock.sleep,
            clock=clock,
        )

    assert excinfo.value.attempts == 3
    assert clock.sleeps == [1.0, 1.0]


def test_deletion_wait_succeeds_on_not_found(cluster) -> None:
    """[exists, exists, Not-Found] gives two reports then SUCCEEDED."""
    cluster.deletion_delay = 2
    cluster.delete_claim("apps", "data")
    ticks: list[int] = []

    result = poll_until(
        lambda: claim_deletion_status(cluster, "apps", "data"),
        interval=1.0,
        on_pending=ticks.append,
        sleep=lambda seconds: None,
    )

    assert result is PollResult.SUCCEEDED
    assert ticks == [1, 2]
    reads = [call for call in cluster.calls if call[0] == "read_claim"]
    assert len(reads) == 3


def test_deletion_wait_propagates_other_errors(cluster) -> None:
    """Errors other than Not-Found are neither pending nor success."""
    cluster.failures["read_claim"] = KubernetesError("forbidden", status=403)

    with pytest.raises(KubernetesError, match="forbidden"):
        poll_until(
            lambda: claim_deletion_status(cluster, "apps", "data"),
            interval=1.0,
            sleep=lambda seconds: None,
        )


def test_deletion_status_pending_while_claim_exists(cluster) -> None:
    """An existing claim keeps the wait pending."""
    assert claim_deletion_status(cluster, "apps", "data") is PollResult.PENDING


@pytest.mark.parametrize(
    ("status", "expected"),
    [
        ({}, PollResult.PENDING),
        ({"failed": 0, "succeeded": 0}, PollResult.PENDING),
        ({"succeeded": 1}, PollResult.SUCCEEDED),
        ({"failed": 1}, PollResult.FAILED),
        ({"failed": 1, "succeeded": 1}, PollResult.FAILED),
        ({"active": 1}, PollResult.PENDING),
    ],
)
def test_job_completion_status(status: dict[str, int], expected: PollResult) -> None:
    """Failed is checked before succeeded."""
    assert job_completion_status({"status": status}) is expected


def test_job_completion_status_without_status_block() -> None:
    """A freshly created Job has no status yet."""
    assert job_completion_status({"metadata": {"name": "job"}}) is PollResult.PENDING


def _job_wait(cluster, statuses: list[dict[str, int]]) -> tuple[PollResult, int]:
    cluster.create_job("apps", {"metadata": {"name": "copy"}})
    cluster.job_statuses = statuses
    result = poll_until(
        lambda: job_completion_status(cluster.read_job_status("apps", "copy")),
        interval=1.0,
        sleep=lambda seconds: None,
    )
    checks = len([call for call in cluster.calls if call[0] == "read_job_status"])
    return result, checks


def test_job_wait_succeeds_after_third_check(cluster) -> None:
    """[{0,0}, {0,0}, {0,1}] resolves to SUCCEEDED on the third check."""
    result, checks = _job_wait(
        cluster,
        [
            {"failed": 0, "succeeded": 0},
            {"failed": 0, "succeeded": 0},
            {"failed": 0, "succeeded": 1},
        ],
    )

    assert result is PollResult.SUCCEEDED
    assert checks == 3


def test_job_wait_prefers_failure(cluster) -> None:
    """[{0,0}, {1,1}] resolves to FAILED."""
    result, checks = _job_wait(
        cluster,
        [{"failed": 0, "succeeded": 0}, {"failed": 1, "succeeded": 1}],
    )

    assert result is PollResult.FAILED
    assert checks == 2
