"""Pytest configuration helpers for the test suite."""

from __future__ import annotations

import copy
import os
import uuid
from collections.abc import Callable, Mapping, Sequence
from typing import Any

import pytest

from kcsc.config import AppConfig, load_config
from kcsc.identity import RunIdentity
from kcsc.providers.kubernetes import KubernetesError, ResourceNotFoundError


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Skip expensive tests during mutation runs."""
    if not os.environ.get("MUTANT_UNDER_TEST"):
        return
    skip_marker = pytest.mark.skip(reason="Skipped during mutation run to avoid timeouts.")
    for item in items:
        if "mutation_timeout" in item.keywords:
            item.add_marker(skip_marker)


class FakeCluster:
    """In-memory stand-in for the Kubernetes API used by kcsc.

    ``deletion_delay`` is how many reads still see a claim after it was
    deleted. ``job_statuses`` is consumed one entry per status read; the last
    entry repeats. ``failures`` maps a method name to an exception raised on
    its next call.
    """

    def __init__(self) -> None:
        """Start with an empty cluster."""
        self.claims: dict[tuple[str, str], dict[str, Any]] = {}
        self.volumes: dict[str, dict[str, Any]] = {}
        self.pods: dict[str, list[dict[str, Any]]] = {}
        self.jobs: dict[tuple[str, str], dict[str, Any]] = {}
        self.job_statuses: list[dict[str, int]] = [{"succeeded": 1}]
        self.deletion_delay = 0
        self.failures: dict[str, Exception] = {}
        self.calls: list[tuple[str, ...]] = []
        self.patches: list[tuple[str, list[dict[str, Any]]]] = []
        self._pending_deletes: dict[tuple[str, str], int] = {}

    # -- seeding helpers -------------------------------------------------
    def add_claim(
        self,
        namespace: str,
        name: str,
        *,
        storage_class: str | None = "standard",
        annotations: Mapping[str, str] | None = None,
        labels: Mapping[str, str] | None = None,
        volume_name: str | None = None,
    ) -> dict[str, Any]:
        """Store a claim and return it."""
        spec: dict[str, Any] = {
            "accessModes": ["ReadWriteOnce"],
            "resources": {"requests": {"storage": "1Gi"}},
            "volumeMode": "Filesystem",
        }
        if storage_class is not None:
            spec["storageClassName"] = storage_class
        if volume_name is not None:
            spec["volumeName"] = volume_name
        metadata: dict[str, Any] = {
            "name": name,
            "namespace": namespace,
            "uid": str(uuid.uuid4()),
            "resourceVersion": "1",
        }
        if annotations is not None:
            metadata["annotations"] = dict(annotations)
        if labels is not None:
            metadata["labels"] = dict(labels)
        claim = {"metadata": metadata, "spec": spec, "status": {"phase": "Bound"}}
        self.claims[(namespace, name)] = claim
        return claim

    def add_volume(
        self,
        name: str,
        *,
        claim: Mapping[str, Any] | None = None,
        phase: str = "Bound",
        storage_class: str = "standard",
    ) -> dict[str, Any]:
        """Store a volume, optionally bound to *claim*."""
        spec: dict[str, Any] = {
            "persistentVolumeReclaimPolicy": "Delete",
            "storageClassName": storage_class,
        }
        if claim is not None:
            spec["claimRef"] = {
                "kind": "PersistentVolumeClaim",
                "namespace": claim["metadata"]["namespace"],
                "name": claim["metadata"]["name"],
                "uid": claim["metadata"]["uid"],
            }
        volume = {"metadata": {"name": name}, "spec": spec, "status": {"phase": phase}}
        self.volumes[name] = volume
        return volume

    def add_pod(self, namespace: str, name: str, claim_names: Sequence[str] = ()) -> None:
        """Store a pod mounting *claim_names*."""
        pod: dict[str, Any] = {"metadata": {"name": name, "namespace": namespace}, "spec": {}}
        if claim_names:
            pod["spec"]["volumes"] = [
                {"name": f"vol-{index}", "persistentVolumeClaim": {"claimName": claim}}
                for index, claim in enumerate(claim_names)
            ]
        self.pods.setdefault(namespace, []).append(pod)

    # -- ResourceClient ---------------------------------------------------
    def read_claim(self, namespace: str, name: str) -> dict[str, Any]:
        self._record("read_claim", namespace, name)
        key = (namespace, name)
        if key in self._pending_deletes:
            remaining = self._pending_deletes[key]
            if remaining <= 0:
                del self._pending_deletes[key]
                self.claims.pop(key, None)
            else:
                self._pending_deletes[key] = remaining - 1
        if key not in self.claims:
            raise ResourceNotFoundError(
                f"read PersistentVolumeClaim {namespace}/{name} failed (HTTP 404 Not Found)",
                status=404,
                reason="Not Found",
                body='{"reason":"NotFound"}',
            )
        return copy.deepcopy(self.claims[key])

    def create_claim(self, namespace: str, body: Mapping[str, Any]) -> dict[str, Any]:
        name = body["metadata"]["name"]
        self._record("create_claim", namespace, name)
        key = (namespace, name)
        if key in self.claims:
            raise KubernetesError(
                f"create PersistentVolumeClaim {namespace}/{name} failed (HTTP 409 Conflict)",
                status=409,
                reason="Conflict",
                body='{"reason":"AlreadyExists"}',
            )
        claim = copy.deepcopy(dict(body))
        claim["metadata"]["uid"] = str(uuid.uuid4())
        self.claims[key] = claim
        return copy.deepcopy(claim)

    def delete_claim(self, namespace: str, name: str) -> None:
        self._record("delete_claim", namespace, name)
        key = (namespace, name)
        if key not in self.claims:
            raise ResourceNotFoundError("not found", status=404, reason="Not Found")
        if self.deletion_delay:
            self._pending_deletes[key] = self.deletion_delay
        else:
            del self.claims[key]

    def list_pods(self, namespace: str) -> list[dict[str, Any]]:
        self._record("list_pods", namespace)
        return copy.deepcopy(self.pods.get(namespace, []))

    def list_volumes(self) -> list[dict[str, Any]]:
        self._record("list_volumes")
        return copy.deepcopy(list(self.volumes.values()))

    def patch_volume(self, name: str, operations: Sequence[Mapping[str, Any]]) -> dict[str, Any]:
        self._record("patch_volume", name)
        volume = self.volumes[name]
        self.patches.append((name, [dict(operation) for operation in operations]))
        for operation in operations:
            *parents, leaf = [part for part in operation["path"].split("/") if part]
            target = volume
            for part in parents:
                target = target[part]
            if operation["op"] == "remove":
                del target[leaf]
            else:
                target[leaf] = operation["value"]
        return copy.deepcopy(volume)

    def create_job(self, namespace: str, body: Mapping[str, Any]) -> dict[str, Any]:
        name = body["metadata"]["name"]
        self._record("create_job", namespace, name)
        job = copy.deepcopy(dict(body))
        job["status"] = {}
        self.jobs[(namespace, name)] = job
        return copy.deepcopy(job)

    def read_job_status(self, namespace: str, name: str) -> dict[str, Any]:
        self._record("read_job_status", namespace, name)
        job = self.jobs[(namespace, name)]
        if self.job_statuses:
            status = self.job_statuses.pop(0) if len(self.job_statuses) > 1 else self.job_statuses[0]
            job["status"] = dict(status)
        return copy.deepcopy(job)

    def delete_job(self, namespace: str, name: str) -> None:
        self._record("delete_job", namespace, name)
        if self.jobs.pop((namespace, name), None) is None:
            raise ResourceNotFoundError("not found", status=404, reason="Not Found")

    # ------------------------------------------------------------------
    def mutating_calls(self) -> list[tuple[str, ...]]:
        """Return recorded calls that change cluster state."""
        readonly = {"read_claim", "list_pods", "list_volumes", "read_job_status"}
        return [call for call in self.calls if call[0] not in readonly]

    def _record(self, method: str, *args: str) -> None:
        self.calls.append((method, *args))
        failure = self.failures.pop(method, None)
        if failure is not None:
            raise failure


class ScriptedGate:
    """Confirmation gate answering from a fixed list of responses."""

    def __init__(self, answers: Sequence[str]) -> None:
        """Store the answers; running out counts as an empty answer."""
        self._answers = list(answers)
        self.prompts: list[str] = []

    def confirm(self, prompt: str) -> bool:
        self.prompts.append(prompt)
        answer = self._answers.pop(0) if self._answers else ""
        return answer == "Y"


@pytest.fixture
def cluster() -> FakeCluster:
    """Cluster holding claim ``data`` (class ``standard``) bound to PV ``pv-1``."""
    fake = FakeCluster()
    claim = fake.add_claim(
        "apps",
        "data",
        annotations={"pv.kubernetes.io/bound-by-controller": "yes", "team": "infra"},
        labels={"app": "db"},
        volume_name="pv-1",
    )
    fake.add_volume("pv-1", claim=claim)
    return fake


@pytest.fixture
def scripted_gate() -> Callable[[Sequence[str]], ScriptedGate]:
    """Return a factory for scripted confirmation gates."""
    return ScriptedGate


@pytest.fixture
def identity() -> RunIdentity:
    """Deterministic run identity."""
    return RunIdentity(token="1234")


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    """Configuration isolated from the user's environment."""
    return load_config(
        config_file=tmp_path / "missing.yml",
        env={},
        overrides={"logs_dir": str(tmp_path / "logs")},
    )
