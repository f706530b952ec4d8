"""Manifest builders for the objects created during a migration."""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..config import CopyJobConfig
    from .models import RunContext

RETAIN_PATCH: tuple[dict[str, Any], ...] = (
    {"op": "replace", "path": "/spec/persistentVolumeReclaimPolicy", "value": "Retain"},
)
REMOVE_CLAIM_REF_PATCH: tuple[dict[str, Any], ...] = (
    {"op": "remove", "path": "/spec/claimRef"},
)

OLD_MOUNT_PATH = "/old"
NEW_MOUNT_PATH = "/new"


def filter_annotations(
    annotations: Mapping[str, str] | None,
    reserved_prefixes: Iterable[str],
) -> dict[str, str]:
    """Drop annotations whose key starts with one of *reserved_prefixes*."""
    prefixes = tuple(reserved_prefixes)
    return {
        key: value
        for key, value in (annotations or {}).items()
        if not (prefixes and key.startswith(prefixes))
    }


def build_replacement_claim(
    run: RunContext,
    reserved_prefixes: Sequence[str],
) -> dict[str, Any]:
    """Return the new claim: same identity and spec, target class, unbound."""
    metadata = run.claim.get("metadata") or {}
    spec = copy.deepcopy(dict(run.claim.get("spec") or {}))
    spec["storageClassName"] = run.target_storage_class
    spec.pop("volumeName", None)

    new_metadata: dict[str, Any] = {
        "name": run.claim_name,
        "namespace": run.namespace,
    }
    labels = metadata.get("labels")
    if labels:
        new_metadata["labels"] = dict(labels)
    annotations = filter_annotations(metadata.get("annotations"), reserved_prefixes)
    if annotations:
        new_metadata["annotations"] = annotations

    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": new_metadata,
        "spec": spec,
    }


def build_temp_claim(run: RunContext) -> dict[str, Any]:
    """Return the temporary claim bound by name to the old volume."""
    spec = run.claim.get("spec") or {}
    temp_spec: dict[str, Any] = {
        "storageClassName": run.source_storage_class,
        "volumeName": run.volume_name,
    }
    if spec.get("accessModes"):
        temp_spec["accessModes"] = list(spec["accessModes"])
    if spec.get("resources"):
        temp_spec["resources"] = copy.deepcopy(dict(spec["resources"]))
    if spec.get("volumeMode"):
        temp_spec["volumeMode"] = spec["volumeMode"]
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": {
            "name": run.identity.temp_claim_name(),
            "namespace": run.namespace,
        },
        "spec": temp_spec,
    }


def build_copy_job(run: RunContext, settings: CopyJobConfig) -> dict[str, Any]:
    """Return the Job that copies the old volume's contents onto the new one."""
    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": {
            "name": run.identity.copy_job_name(),
            "namespace": run.namespace,
        },
        "spec": {
            "backoffLimit": settings.backoff_limit,
            "template": {
                "spec": {
                    "restartPolicy": "Never",
                    "containers": [
                        {
                            "name": "rsync",
                            "image": settings.image,
                            "args": list(settings.command),
                            "volumeMounts": [
                                {"name": "old", "mountPath": OLD_MOUNT_PATH},
                                {"name": "new", "mountPath": NEW_MOUNT_PATH},
                            ],
                        }
                    ],
                    "volumes": [
                        {
                            "name": "old",
                            "persistentVolumeClaim": {
                                "claimName": run.identity.temp_claim_name()
                            },
                        },
                        {
                            "name": "new",
                            "persistentVolumeClaim": {"claimName": run.claim_name},
                        },
                    ],
                }
            },
        },
    }


__all__ = [
    "NEW_MOUNT_PATH",
    "OLD_MOUNT_PATH",
    "REMOVE_CLAIM_REF_PATCH",
    "RETAIN_PATCH",
    "build_copy_job",
    "build_replacement_claim",
    "build_temp_claim",
    "filter_annotations",
]
