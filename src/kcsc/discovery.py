"""Read-only discovery of the claim, its bound volume and the pods using it."""
from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from typing import Any

from .identity import RunIdentity
from .migration.models import RunContext
from .providers.kubernetes import (
    KubernetesError,
    Resource,
    ResourceClient,
    ResourceNotFoundError,
)


class DiscoveryError(RuntimeError):
    """Raised when the migration inputs cannot be resolved."""


def resolve_bound_volume(client: ResourceClient, claim: Mapping[str, Any]) -> Resource | None:
    """Return the Bound volume whose claimRef points at *claim*, if any."""
    claim_uid = _get_nested_str(claim, ["metadata", "uid"])
    if not claim_uid:
        return None
    for volume in client.list_volumes():
        if _get_nested_str(volume, ["status", "phase"]) != "Bound":
            continue
        if _get_nested_str(volume, ["spec", "claimRef", "uid"]) == claim_uid:
            return volume
    return None


def resolve_mounting_pods(
    client: ResourceClient,
    claim_name: str,
    namespace: str,
) -> list[Resource]:
    """Return the pods in *namespace* with a volume backed by *claim_name*."""
    result: list[Resource] = []
    for pod in client.list_pods(namespace):
        volumes = _get_nested_value(pod, ["spec", "volumes"])
        if not isinstance(volumes, Sequence):
            continue
        for volume in volumes:
            if not isinstance(volume, Mapping):
                continue
            if _get_nested_str(volume, ["persistentVolumeClaim", "claimName"]) == claim_name:
                result.append(pod)
                break
    return result


def pod_names(pods: Iterable[Mapping[str, Any]]) -> list[str]:
    """Return the names of *pods*, skipping entries without one."""
    names: list[str] = []
    for pod in pods:
        name = _get_nested_str(pod, ["metadata", "name"])
        if name:
            names.append(name)
    return names


def discover(
    client: ResourceClient,
    *,
    namespace: str,
    claim_name: str,
    target_storage_class: str,
    identity: RunIdentity,
) -> RunContext:
    """Resolve everything a migration needs or raise :class:`DiscoveryError`."""
    try:
        claim = client.read_claim(namespace, claim_name)
    except ResourceNotFoundError as exc:
        raise DiscoveryError(
            f"PersistentVolumeClaim {namespace}/{claim_name} does not exist."
        ) from exc
    except KubernetesError as exc:
        raise DiscoveryError(
            f"Unable to read PersistentVolumeClaim {namespace}/{claim_name}: {exc}"
        ) from exc

    if not _get_nested_str(claim, ["metadata", "uid"]):
        raise DiscoveryError(f"PersistentVolumeClaim {namespace}/{claim_name} has no uid.")
    if not isinstance(claim.get("spec"), Mapping):
        raise DiscoveryError(f"PersistentVolumeClaim {namespace}/{claim_name} has no spec.")

    try:
        volume = resolve_bound_volume(client, claim)
        pods = resolve_mounting_pods(client, claim_name, namespace)
    except KubernetesError as exc:
        raise DiscoveryError(f"Unable to inspect the cluster: {exc}") from exc

    if volume is None:
        raise DiscoveryError(
            f"No Bound PersistentVolume found for PersistentVolumeClaim "
            f"{namespace}/{claim_name}."
        )
    volume_name = _get_nested_str(volume, ["metadata", "name"])
    if not volume_name:
        raise DiscoveryError("The bound PersistentVolume has no name.")

    # "" is a real class: statically provisioned volumes bind without one.
    source_class = _get_nested_value(claim, ["spec", "storageClassName"])
    if source_class is None:
        source_class = _get_nested_value(volume, ["spec", "storageClassName"])
    if not isinstance(source_class, str):
        raise DiscoveryError(
            f"Cannot determine the current storage class of {namespace}/{claim_name}."
        )
    if source_class == target_storage_class:
        raise DiscoveryError(
            f"PersistentVolumeClaim {namespace}/{claim_name} already uses storage class "
            f"'{target_storage_class}'."
        )

    return RunContext(
        identity=identity,
        namespace=namespace,
        claim_name=claim_name,
        target_storage_class=target_storage_class,
        source_storage_class=source_class,
        claim=claim,
        volume=volume,
        volume_name=volume_name,
        mounting_pods=pod_names(pods),
    )


def _get_nested_value(payload: Mapping[str, object], path: list[str]) -> object | None:
    current: object = payload
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _get_nested_str(payload: Mapping[str, object], path: list[str]) -> str | None:
    value = _get_nested_value(payload, path)
    return value if isinstance(value, str) else None


__all__ = [
    "DiscoveryError",
    "discover",
    "pod_names",
    "resolve_bound_volume",
    "resolve_mounting_pods",
]
