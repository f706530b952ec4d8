"""Kubernetes provider for the claim, volume, pod and Job operations."""
from __future__ import annotations

import logging
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, TypeVar

import urllib3
from kubernetes import client as k8s_client
from kubernetes import config as k8s_config
from kubernetes.client.exceptions import ApiException
from kubernetes.config.config_exception import ConfigException

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

# Objects travel through kcsc as plain mappings in API (camelCase) shape.
Resource = dict[str, Any]


class KubernetesError(RuntimeError):
    """Raised when a Kubernetes API call fails."""

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        reason: str | None = None,
        body: str | None = None,
    ) -> None:
        """Store the HTTP details that accompanied the failure, if any."""
        super().__init__(message)
        self.status = status
        self.reason = reason
        self.body = body


class ResourceNotFoundError(KubernetesError):
    """Raised when the requested object does not exist (HTTP 404)."""


class ResourceClient(Protocol):
    """Operations the migration needs from the cluster."""

    def read_claim(self, namespace: str, name: str) -> Resource: ...

    def create_claim(self, namespace: str, body: Mapping[str, Any]) -> Resource: ...

    def delete_claim(self, namespace: str, name: str) -> None: ...

    def list_pods(self, namespace: str) -> list[Resource]: ...

    def list_volumes(self) -> list[Resource]: ...

    def patch_volume(self, name: str, operations: Sequence[Mapping[str, Any]]) -> Resource: ...

    def create_job(self, namespace: str, body: Mapping[str, Any]) -> Resource: ...

    def read_job_status(self, namespace: str, name: str) -> Resource: ...

    def delete_job(self, namespace: str, name: str) -> None: ...


def _decode_body(body: object) -> str | None:
    if body is None:
        return None
    if isinstance(body, bytes):
        return body.decode("utf-8", errors="replace")
    return str(body)


@dataclass(slots=True)
class KubernetesProvider:
    """:class:`ResourceClient` backed by the official ``kubernetes`` client."""

    api_client: k8s_client.ApiClient
    core_api: k8s_client.CoreV1Api
    batch_api: k8s_client.BatchV1Api

    @classmethod
    def from_api_client(cls, api_client: k8s_client.ApiClient) -> KubernetesProvider:
        """Build a provider sharing *api_client* between the API groups."""
        return cls(
            api_client=api_client,
            core_api=k8s_client.CoreV1Api(api_client),
            batch_api=k8s_client.BatchV1Api(api_client),
        )

    @classmethod
    def from_kubeconfig(
        cls,
        context: str,
        *,
        config_file: Path | None = None,
    ) -> KubernetesProvider:
        """Load *context* from the kubeconfig and return a provider for it."""
        try:
            api_client = k8s_config.new_client_from_config(
                config_file=str(config_file) if config_file is not None else None,
                context=context,
            )
        except (ConfigException, OSError) as exc:
            raise KubernetesError(f"Unable to load kubeconfig context '{context}': {exc}") from exc
        LOGGER.debug("Loaded kubeconfig context %s", context)
        return cls.from_api_client(api_client)

    # ------------------------------------------------------------------
    def read_claim(self, namespace: str, name: str) -> Resource:
        """Return the claim *name* in *namespace*."""
        result = self._call(
            f"read PersistentVolumeClaim {namespace}/{name}",
            self.core_api.read_namespaced_persistent_volume_claim,
            name,
            namespace,
        )
        return self._to_dict(result)

    def create_claim(self, namespace: str, body: Mapping[str, Any]) -> Resource:
        """Create a claim from *body* in *namespace*."""
        name = _manifest_name(body)
        result = self._call(
            f"create PersistentVolumeClaim {namespace}/{name}",
            self.core_api.create_namespaced_persistent_volume_claim,
            namespace,
            dict(body),
        )
        return self._to_dict(result)

    def delete_claim(self, namespace: str, name: str) -> None:
        """Request deletion of the claim; does not wait for it to disappear."""
        self._call(
            f"delete PersistentVolumeClaim {namespace}/{name}",
            self.core_api.delete_namespaced_persistent_volume_claim,
            name,
            namespace,
        )

    def list_pods(self, namespace: str) -> list[Resource]:
        """Return all pods in *namespace*."""
        result = self._call(
            f"list Pods in {namespace}",
            self.core_api.list_namespaced_pod,
            namespace,
        )
        return [self._to_dict(item) for item in result.items or []]

    def list_volumes(self) -> list[Resource]:
        """Return every PersistentVolume in the cluster."""
        result = self._call("list PersistentVolumes", self.core_api.list_persistent_volume)
        return [self._to_dict(item) for item in result.items or []]

    def patch_volume(self, name: str, operations: Sequence[Mapping[str, Any]]) -> Resource:
        """Apply JSON-patch *operations* to the volume *name*."""
        # A list body makes the client send application/json-patch+json.
        result = self._call(
            f"patch PersistentVolume {name}",
            self.core_api.patch_persistent_volume,
            name,
            [dict(operation) for operation in operations],
        )
        return self._to_dict(result)

    def create_job(self, namespace: str, body: Mapping[str, Any]) -> Resource:
        """Create a Job from *body* in *namespace*."""
        name = _manifest_name(body)
        result = self._call(
            f"create Job {namespace}/{name}",
            self.batch_api.create_namespaced_job,
            namespace,
            dict(body),
        )
        return self._to_dict(result)

    def read_job_status(self, namespace: str, name: str) -> Resource:
        """Return the Job including its ``status`` block."""
        result = self._call(
            f"read Job status {namespace}/{name}",
            self.batch_api.read_namespaced_job_status,
            name,
            namespace,
        )
        return self._to_dict(result)

    def delete_job(self, namespace: str, name: str) -> None:
        """Delete the Job and let the garbage collector remove its pods."""
        self._call(
            f"delete Job {namespace}/{name}",
            self.batch_api.delete_namespaced_job,
            name,
            namespace,
            propagation_policy="Background",
        )

    # ------------------------------------------------------------------
    def _to_dict(self, obj: object) -> Resource:
        payload = self.api_client.sanitize_for_serialization(obj)
        return payload if isinstance(payload, dict) else {}

    def _call(self, description: str, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        LOGGER.debug("kubernetes: %s", description)
        try:
            return func(*args, **kwargs)
        except ApiException as exc:
            body = _decode_body(exc.body)
            message = f"{description} failed (HTTP {exc.status} {exc.reason})"
            error_cls = ResourceNotFoundError if exc.status == 404 else KubernetesError
            raise error_cls(message, status=exc.status, reason=exc.reason, body=body) from exc
        except urllib3.exceptions.HTTPError as exc:
            raise KubernetesError(f"{description} failed: {exc}") from exc


def _manifest_name(body: Mapping[str, Any]) -> str:
    metadata = body.get("metadata")
    if isinstance(metadata, Mapping):
        name = metadata.get("name")
        if isinstance(name, str):
            return name
    return "<unnamed>"


__all__ = [
    "KubernetesError",
    "KubernetesProvider",
    "Resource",
    "ResourceClient",
    "ResourceNotFoundError",
]
