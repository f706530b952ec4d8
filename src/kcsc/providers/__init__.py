"""Provider interfaces for kcsc."""
from __future__ import annotations

from .kubernetes import (
    KubernetesError,
    KubernetesProvider,
    Resource,
    ResourceClient,
    ResourceNotFoundError,
)

__all__ = [
    "KubernetesError",
    "KubernetesProvider",
    "Resource",
    "ResourceClient",
    "ResourceNotFoundError",
]
