"""kcsc: move a Kubernetes PersistentVolumeClaim to another storage class."""
from __future__ import annotations

__all__ = ["__version__", "get_version"]

# Keep in sync with ``version`` in pyproject.toml.
__version__ = "0.1.0"


def get_version() -> str:
    """Return the current package version."""
    return __version__
