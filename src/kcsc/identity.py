"""Per-invocation identity used to name temporary resources."""
from __future__ import annotations

import uuid
from dataclasses import dataclass

DEFAULT_PREFIX = "csc"


@dataclass(slots=True, frozen=True)
class RunIdentity:
    """Unique token for one migration run.

    Temporary resources embed the token so that repeated or historical runs
    never collide, and so leftovers can be traced back to the run that
    created them.
    """

    token: str
    prefix: str = DEFAULT_PREFIX

    @classmethod
    def generate(cls, prefix: str = DEFAULT_PREFIX) -> RunIdentity:
        """Return a new identity backed by a random UUID."""
        return cls(token=str(uuid.uuid4()), prefix=prefix)

    def temp_claim_name(self) -> str:
        """Name of the claim that temporarily mounts the old volume."""
        return f"{self.prefix}-{self.token}-old-data"

    def copy_job_name(self) -> str:
        """Name of the Job that copies data between the volumes."""
        return f"{self.prefix}-{self.token}-copy-data"


__all__ = ["DEFAULT_PREFIX", "RunIdentity"]
