"""Try-on job record and its lifecycle."""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, computed_field

from ..errors import InvalidTransitionError


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.SUCCEEDED, JobStatus.FAILED)


# queued -> running -> {succeeded, failed}, or queued -> {succeeded, failed}
ALLOWED_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.QUEUED: frozenset({JobStatus.RUNNING, JobStatus.SUCCEEDED, JobStatus.FAILED}),
    JobStatus.RUNNING: frozenset({JobStatus.SUCCEEDED, JobStatus.FAILED}),
    JobStatus.SUCCEEDED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TryOnJob(BaseModel):
    """Durable record of one try-on request."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    status: JobStatus = JobStatus.QUEUED
    provider: str
    provider_job_id: str | None = None

    # Storage paths of persisted outputs, in sample order
    result_refs: list[str] = Field(default_factory=list)
    # Vendor outputs that are known but not yet persisted
    pending_result_urls: list[str] = Field(default_factory=list)

    settings: dict[str, Any] = Field(default_factory=dict)
    # Result-cache fingerprint filled in once the job succeeds
    cache_key: str | None = None
    created_by: str | None = None
    error_message: str | None = None

    created_at: datetime = Field(default_factory=_now)
    updated_at: datetime = Field(default_factory=_now)

    @computed_field
    @property
    def result_ref(self) -> str | None:
        """Storage path of the first result."""
        return self.result_refs[0] if self.result_refs else None

    def can_transition(self, target: JobStatus) -> bool:
        return target in ALLOWED_TRANSITIONS[self.status]

    def transition(self, target: JobStatus, **changes: Any) -> "TryOnJob":
        """Move to `target`, applying field changes. Terminal states never move."""
        if not self.can_transition(target):
            raise InvalidTransitionError(
                f"Job {self.id}: cannot move from {self.status.value} to {target.value}"
            )
        for name, value in changes.items():
            setattr(self, name, value)
        self.status = target
        self.updated_at = _now()
        return self

    def touch(self, **changes: Any) -> "TryOnJob":
        """Update fields without a state change. Not allowed once terminal."""
        if self.status.is_terminal:
            raise InvalidTransitionError(f"Job {self.id} is {self.status.value} and immutable")
        for name, value in changes.items():
            setattr(self, name, value)
        self.updated_at = _now()
        return self
