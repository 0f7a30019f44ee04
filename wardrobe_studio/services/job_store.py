"""Durable job records. The store persists; the orchestrator owns lifecycle."""

from typing import Protocol

from ..models import TryOnJob


class JobStore(Protocol):
    async def save(self, job: TryOnJob) -> TryOnJob:
        ...

    async def get(self, job_id: str) -> TryOnJob | None:
        ...


class InMemoryJobStore:
    """Process-local job store. Last write wins."""

    def __init__(self):
        self._jobs: dict[str, TryOnJob] = {}

    async def save(self, job: TryOnJob) -> TryOnJob:
        self._jobs[job.id] = job.model_copy(deep=True)
        return job

    async def get(self, job_id: str) -> TryOnJob | None:
        job = self._jobs.get(job_id)
        return job.model_copy(deep=True) if job is not None else None

    def __len__(self) -> int:
        return len(self._jobs)
