from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class JobHandle:
    """Live loop for one job: the running task plus a wake-up signal for paused workers."""

    job_id: int
    task: Optional[asyncio.Task] = None
    wake: asyncio.Event = field(default_factory=asyncio.Event)


class ActiveJobRegistry:
    """
    Process-local record of the job loops running in this process.

    Built once per process and handed to the processor and to the status
    endpoints. It is not persisted: after a restart a job row can still say
    ``processing`` while nothing here knows about it, which is how interrupted
    jobs are detected.
    """

    def __init__(self) -> None:
        self._jobs: Dict[int, JobHandle] = {}

    def register(self, job_id: int) -> Optional[JobHandle]:
        """Returns None when a loop for ``job_id`` is already registered."""
        if job_id in self._jobs:
            return None
        handle = JobHandle(job_id=job_id)
        self._jobs[job_id] = handle
        return handle

    def unregister(self, job_id: int, handle: JobHandle) -> None:
        if self._jobs.get(job_id) is handle:
            del self._jobs[job_id]

    def get(self, job_id: int) -> Optional[JobHandle]:
        return self._jobs.get(job_id)

    def is_active(self, job_id: int) -> bool:
        return job_id in self._jobs

    def active_job_ids(self) -> List[int]:
        return sorted(self._jobs)

    def wake(self, job_id: int) -> None:
        handle = self._jobs.get(job_id)
        if handle is not None:
            handle.wake.set()

    def clear(self) -> None:
        self._jobs.clear()

    def __len__(self) -> int:
        return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        return job_id in self._jobs
