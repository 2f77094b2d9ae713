"""
Job Registry

Keeps generation jobs queryable while (and after) they run. The
orchestrator is the only writer; readers always receive copies.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from .state import GenerationJob

logger = logging.getLogger(__name__)


class JobStore(ABC):
    """Storage interface for generation jobs."""

    @abstractmethod
    def create(self, job: GenerationJob) -> GenerationJob:
        ...

    @abstractmethod
    def get(self, job_id: str) -> Optional[GenerationJob]:
        ...

    @abstractmethod
    def update(self, job_id: str, **changes) -> Optional[GenerationJob]:
        ...

    @abstractmethod
    def list_jobs(self) -> list[GenerationJob]:
        ...


class InMemoryJobStore(JobStore):
    """
    Bounded in-process job store.

    Beyond ``max_jobs`` the oldest finished jobs are evicted. Running jobs are
    never evicted; while every stored job is still running the store grows
    past ``max_jobs`` and is trimmed on a later create once runs finish.
    """

    def __init__(self, max_jobs: int = 200):
        self.max_jobs = max_jobs
        self._jobs: "OrderedDict[str, GenerationJob]" = OrderedDict()
        self._lock = threading.Lock()

    def create(self, job: GenerationJob) -> GenerationJob:
        with self._lock:
            if job.job_id in self._jobs:
                raise ValueError(f"Job {job.job_id} already exists")
            self._jobs[job.job_id] = replace(job)
            self._evict()
            return replace(job)

    def get(self, job_id: str) -> Optional[GenerationJob]:
        with self._lock:
            job = self._jobs.get(job_id)
            return replace(job) if job else None

    def update(self, job_id: str, **changes) -> Optional[GenerationJob]:
        """
        Apply changes to a live job.

        Returns the updated copy, or None if the job is unknown or already
        terminal (terminal jobs are immutable).
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                logger.warning(f"Update for unknown job {job_id}")
                return None
            if job.stage.is_terminal:
                logger.warning(f"Ignoring update to finished job {job_id} ({job.stage.value})")
                return None

            changes["updated_at"] = datetime.now(timezone.utc).isoformat()
            updated = replace(job, **changes)
            self._jobs[job_id] = updated
            return replace(updated)

    def list_jobs(self) -> list[GenerationJob]:
        with self._lock:
            return [replace(job) for job in self._jobs.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def _evict(self):
        while len(self._jobs) > self.max_jobs:
            finished = next(
                (job_id for job_id, job in self._jobs.items() if job.stage.is_terminal),
                None,
            )
            if finished is None:
                logger.warning(
                    f"Job store over capacity ({len(self._jobs)}/{self.max_jobs}), "
                    f"all jobs still running"
                )
                return
            del self._jobs[finished]
