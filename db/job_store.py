"""
In-memory job store.

One process-wide map of job_id -> JobRecord, guarded by a mutex so the
pipeline task, the approval gate and status readers never interleave a
read-modify-write on the same job. Records are frozen; every write swaps in
a new object, so a reader always holds a consistent snapshot.

Entries are never evicted and nothing survives a restart.
"""

import logging
import threading
from typing import Callable, Optional

from models.job import JobRecord, JobStatus, Result

logger = logging.getLogger(__name__)

# Sentinel: "leave the stored result as it is"
KEEP = object()


class JobExistsError(KeyError):
    """Raised by ``create`` when the job_id is already taken."""


class JobStore:
    def __init__(self) -> None:
        self._jobs: dict[str, JobRecord] = {}
        self._lock = threading.Lock()

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            return self._jobs.get(job_id)

    def set(self, job_id: str, record: JobRecord) -> None:
        with self._lock:
            self._jobs[job_id] = record

    def create(self, job_id: str, message: str = "Job accepted") -> JobRecord:
        """Insert a fresh ``pending`` record; refuses a job_id that already exists."""
        with self._lock:
            if job_id in self._jobs:
                raise JobExistsError(job_id)
            record = JobRecord(job_id=job_id, status=JobStatus.PENDING, message=message)
            self._jobs[job_id] = record
            return record

    def update(
        self,
        job_id: str,
        status: JobStatus,
        progress: int,
        message: str,
        result: "Result | None | object" = KEEP,
    ) -> JobRecord:
        """
        Write a progress update. Creates the record if missing and keeps the
        previously stored result unless ``result`` is given.
        """
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                current = JobRecord(job_id=job_id, status=status)
            changes = {"status": status, "progress": progress, "message": message}
            if result is not KEEP:
                changes["result"] = result
            record = current.evolve(**changes)
            self._jobs[job_id] = record

        logger.info(
            message,
            extra={"job_id": job_id, "status": status.value, "progress": progress},
        )
        return record

    def mutate(
        self,
        job_id: str,
        fn: Callable[[Optional[JobRecord]], JobRecord],
    ) -> JobRecord:
        """
        Atomically replace a record with ``fn(current)``.

        ``fn`` runs under the store lock and may raise to abort without
        writing anything. It must not block.
        """
        with self._lock:
            record = fn(self._jobs.get(job_id))
            self._jobs[job_id] = record
            return record

    def __contains__(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._jobs

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
