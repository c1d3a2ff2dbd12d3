"""In-memory job registry.

Holds the status of every job in this process, keyed by job id. The store
is passed to the job service rather than read as module state, so tests and
multiple apps in one process get isolated registries.
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

from pdf_size_chooser.engine.models import (
    EstimationCurve,
    QualityResolution,
    StructuralProfile,
    VerifiedResult,
)

logger = logging.getLogger(__name__)

# Job states
PENDING = "pending"
ESTIMATING = "estimating"
READY = "ready"
COMPRESSING = "compressing"
DONE = "done"
FAILED = "failed"

JOB_STATES = (PENDING, ESTIMATING, READY, COMPRESSING, DONE, FAILED)
ACTIVE_STATES = (PENDING, ESTIMATING, COMPRESSING)


@dataclass
class CompressionResult:
    """Output of one compression request."""

    output_path: Path
    compressed_bytes: int
    quality: int
    target_bytes: Optional[int] = None
    start_quality: Optional[int] = None
    attempt_count: int = 1
    guarantee_satisfied: Optional[bool] = None
    verified: Optional[VerifiedResult] = None


@dataclass
class Job:
    """Represents one uploaded document and the work done on it."""

    job_id: str
    original_filename: str
    original_size: int
    upload_path: Path
    status: str = PENDING
    created_at: float = field(default_factory=time.time)
    updated_at: float = field(default_factory=time.time)
    profile: Optional[StructuralProfile] = None
    curve: Optional[EstimationCurve] = None
    resolution: Optional[QualityResolution] = None
    compression: Optional[CompressionResult] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    progress: int = 0
    progress_message: Optional[str] = None
    cancel_event: threading.Event = field(default_factory=threading.Event, repr=False, compare=False)

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


def new_job_id() -> str:
    return str(uuid.uuid4())


class JobStore:
    """Thread-safe map of job id -> Job."""

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = threading.Lock()

    def create(
        self,
        original_filename: str,
        original_size: int,
        upload_path: Path,
        job_id: Optional[str] = None,
    ) -> Job:
        job = Job(
            job_id=job_id or new_job_id(),
            original_filename=original_filename,
            original_size=original_size,
            upload_path=Path(upload_path),
        )
        with self._lock:
            self._jobs[job.job_id] = job
        logger.info(f"[{job.job_id}] Job created ({original_filename}, {original_size / (1024 * 1024):.1f}MB)")
        return job

    def get(self, job_id: str) -> Optional[Job]:
        with self._lock:
            return self._jobs.get(job_id)

    def update(self, job_id: str, **changes: Any) -> Optional[Job]:
        """Apply field changes to a job. Returns None when the job is gone."""
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                return None
            for name, value in changes.items():
                if not hasattr(job, name):
                    raise AttributeError(f"Job has no field '{name}'")
                setattr(job, name, value)
            job.updated_at = time.time()

        if "status" in changes:
            logger.info(f"[{job_id}] Status updated: {changes['status']}")
        elif "progress" in changes:
            logger.debug(f"[{job_id}] Progress: {changes['progress']}% - {changes.get('progress_message') or ''}")
        return job

    def transition(self, job_id: str, allowed_from: tuple, status: str, **changes: Any) -> Optional[Job]:
        """Move a job to ``status`` only if it is currently in ``allowed_from``.

        Returns the job on success, None when the job is missing or in
        another state.
        """
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.status not in allowed_from:
                return None
            job.status = status
            for name, value in changes.items():
                setattr(job, name, value)
            job.updated_at = time.time()
        logger.info(f"[{job_id}] Status updated: {status}")
        return job

    def delete(self, job_id: str) -> Optional[Job]:
        with self._lock:
            job = self._jobs.pop(job_id, None)
        if job is not None:
            job.cancel_event.set()
            logger.info(f"[{job_id}] Job deleted")
        return job

    def purge_expired(self, ttl_seconds: float, now: Optional[float] = None) -> List[Job]:
        """Drop jobs created more than ``ttl_seconds`` ago and return them."""
        cutoff = (now if now is not None else time.time()) - ttl_seconds
        with self._lock:
            expired = [job for job in self._jobs.values() if job.created_at < cutoff]
            for job in expired:
                del self._jobs[job.job_id]
        for job in expired:
            job.cancel_event.set()
        if expired:
            logger.info(f"Cleaned up {len(expired)} expired jobs")
        return expired

    def recent(self, limit: int = 10) -> List[Job]:
        with self._lock:
            jobs = sorted(self._jobs.values(), key=lambda j: j.created_at, reverse=True)
        return jobs[:limit]

    def counts(self) -> Dict[str, int]:
        with self._lock:
            statuses = [job.status for job in self._jobs.values()]
        return {state: statuses.count(state) for state in JOB_STATES}

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)
