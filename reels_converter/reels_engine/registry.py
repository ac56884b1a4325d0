"""
Job registry: every known conversion job and its current state.

Records are immutable; each change replaces the whole record under the
registry lock, so readers never see a half-applied transition. `transition`
is the only way a job's status, progress or error detail changes.
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import time
import uuid
from typing import Callable, Dict, List, Optional, Set, Tuple

from .errors import InvalidTransition, JobNotFound
from .schemas import Handle, Job, JobStatus

logger = logging.getLogger(__name__)

Listener = Callable[[str, Job], None]

_ALLOWED: Set[Tuple[JobStatus, JobStatus]] = {
    (JobStatus.PENDING, JobStatus.PROCESSING),
    (JobStatus.ERROR, JobStatus.PROCESSING),
    (JobStatus.PROCESSING, JobStatus.PROCESSING),
    (JobStatus.PROCESSING, JobStatus.COMPLETED),
    (JobStatus.PROCESSING, JobStatus.ERROR),
}


class JobRegistry:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._jobs: Dict[str, Job] = {}
        self._listeners: List[Listener] = []

    # ---- listeners ----
    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, job: Job) -> None:
        with self._lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(event, job)
            except Exception:
                logger.exception("Registry listener failed on %s for job %s", event, job.id)

    # ---- creation / lookup ----
    def new_id(self) -> str:
        """A fresh random id. uuid4 keeps ids unique without remembering removed ones."""
        with self._lock:
            while True:
                job_id = f"v_{uuid.uuid4().hex}"
                if job_id not in self._jobs:
                    return job_id

    def create(self, source_name: str, preview_handle: Optional[Handle], job_id: Optional[str] = None) -> Job:
        with self._lock:
            job_id = job_id or self.new_id()
            if job_id in self._jobs:
                raise ValueError(f"Job id already in use: {job_id}")
            job = Job(id=job_id, source_name=source_name, preview_handle=preview_handle)
            self._jobs[job_id] = job
        logger.debug("Created job %s for %s", job_id, source_name)
        self._notify("created", job)
        return job

    def get(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.get(job_id)
            if job is None:
                raise JobNotFound(job_id)
            return job

    def list(self) -> List[Job]:
        """Snapshot in creation order."""
        with self._lock:
            return list(self._jobs.values())

    def eligible(self) -> List[Job]:
        return [job for job in self.list() if job.eligible]

    def processing(self) -> Optional[Job]:
        with self._lock:
            for job in self._jobs.values():
                if job.status is JobStatus.PROCESSING:
                    return job
        return None

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)

    def __contains__(self, job_id: object) -> bool:
        with self._lock:
            return job_id in self._jobs

    # ---- state machine ----
    def transition(
        self,
        job_id: str,
        status: JobStatus,
        *,
        progress: Optional[int] = None,
        output_handle: Optional[Handle] = None,
        error_detail: Optional[str] = None,
    ) -> Job:
        status = JobStatus(status)
        with self._lock:
            job = self.get(job_id)
            if (job.status, status) not in _ALLOWED:
                raise InvalidTransition(f"Job {job_id}: {job.status.value} -> {status.value} is not allowed")

            changes: Dict[str, object] = {"status": status, "updated_at": time.time()}
            if status is JobStatus.PROCESSING:
                if job.status is JobStatus.PROCESSING:
                    value = job.progress if progress is None else int(progress)
                    if value < job.progress:
                        raise InvalidTransition(f"Job {job_id}: progress cannot go back from {job.progress} to {value}")
                    changes["progress"] = min(100, value)
                else:
                    other = self.processing()
                    if other is not None:
                        raise InvalidTransition(f"Job {other.id} is already processing")
                    changes.update(progress=0, error_detail=None, output_handle=None)
            elif status is JobStatus.COMPLETED:
                if output_handle is None:
                    raise InvalidTransition(f"Job {job_id}: completion requires an output handle")
                changes.update(progress=100, output_handle=output_handle, error_detail=None)
            else:
                if not error_detail:
                    raise InvalidTransition(f"Job {job_id}: an error needs a detail message")
                changes.update(error_detail=error_detail, output_handle=None)

            updated = dataclasses.replace(job, **changes)
            self._jobs[job_id] = updated
        self._notify("updated", updated)
        return updated

    # ---- removal ----
    def remove(self, job_id: str) -> Job:
        with self._lock:
            job = self._jobs.pop(job_id, None)
            if job is None:
                raise JobNotFound(job_id)
        self._notify("removed", job)
        return job

    def clear(self) -> List[Job]:
        with self._lock:
            jobs = list(self._jobs.values())
            self._jobs.clear()
        for job in jobs:
            self._notify("removed", job)
        return jobs
