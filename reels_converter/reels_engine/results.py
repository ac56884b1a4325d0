import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from .. import config
from .errors import JobNotFound, NotFound, NotReady
from .registry import JobRegistry
from .schemas import Job, JobStatus, Kind
from .store import BinaryStore
from .utils import suggested_video_name

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Download:
    job_id: str
    data: bytes
    filename: str
    mimetype: str = "video/mp4"


@dataclass
class ClearReport:
    released: List[str] = field(default_factory=list)
    failures: List[Tuple[str, str]] = field(default_factory=list)


class ResultAccess:
    """Completed outputs for download/playback, and release of everything a job owns."""

    def __init__(self, registry: JobRegistry, store: BinaryStore, lock: threading.RLock):
        self.registry = registry
        self.store = store
        self.lock = lock

    def get_downloadable(self, job_id: str) -> Download:
        with self.lock:
            job = self.registry.get(job_id)
            if job.status is not JobStatus.COMPLETED:
                raise NotReady(f"Job {job_id} is {job.status.value}; no video yet")
            data = self.store.get(job_id, Kind.OUTPUT)
        return Download(job_id=job_id, data=data, filename=suggested_video_name(job.source_name))

    def completed_downloads(self) -> List[Download]:
        downloads = []
        for job in self.registry.list():
            if job.status is not JobStatus.COMPLETED:
                continue
            try:
                downloads.append(self.get_downloadable(job.id))
            except (NotFound, NotReady):
                # Removed or replaced since the snapshot was taken.
                continue
        return downloads

    def download_all(
        self,
        deliver: Callable[[Download], None],
        delay: float = config.DOWNLOAD_STAGGER_SEC,
        sleep: Optional[Callable[[float], None]] = None,
    ) -> int:
        """Hand every completed video to `deliver`, waiting `delay` seconds between items."""
        sleep = sleep or time.sleep
        downloads = self.completed_downloads()
        for index, download in enumerate(downloads):
            if index and delay > 0:
                sleep(delay)
            deliver(download)
        return len(downloads)

    def remove_and_release(self, job_id: str) -> Job:
        with self.lock:
            try:
                job = self.registry.remove(job_id)
            except JobNotFound:
                # Nothing in the registry; make sure nothing keyed by the id lingers either.
                self.store.remove(job_id)
                raise
            self.store.remove(job_id)
        logger.info(f"Removed job {job_id} ({job.source_name})")
        return job

    def clear_all_and_release(self) -> ClearReport:
        report = ClearReport()
        with self.lock:
            for job in self.registry.list():
                try:
                    self.store.remove(job.id)
                    report.released.append(job.id)
                except Exception as e:
                    logger.exception(f"Failed to release resources for job {job.id}")
                    report.failures.append((job.id, str(e)))
            self.registry.clear()
            leftover = self.store.clear()
        if leftover:
            logger.warning(f"Released {leftover} orphaned store entries")
        logger.info(f"Cleared {len(report.released) + len(report.failures)} job(s)")
        return report
