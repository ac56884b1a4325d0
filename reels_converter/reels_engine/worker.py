import dataclasses
import logging
import threading
from typing import List, Optional

from .. import config
from .errors import ConversionFailed, InvalidTransition, JobNotFound, NotFound, RunInProgress
from .registry import JobRegistry
from .render import CodecEngineAdapter
from .schemas import BatchProgress, BatchSettings, Job, JobStatus, Kind, RenderParams, RunSummary
from .store import BinaryStore

logger = logging.getLogger(__name__)


class BatchOrchestrator:
    """
    Drives eligible jobs through the codec engine one at a time.

    Jobs run strictly in sequence on a single worker. The engine instance is
    shared and not proven safe for concurrent use, so there is no pool.
    """

    def __init__(
        self,
        registry: JobRegistry,
        store: BinaryStore,
        adapter: CodecEngineAdapter,
        lock: threading.RLock,
        settings: Optional[BatchSettings] = None,
    ):
        self.registry = registry
        self.store = store
        self.adapter = adapter
        self.lock = lock
        self.settings = settings or BatchSettings(duration=config.DEFAULT_DURATION)
        self._run_slot = threading.Lock()
        self._state_lock = threading.Lock()
        self._progress = BatchProgress()
        self.thread: Optional[threading.Thread] = None

    # ---- settings / status ----
    @property
    def is_running(self) -> bool:
        return self._run_slot.locked()

    @property
    def duration(self) -> float:
        return self.settings.duration

    def set_duration(self, value) -> float:
        duration = config.normalize_duration(value)
        with self._state_lock:
            if self.is_running:
                raise RunInProgress("Duration cannot change while a run is in progress")
            self.settings.duration = duration
        logger.info(f"Batch duration set to {duration}s")
        return duration

    def progress(self) -> BatchProgress:
        with self._state_lock:
            return self._progress

    def _update_progress(self, **changes) -> None:
        with self._state_lock:
            self._progress = dataclasses.replace(self._progress, **changes)

    # ---- runs ----
    def _claim(self, job_ids: Optional[List[str]] = None) -> List[str]:
        with self._state_lock:
            if not self._run_slot.acquire(blocking=False):
                raise RunInProgress("A batch run is already in progress")
        if job_ids is None:
            job_ids = [job.id for job in self.registry.eligible()]
        self._update_progress(running=True, total=len(job_ids), finished=0, succeeded=0, failed=0,
                              current_job_id=None, current_progress=0)
        return job_ids

    def _execute(self, job_ids: List[str]) -> RunSummary:
        summary = RunSummary()
        try:
            params = RenderParams(duration_sec=self.settings.duration)
            logger.info(f"Starting batch run: {len(job_ids)} job(s), duration {params.duration_sec}s")
            for job_id in job_ids:
                outcome = self._process(job_id, params)
                getattr(summary, outcome).append(job_id)
                p = self.progress()
                self._update_progress(
                    finished=p.finished + 1,
                    succeeded=p.succeeded + (outcome == "completed"),
                    failed=p.failed + (outcome == "failed"),
                    current_job_id=None,
                    current_progress=0,
                )
            logger.info(
                f"Batch run finished: {len(summary.completed)} completed, "
                f"{len(summary.failed)} failed, {len(summary.skipped)} skipped"
            )
            return summary
        finally:
            self._update_progress(running=False, current_job_id=None, current_progress=0)
            self._run_slot.release()

    def run_all(self) -> RunSummary:
        """Convert every job that is pending or errored right now, in creation order."""
        return self._execute(self._claim())

    def start(self) -> threading.Thread:
        """Run `run_all` on a background thread. The run slot is taken before returning."""
        job_ids = self._claim()
        thread = threading.Thread(target=self._execute, args=(job_ids,), daemon=True, name="reels-batch")
        try:
            thread.start()
        except BaseException:
            self._update_progress(running=False, total=0, current_job_id=None, current_progress=0)
            self._run_slot.release()
            raise
        self.thread = thread
        return thread

    def convert(self, job_id: str) -> Job:
        """Run a single job. Unknown ids and non-eligible jobs are caller errors."""
        job = self.registry.get(job_id)
        if not job.eligible:
            raise InvalidTransition(f"Job {job_id} is {job.status.value}, not eligible for conversion")
        self._execute(self._claim([job_id]))
        return self.registry.get(job_id)

    # ---- one job ----
    def _process(self, job_id: str, params: RenderParams) -> str:
        try:
            job = self.registry.transition(job_id, JobStatus.PROCESSING, progress=0)
        except (JobNotFound, InvalidTransition) as e:
            logger.info(f"Skipping job {job_id}: {e}")
            return "skipped"

        self._update_progress(current_job_id=job_id, current_progress=0)
        logger.info(f"Converting {job.source_name} ({job_id})")

        def on_progress(percent: int) -> None:
            # Bound to this job only; a removed job just stops receiving updates.
            try:
                self.registry.transition(job_id, JobStatus.PROCESSING, progress=percent)
            except (JobNotFound, InvalidTransition):
                return
            self._update_progress(current_progress=percent)

        try:
            with self.store.lease(job_id, Kind.SOURCE) as data:
                output = self.adapter.convert(data, params, on_progress=on_progress)
        except NotFound as e:
            return self._fail(job_id, ConversionFailed(f"Source image not available: {e}"))
        except ConversionFailed as e:
            return self._fail(job_id, e)
        except Exception as e:
            logger.exception(f"Unexpected error converting job {job_id}")
            return self._fail(job_id, ConversionFailed(f"Unexpected error: {e}"))

        with self.lock:
            if job_id not in self.registry:
                logger.info(f"Job {job_id} was removed during conversion; discarding output")
                return "skipped"
            handle = self.store.put(job_id, output, Kind.OUTPUT, "video/mp4")
            self.registry.transition(job_id, JobStatus.COMPLETED, output_handle=handle)
        self._update_progress(current_progress=100)
        logger.info(f"Completed {job.source_name} ({job_id}): {len(output)} bytes")
        return "completed"

    def _fail(self, job_id: str, error: ConversionFailed) -> str:
        logger.error(f"Conversion failed for job {job_id}: {error.cause}")
        with self.lock:
            try:
                self.registry.transition(job_id, JobStatus.ERROR, error_detail=error.cause or "Conversion failed")
            except JobNotFound:
                return "skipped"
        return "failed"
