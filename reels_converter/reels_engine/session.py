import logging
import threading
from typing import Iterable, Optional

from .. import config
from .intake import IntakeResult, Upload, ingest
from .registry import JobRegistry
from .render import CodecEngineAdapter
from .results import ClearReport, ResultAccess
from .schemas import BatchSettings
from .store import BinaryStore
from .worker import BatchOrchestrator

logger = logging.getLogger(__name__)


class ConversionSession:
    """
    Everything one converter session owns: the jobs, their bytes, the batch
    duration, the orchestrator and the result layer.

    Create one at application start and pass it around; `close()` releases
    every job's resources.
    """

    def __init__(self, adapter: Optional[CodecEngineAdapter] = None, duration: Optional[float] = None):
        self.lock = threading.RLock()
        self.store = BinaryStore()
        self.registry = JobRegistry()
        self.adapter = adapter or CodecEngineAdapter()
        settings = BatchSettings(duration=config.normalize_duration(duration or config.DEFAULT_DURATION))
        self.orchestrator = BatchOrchestrator(self.registry, self.store, self.adapter, self.lock, settings)
        self.results = ResultAccess(self.registry, self.store, self.lock)

    def ingest(self, uploads: Iterable[Upload]) -> IntakeResult:
        return ingest(self, uploads)

    def close(self) -> ClearReport:
        report = self.results.clear_all_and_release()
        logger.info("Conversion session closed")
        return report
