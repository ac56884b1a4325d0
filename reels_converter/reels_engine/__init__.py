"""
Batch image-to-reel conversion engine: an in-memory job registry and binary
store, a sequential orchestrator, and an ffmpeg adapter that renders each
image into a 1080x1920 MP4 clip.
"""

from .errors import ConversionFailed, InvalidTransition, JobNotFound, NotFound, NotReady, RunInProgress, ValidationError
from .intake import Upload
from .render import CodecEngineAdapter
from .schemas import Job, JobStatus, RenderParams
from .session import ConversionSession

__all__ = [
    "CodecEngineAdapter",
    "ConversionFailed",
    "ConversionSession",
    "InvalidTransition",
    "Job",
    "JobNotFound",
    "JobStatus",
    "NotFound",
    "NotReady",
    "RenderParams",
    "RunInProgress",
    "Upload",
    "ValidationError",
]
