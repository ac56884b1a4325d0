from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    ERROR = "error"


class Kind(str, Enum):
    SOURCE = "source"
    OUTPUT = "output"


@dataclass(frozen=True)
class Handle:
    """Opaque lookup reference to bytes held by the binary store."""

    token: str
    job_id: str
    kind: Kind
    mimetype: str

    @property
    def url(self) -> str:
        return f"/media/{self.token}"


@dataclass(frozen=True)
class Job:
    id: str
    source_name: str
    preview_handle: Optional[Handle] = None
    output_handle: Optional[Handle] = None
    status: JobStatus = JobStatus.PENDING
    progress: int = 0
    error_detail: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    @property
    def eligible(self) -> bool:
        return self.status in (JobStatus.PENDING, JobStatus.ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source_name": self.source_name,
            "status": self.status.value,
            "progress": self.progress,
            "error": self.error_detail,
            "preview_url": self.preview_handle.url if self.preview_handle else None,
            "video_url": self.output_handle.url if self.output_handle else None,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class RenderParams:
    """ffmpeg parameters for one image-to-clip conversion.

    Everything except the duration is fixed for the 9:16 reels format.
    """

    duration_sec: float
    width: int = 1080
    height: int = 1920
    pix_fmt: str = "yuv420p"
    codec: str = "libx264"
    preset: str = "medium"
    crf: int = 23
    faststart: bool = True
    pad_color: str = "black"

    def __post_init__(self) -> None:
        if not self.duration_sec > 0:
            raise ValueError("duration_sec must be greater than zero")

    def video_filter(self) -> str:
        # Fit inside the box preserving aspect ratio, then center-pad to fill it.
        w, h = self.width, self.height
        return (
            f"scale={w}:{h}:force_original_aspect_ratio=decrease,"
            f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2:{self.pad_color},"
            "setsar=1"
        )

    def ffmpeg_args(self, input_path: str, output_path: str) -> List[str]:
        args = [
            "-loop", "1",
            "-i", input_path,
            "-t", f"{self.duration_sec:.3f}",
            "-vf", self.video_filter(),
            "-pix_fmt", self.pix_fmt,
            "-c:v", self.codec,
            "-preset", self.preset,
            "-crf", str(self.crf),
        ]
        if self.faststart:
            args += ["-movflags", "+faststart"]
        args.append(output_path)
        return args


@dataclass
class BatchSettings:
    duration: float = 3.2


@dataclass(frozen=True)
class BatchProgress:
    running: bool = False
    total: int = 0
    finished: int = 0
    succeeded: int = 0
    failed: int = 0
    current_job_id: Optional[str] = None
    current_progress: int = 0

    @property
    def percent(self) -> int:
        if self.total == 0:
            return 0
        done = self.finished * 100 + (self.current_progress if self.current_job_id else 0)
        return min(100, int(done / self.total))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "running": self.running,
            "total": self.total,
            "finished": self.finished,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "current_job_id": self.current_job_id,
            "current_progress": self.current_progress,
            "percent": self.percent,
        }


@dataclass
class RunSummary:
    completed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.completed) + len(self.failed) + len(self.skipped)
