"""
Image intake: validate uploaded files and turn each accepted one into a job.

Files are judged independently; one bad file never blocks the rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, List

from .. import config
from .errors import ValidationError
from .schemas import Job, Kind
from .utils import display_name

if TYPE_CHECKING:
    from .session import ConversionSession

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Upload:
    filename: str
    content_type: str
    data: bytes


@dataclass(frozen=True)
class Rejection:
    filename: str
    reason: str

    def to_dict(self) -> dict:
        return {"filename": self.filename, "reason": self.reason}


@dataclass
class IntakeResult:
    accepted: List[Job] = field(default_factory=list)
    rejected: List[Rejection] = field(default_factory=list)


def validate_upload(upload: Upload, max_bytes: int = config.MAX_UPLOAD_BYTES) -> None:
    name = display_name(upload.filename)
    if not (upload.content_type or "").lower().startswith("image/"):
        raise ValidationError(name, f"{name} is not an image file")
    if len(upload.data) == 0:
        raise ValidationError(name, f"{name} is empty")
    if len(upload.data) > max_bytes:
        limit_mb = max_bytes // (1024 * 1024)
        raise ValidationError(name, f"{name} exceeds {limit_mb}MB limit")


def ingest(session: "ConversionSession", uploads: Iterable[Upload]) -> IntakeResult:
    result = IntakeResult()
    for upload in uploads:
        try:
            validate_upload(upload)
        except ValidationError as e:
            logger.warning(f"Rejected upload: {e.reason}")
            result.rejected.append(Rejection(filename=e.filename, reason=e.reason))
            continue

        name = display_name(upload.filename)
        with session.lock:
            job_id = session.registry.new_id()
            preview = session.store.put(job_id, upload.data, Kind.SOURCE, upload.content_type)
            try:
                job = session.registry.create(name, preview, job_id=job_id)
            except Exception:
                session.store.remove(job_id)
                raise
        result.accepted.append(job)
    logger.info(f"Intake: {len(result.accepted)} accepted, {len(result.rejected)} rejected")
    return result
