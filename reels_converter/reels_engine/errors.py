"""Error taxonomy for the reels conversion engine."""

from __future__ import annotations


class ReelsError(Exception):
    """Base class for every error raised by the engine."""


class ValidationError(ReelsError):
    """An uploaded file was rejected at intake."""

    def __init__(self, filename: str, reason: str):
        super().__init__(reason)
        self.filename = filename
        self.reason = reason


class NotFound(ReelsError):
    """Bytes or a handle are not (or no longer) retained."""


class JobNotFound(NotFound):
    """No job with the given id exists in the registry."""

    def __init__(self, job_id: str):
        super().__init__(f"Job not found: {job_id}")
        self.job_id = job_id


class ConversionFailed(ReelsError):
    """The codec engine could not produce a video. Carries a readable cause."""

    def __init__(self, cause: str):
        super().__init__(cause)
        self.cause = cause


class NotReady(ReelsError):
    """A result was requested for a job that has not completed."""


class InvalidTransition(ReelsError):
    """A job status change violates the job state machine."""


class RunInProgress(ReelsError):
    """A batch run is already active."""
