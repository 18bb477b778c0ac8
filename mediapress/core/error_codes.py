"""
Standardised error handling for MediaPress.

Every failure the pipeline knows about is a JobError carrying an ERR_* code.
Stage errors are caught at the orchestrator boundary and written to the job;
caller-misuse errors (missing job, missing prerequisite) are raised to the caller.
"""

from mediapress.core.constants import ErrorCode, RETRYABLE_ERRORS


class JobError(Exception):
    """Raised when a job encounters a known error condition."""

    def __init__(self, code: str, message: str, retryable: bool | None = None):
        self.code = code
        self.message = message
        # auto-detect retryable from code if not explicitly set
        self.retryable = retryable if retryable is not None else (code in RETRYABLE_ERRORS)
        super().__init__(f"[{code}] {message}")


class InvalidMediaError(JobError):
    """Source has zero duration, no audio track, or cannot be read."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.INVALID_MEDIA, message)


class MediaProcessingError(JobError):
    """ffmpeg/ffprobe failed twice in a row with identical options."""

    def __init__(self, message: str, diagnostic: str = ""):
        self.diagnostic = diagnostic
        if diagnostic:
            message = f"{message}: {diagnostic}"
        super().__init__(ErrorCode.MEDIA_PROCESSING, message)


class StorageError(JobError):
    def __init__(self, message: str):
        super().__init__(ErrorCode.STORAGE, message)


class ProviderError(JobError):
    """A single transcription or generative-text provider call failed."""

    def __init__(self, message: str, retryable: bool = True,
                 status_code: int | None = None):
        self.status_code = status_code
        self.attempts = 1
        super().__init__(ErrorCode.PROVIDER, message, retryable=retryable)


class TranscriptionError(JobError):
    def __init__(self, message: str, chunk_index: int | None = None, attempts: int = 0):
        self.chunk_index = chunk_index
        self.attempts = attempts
        if chunk_index is not None:
            message = f"Chunk {chunk_index} failed after {attempts} attempt(s): {message}"
        super().__init__(ErrorCode.TRANSCRIPTION, message)


class SummarizationError(JobError):
    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(ErrorCode.SUMMARIZATION,
                         f"Summarization failed after {attempts} attempt(s): {message}")


class ArticleGenerationError(JobError):
    def __init__(self, message: str, attempts: int = 0):
        self.attempts = attempts
        super().__init__(ErrorCode.ARTICLE,
                         f"Article generation failed after {attempts} attempt(s): {message}")


class MissingPrerequisiteError(JobError):
    def __init__(self, step: int, message: str):
        self.step = step
        super().__init__(ErrorCode.MISSING_PREREQUISITE, message)


class ConcurrencyConflictError(JobError):
    """The job is owned by a newer run; the current run must stop quietly."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.CONCURRENCY_CONFLICT, message)


class JobNotFoundError(JobError):
    def __init__(self, job_id: str):
        self.job_id = job_id
        super().__init__(ErrorCode.JOB_NOT_FOUND, f"Job not found: {job_id}")


def is_retryable_status(status_code: int) -> bool:
    """429, 408 and 5xx are transient; every other 4xx (400/401/403...) is not."""
    return status_code in (408, 429) or status_code >= 500
