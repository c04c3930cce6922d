"""Errores del dominio de generación."""


class GenerationError(Exception):
    """Base class for every failure raised while producing a generation."""


class ValidationError(GenerationError, ValueError):
    """Raised when generation parameters are malformed. Never retried."""


class MaskSurfaceError(GenerationError):
    """Raised when the mask surface is used before an image is bound."""


class UploadError(GenerationError):
    """Raised when the backend rejects an asset upload."""


class SubmissionError(GenerationError):
    """Raised when the backend rejects a workflow submission."""


class PollTransientError(GenerationError):
    """A single status poll failed; the job runner keeps polling."""


class BackendExecutionError(GenerationError):
    """The backend reported that the job failed."""

    def __init__(self, message: str, job=None):
        super().__init__(message)
        self.job = job


class GenerationTimeoutError(GenerationError, TimeoutError):
    """No terminal status was observed before the polling ceiling."""

    def __init__(self, message: str, job=None):
        super().__init__(message)
        self.job = job
