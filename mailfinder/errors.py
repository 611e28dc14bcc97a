"""Exception hierarchy shared by the orchestrator and its collaborators."""

from typing import List, Optional


class ExtractionError(Exception):
    """Base class for extraction errors raised to callers."""
    pass


class AdmissionError(ExtractionError):
    """Raised when a submission fails URL admission control."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = list(errors or [])


class QuotaExceededError(ExtractionError):
    """Raised when the quota gate denies a submission."""

    def __init__(self, message: str, decision=None):
        super().__init__(message)
        self.decision = decision


class ExtractionTimeoutError(ExtractionError):
    """Raised when the per-URL cascade exceeds its ceiling."""
    pass


class JobNotFoundError(ExtractionError):
    """Raised when a job id is unknown to the progress store."""
    pass


class ProgressStoreError(Exception):
    """Raised when the progress store cannot persist an update."""
    pass
