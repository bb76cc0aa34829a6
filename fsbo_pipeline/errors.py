from __future__ import annotations


class PipelineError(Exception):
    """Root of every error raised on purpose by this package."""


class UnsupportedPlatformError(PipelineError):
    pass


class RemoteError(PipelineError):
    pass


class RemoteClientError(RemoteError):
    """The remote API rejected a request (4xx other than 429)."""


class RemoteTransientError(RemoteError):
    """Network hiccup, 429 or 5xx; safe to retry."""


class RemoteJobError(RemoteError):
    def __init__(self, message: str, *, run_id: str, status: str) -> None:
        super().__init__(message)
        self.run_id = run_id
        self.status = status


class RemoteJobFailed(RemoteJobError):
    pass


class RemoteJobTimeout(RemoteJobError):
    def __init__(self, message: str, *, run_id: str, status: str, waited_seconds: float) -> None:
        super().__init__(message, run_id=run_id, status=status)
        self.waited_seconds = waited_seconds


class RemoteJobCancelled(RemoteJobError):
    pass


class ResultsPageError(RemoteError):
    def __init__(self, message: str, *, run_id: str, page: int) -> None:
        super().__init__(message)
        self.run_id = run_id
        self.page = page
