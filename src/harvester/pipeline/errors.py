"""
Harvest Errors - Exception taxonomy shared by all pipeline stages.

Two families matter to the worker loop:
- TaskError: one page or one item failed. The task is logged and dropped.
- FatalError: the run cannot continue. The first one cancels the pipeline.

StorageError is raised by storage backends. The persistence stage decides
whether a failed flush is retried or escalated.
"""

from typing import Optional


class HarvestError(Exception):
    """Base class for all harvester errors."""
    pass


class TaskError(HarvestError):
    """A single page or item could not be processed."""
    pass


class FetchError(TaskError):
    """A network request failed for one URL."""

    def __init__(self, url: str, message: str, status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(f"{message} ({url})")


class ParseError(TaskError):
    """A payload could not be translated into pipeline data."""
    pass


class FatalError(HarvestError):
    """An unrecoverable condition that halts every stage."""
    pass


class AuthorizationError(FatalError):
    """The remote collection refuses our credentials."""

    def __init__(self, url: str, status_code: Optional[int] = None):
        self.url = url
        self.status_code = status_code
        super().__init__(f"Authorization failed with HTTP {status_code} ({url})")


class PersistenceFatalError(FatalError):
    """Records can no longer be committed to the snapshot."""

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        self.cause = cause
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class ShutdownRequested(FatalError):
    """An external signal asked the run to stop."""
    pass


class StorageError(HarvestError):
    """A snapshot could not be loaded, staged or committed."""
    pass
