"""
Exceptions raised while building an archive.

Every I/O failure that aborts a run derives from ArchiveError, which is an
OSError so callers that already catch I/O errors keep working. Cancellation
is deliberately not an OSError: it is an outcome, not a failure.
"""

from pathlib import Path
from typing import Optional, Union


class ArchiveError(OSError):
    """Base class for failures that abort an archive run."""

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None):
        super().__init__(message)
        self.message = message
        self.path = str(path) if path is not None else None

    def __str__(self) -> str:
        return self.message


class SourceUnreadableError(ArchiveError):
    """A source file vanished or became unreadable after it was collected."""


class DestinationUnwritableError(ArchiveError):
    """The destination archive or its parent directory cannot be created."""


class WriteFailedError(ArchiveError):
    """Writing to the archive stream failed mid-run (disk full, stream error)."""


class ArchiveCancelledError(Exception):
    """Raised between entries when a run has been cancelled."""


class TaskAlreadyRunningError(RuntimeError):
    """A task was started twice, or its destination is in use by another task."""
