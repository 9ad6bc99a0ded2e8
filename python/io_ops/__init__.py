# Archive pipeline components
from .archive_errors import (
    ArchiveError,
    SourceUnreadableError,
    DestinationUnwritableError,
    WriteFailedError,
    ArchiveCancelledError,
    TaskAlreadyRunningError,
)
from .file_collector import FileCollector, CollectionStats
from .entry_namer import EntryNamer, ArchiveEntry, canonical_path
from .progress import ProgressReporter
from .archive_writers import (
    ArchiveWriter,
    ZipArchiveWriter,
    ZstdArchiveWriter,
    ArchiveWriterFactory,
)
from .path_utils import DestinationResolver, TempFileManager

# Orchestration
from .archive_task import ArchiveTask, TaskState, TaskResult

__all__ = [
    # Errors
    "ArchiveError",
    "SourceUnreadableError",
    "DestinationUnwritableError",
    "WriteFailedError",
    "ArchiveCancelledError",
    "TaskAlreadyRunningError",
    # File discovery
    "FileCollector",
    "CollectionStats",
    # Entry naming
    "EntryNamer",
    "ArchiveEntry",
    "canonical_path",
    # Progress
    "ProgressReporter",
    # Archive writing
    "ArchiveWriter",
    "ZipArchiveWriter",
    "ZstdArchiveWriter",
    "ArchiveWriterFactory",
    # Path utilities
    "DestinationResolver",
    "TempFileManager",
    # Orchestration
    "ArchiveTask",
    "TaskState",
    "TaskResult",
]
