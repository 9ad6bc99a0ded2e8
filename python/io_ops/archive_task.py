"""
Background archive task.

ArchiveTask runs collection, naming and writing as a single unit of work on
a worker thread, so the caller's thread stays free to render progress. It
reports exactly one terminal result and always runs the caller's cleanup
hook afterwards, whatever the outcome.
"""

import os
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Optional, Set, Tuple, Union
from colored_logger import get_colored_logger

from .archive_errors import ArchiveCancelledError, ArchiveError, TaskAlreadyRunningError
from .archive_writers import DEFAULT_BUFFER_SIZE, ArchiveWriterFactory
from .entry_namer import EntryNamer, canonical_path
from .file_collector import FileCollector
from .path_utils import DestinationResolver
from .progress import ProgressReporter

logger = get_colored_logger(__name__)


class TaskState(Enum):
    """Archive task lifecycle state."""

    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class TaskResult:
    """Terminal outcome of one archive run."""

    state: TaskState
    destination: str
    started_at: datetime
    completed_at: Optional[datetime] = None
    entry_count: int = 0
    error: Optional[str] = None
    stats: Dict[str, Any] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.state is TaskState.SUCCEEDED

    @property
    def message(self) -> str:
        """Human-readable completion message for the caller."""
        if self.state is TaskState.SUCCEEDED:
            return f"Archive created successfully:\n{self.destination}"
        if self.state is TaskState.CANCELLED:
            return f"Compression cancelled:\n{self.destination}"
        return f"Error during compression:\n{self.error}"


ProgressCallback = Callable[[int], None]
CompletionCallback = Callable[[TaskResult], None]
CleanupCallback = Callable[[], None]


class ArchiveTask:
    """
    Compresses a fixed selection of files and directories into one archive.

    Lifecycle: IDLE -> RUNNING -> SUCCEEDED | FAILED | CANCELLED. A task runs
    once. Callbacks are invoked on the worker thread when started with
    start(), so consumers living on another thread must hand the values off
    themselves (a queue.Queue works well).
    """

    # Destinations currently being written by any task in this process
    _active_destinations: Set[str] = set()
    _registry_lock = threading.Lock()

    def __init__(
        self,
        sources: Iterable[Union[str, Path]],
        destination: Union[str, Path],
        archive_format: Optional[str] = None,
        on_progress: Optional[ProgressCallback] = None,
        on_complete: Optional[CompletionCallback] = None,
        on_finished: Optional[CleanupCallback] = None,
        settings: Any = None,
    ):
        """
        Args:
            sources: Files and directories selected by the user, in order
            destination: Output archive path; the extension is appended if missing
            archive_format: 'zip' or 'zstd' (defaults to settings, then 'zip')
            on_progress: Receives an integer percentage after every entry
            on_complete: Receives the TaskResult exactly once
            on_finished: Cleanup hook run after on_complete on every outcome
            settings: Optional Settings object (buffer size, default format)
        """
        self.sources: Tuple[Path, ...] = tuple(Path(os.path.abspath(s)) for s in sources)

        if archive_format is None:
            archive_format = getattr(settings, "archive_format", None) or "zip"
        if archive_format not in ArchiveWriterFactory.get_supported_formats():
            raise ValueError(f"Unsupported archive format: {archive_format}")
        self.archive_format = archive_format
        self.extension = ArchiveWriterFactory.get_extension(archive_format)
        self.buffer_size = getattr(settings, "buffer_size", None) or DEFAULT_BUFFER_SIZE

        self.resolver = DestinationResolver()
        self.destination = Path(
            os.path.abspath(self.resolver.ensure_extension(destination, self.extension))
        )

        self.on_progress = on_progress
        self.on_complete = on_complete
        self.on_finished = on_finished

        self.collector = FileCollector()
        self.progress: Optional[ProgressReporter] = None
        self.state = TaskState.IDLE
        self.result: Optional[TaskResult] = None

        self._state_lock = threading.Lock()
        self._cancel_event = threading.Event()
        self._done_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._destination_key = str(canonical_path(self.destination))
        self._started_at: Optional[datetime] = None

    def start(self) -> None:
        """Begin the run on a background thread and return immediately."""
        self._begin()
        self._thread = threading.Thread(
            target=self._run_guarded,
            name=f"archive-task-{self.destination.name}",
            daemon=True,
        )
        self._thread.start()

    def run(self) -> TaskResult:
        """Run synchronously on the current thread and return the result."""
        self._begin()
        self._run_guarded()
        return self.result

    def cancel(self) -> None:
        """Ask the run to stop before its next entry."""
        if not self._cancel_event.is_set():
            logger.info("Cancellation requested for %s", self.destination)
        self._cancel_event.set()

    def wait(self, timeout: Optional[float] = None) -> Optional[TaskResult]:
        """Block until the task has finished and its callbacks have run."""
        if self._done_event.wait(timeout):
            return self.result
        return None

    @property
    def is_running(self) -> bool:
        return self.state is TaskState.RUNNING

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    def _begin(self) -> None:
        with self._state_lock:
            if self.state is not TaskState.IDLE:
                raise TaskAlreadyRunningError(
                    f"Archive task for {self.destination} has already been started"
                )

            with ArchiveTask._registry_lock:
                if self._destination_key in ArchiveTask._active_destinations:
                    raise TaskAlreadyRunningError(
                        f"Another archive task is already writing {self.destination}"
                    )
                ArchiveTask._active_destinations.add(self._destination_key)

            self.state = TaskState.RUNNING
            self._started_at = datetime.now()

        logger.info(
            "Compressing %d item(s) into %s (%s)",
            len(self.sources),
            self.destination,
            self.archive_format.upper(),
        )

    def _release_destination(self) -> None:
        with ArchiveTask._registry_lock:
            ArchiveTask._active_destinations.discard(self._destination_key)

    def _emit_progress(self, percentage: int) -> None:
        if self.on_progress is not None:
            self.on_progress(percentage)

    def _execute(self) -> TaskResult:
        destination = self.resolver.prepare_destination(self.destination, self.extension)

        files = self.collector.collect(self.sources)
        if self._cancel_event.is_set():
            raise ArchiveCancelledError(
                f"Cancelled before writing {len(files)} collected files"
            )
        if not files:
            logger.warning("No files found in selection, writing an empty archive")

        entries = EntryNamer(self.sources).entries_for(files)
        self.progress = ProgressReporter(len(entries), self._emit_progress)

        writer = ArchiveWriterFactory.create_archive_writer(
            self.archive_format, self.buffer_size
        )
        archive_path = writer.write(
            entries,
            destination,
            on_entry_done=self.progress.advance,
            cancel_event=self._cancel_event,
        )

        return self._make_result(
            TaskState.SUCCEEDED, destination=archive_path, entry_count=len(entries)
        )

    def _make_result(self, state: TaskState, **kwargs) -> TaskResult:
        kwargs.setdefault("destination", str(self.destination))
        return TaskResult(
            state=state,
            started_at=self._started_at,
            completed_at=datetime.now(),
            stats=self.collector.stats.to_dict(),
            **kwargs,
        )

    def _run_guarded(self) -> None:
        try:
            result = self._execute()
            logger.success(
                "Archive created successfully: %s (%d entries)",
                result.destination,
                result.entry_count,
            )
        except ArchiveCancelledError as e:
            logger.notice("Archive cancelled: %s", e)
            result = self._make_result(TaskState.CANCELLED, error=str(e))
        except ArchiveError as e:
            logger.failure("Archive failed: %s", e)
            result = self._make_result(TaskState.FAILED, error=str(e))
        except Exception as e:
            logger.failure("Archive failed unexpectedly: %s", e)
            logger.debug("Full error details:", exc_info=True)
            result = self._make_result(TaskState.FAILED, error=str(e) or repr(e))
        finally:
            self._release_destination()

        self._finish(result)

    def _finish(self, result: TaskResult) -> None:
        with self._state_lock:
            self.result = result
            self.state = result.state

        try:
            if self.on_complete is not None:
                try:
                    self.on_complete(result)
                except Exception as e:
                    logger.error("Completion callback raised: %s", e)
                    logger.debug("Full error details:", exc_info=True)
        finally:
            try:
                if self.on_finished is not None:
                    self.on_finished()
            finally:
                self._done_event.set()
