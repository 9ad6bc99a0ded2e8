"""
Progress reporting for archive runs.

One percentage is emitted per completed entry, synchronously and without
rate limiting. Consumers that need coalescing (a progress bar redrawing at
most every few milliseconds, say) do it on their side.
"""

import threading
from typing import Callable, Optional
from colored_logger import get_colored_logger

logger = get_colored_logger(__name__)

ProgressSink = Callable[[int], None]


class ProgressReporter:
    """Thread-safe conversion of completed/total counts into percentages."""

    def __init__(self, total: int, sink: Optional[ProgressSink] = None):
        if total < 0:
            raise ValueError(f"total must be >= 0, got {total}")
        self.total = total
        self.sink = sink
        self.completed = 0
        self.last_percentage = 0
        self._lock = threading.Lock()

    @staticmethod
    def percentage(completed: int, total: int) -> int:
        """floor(completed / total * 100), or 0 when there is nothing to do."""
        if total <= 0:
            return 0
        completed = max(0, min(completed, total))
        # Integer arithmetic keeps 100 reserved for completed == total
        return (completed * 100) // total

    def advance(self, completed: int) -> int:
        """Record ``completed`` finished entries and emit the new percentage."""
        with self._lock:
            if completed < self.completed:
                raise ValueError(
                    f"progress cannot go backwards ({completed} < {self.completed})"
                )
            if completed > self.total:
                raise ValueError(
                    f"completed count {completed} exceeds total {self.total}"
                )

            self.completed = completed
            self.last_percentage = self.percentage(completed, self.total)
            logger.trace(
                "Progress %d/%d (%d%%)", completed, self.total, self.last_percentage
            )

            if self.sink is not None:
                self.sink(self.last_percentage)

            return self.last_percentage

    @property
    def finished(self) -> bool:
        return self.total > 0 and self.completed == self.total
