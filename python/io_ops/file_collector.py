"""
File discovery for archive operations.

This module expands the user's selection of files and directories into the
flat, ordered list of regular files that will be written to the archive.
"""

import os
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set, Union
from colored_logger import get_colored_logger

logger = get_colored_logger(__name__)


class CollectionStats:
    """Container for file discovery statistics."""

    def __init__(self):
        self.total_files = 0
        self.total_size = 0
        self.skipped_dirs = 0
        self.skipped_entries = 0
        self.missing_roots = 0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary format."""
        return {
            "total_files": self.total_files,
            "total_size": self.total_size,
            "skipped_dirs": self.skipped_dirs,
            "skipped_entries": self.skipped_entries,
            "missing_roots": self.missing_roots,
        }

    def add_file(self, file_path: Path) -> None:
        """Record a discovered regular file."""
        self.total_files += 1
        try:
            self.total_size += file_path.stat().st_size
        except OSError:
            # Size is informational only; the copy step reports real failures
            pass

    def skip_dir(self) -> None:
        """Record a directory that could not be listed."""
        self.skipped_dirs += 1

    def skip_entry(self) -> None:
        """Record an entry that is neither a file nor a directory, or cannot be inspected."""
        self.skipped_entries += 1


class FileCollector:
    """
    Flattens a selection of roots into a list of regular files.

    Roots are expanded in input order. Directories are walked depth-first with
    an explicit stack, visiting children in the order the filesystem lists
    them. Unreadable directories are skipped with a warning; overlapping roots
    are not deduplicated.
    """

    def __init__(self):
        self.stats = CollectionStats()

    def collect(self, roots: Iterable[Union[str, Path]]) -> List[Path]:
        """Return every regular file under ``roots``, in discovery order."""
        self.stats = CollectionStats()
        files: List[Path] = []

        for root in roots:
            root_path = Path(root)
            kind = self._entry_kind(root_path)
            if kind is None:
                continue
            if kind == "dir":
                self._walk_directory(root_path, files)
            elif kind == "file":
                self._add_file(root_path, files)
            elif not root_path.exists():
                logger.warning("Selected path does not exist, skipping: %s", root_path)
                self.stats.missing_roots += 1
            else:
                logger.debug("Skipping special file: %s", root_path)
                self.stats.skip_entry()

        logger.info(
            "Collected %d files (%.2f MB), %d unreadable directories skipped",
            self.stats.total_files,
            self.stats.total_size / (1024 * 1024),
            self.stats.skipped_dirs,
        )
        return files

    def _add_file(self, file_path: Path, files: List[Path]) -> None:
        files.append(file_path)
        self.stats.add_file(file_path)

    def _entry_kind(self, path: Path) -> Optional[str]:
        """
        Classify ``path`` as "file", "dir" or "other".

        Returns None, after counting the entry as skipped, when the entry
        cannot even be inspected (a parent without search permission).
        """
        try:
            if path.is_file():
                return "file"
            if path.is_dir():
                return "dir"
        except OSError as e:
            logger.warning("Cannot access %s, skipping: %s", path, e)
            self.stats.skip_entry()
            return None
        return "other"

    def _list_directory(self, directory: Path) -> List[Path]:
        """List immediate children; an unreadable directory yields nothing."""
        try:
            return list(directory.iterdir())
        except OSError as e:
            logger.warning("Cannot list directory %s, skipping: %s", directory, e)
            self.stats.skip_dir()
            return []

    def _walk_directory(self, root: Path, files: List[Path]) -> None:
        # Canonical directories seen under this root; breaks symlink cycles
        visited: Set[str] = set()
        stack: List[Path] = [root]

        while stack:
            path = stack.pop()
            kind = self._entry_kind(path)

            if kind is None:
                continue

            if kind == "file":
                self._add_file(path, files)
                continue

            if kind != "dir":
                logger.trace("Skipping non-regular entry: %s", path)
                self.stats.skip_entry()
                continue

            canonical = os.path.realpath(path)
            if canonical in visited:
                logger.debug("Directory already visited, skipping: %s", path)
                continue
            visited.add(canonical)

            # Reversed so the first listed child is popped first
            stack.extend(reversed(self._list_directory(path)))
