"""
Path utilities for archive operations.

This module normalizes destination paths and handles the temporary file an
archive is written to before it is moved into place.
"""

import os
from pathlib import Path
from typing import Union
from colored_logger import get_colored_logger

from .archive_errors import DestinationUnwritableError

logger = get_colored_logger(__name__)


class DestinationResolver:
    """Normalizes the user's destination into the path the archive is written to."""

    def ensure_extension(self, destination: Union[str, Path], extension: str) -> Path:
        """
        Append the expected extension unless the path already ends with it.

        The comparison ignores case, so ``BACKUP.ZIP`` is kept as is while
        ``backup.tar`` becomes ``backup.tar.zip``.
        """
        path = Path(destination)

        if not path.name.lower().endswith(extension.lower()):
            path = path.with_name(path.name + extension)

        return path

    def prepare_destination(
        self, destination: Union[str, Path], extension: str
    ) -> Path:
        """Return the absolute, extension-normalized destination with its parent created."""
        path = Path(os.path.abspath(self.ensure_extension(destination, extension)))

        if path.is_dir():
            raise DestinationUnwritableError(
                f"Destination is a directory: {path}", path
            )

        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DestinationUnwritableError(
                f"Cannot create destination directory {path.parent}: {e}", path.parent
            ) from e

        return path


class TempFileManager:
    """Manages the temporary file an archive is streamed into."""

    @staticmethod
    def generate_temp_path(base_path: Union[str, Path], suffix: str = "tmp") -> Path:
        """Generate a temporary sibling path for ``base_path``."""
        return Path(f"{base_path}.{suffix}.{os.getpid()}")

    @staticmethod
    def cleanup_temp_file(temp_path: Union[str, Path]) -> None:
        """Remove a leftover temporary file, logging rather than raising."""
        if os.path.exists(temp_path):
            try:
                os.remove(temp_path)
            except OSError as e:
                logger.debug("Failed to cleanup temp file %s: %s", temp_path, e)

    @staticmethod
    def atomic_move(src_path: Union[str, Path], dest_path: Union[str, Path]) -> None:
        """Move the finished archive onto its destination, replacing any old file."""
        try:
            os.replace(src_path, dest_path)
        except OSError as e:
            logger.error("Failed to move %s to %s: %s", src_path, dest_path, e)
            raise DestinationUnwritableError(
                f"Cannot move archive into place at {dest_path}: {e}", dest_path
            ) from e
