"""
Archive writers for the supported compression formats.

A writer streams every ArchiveEntry into one compressed archive, in order,
reporting each completed entry through a callback. A run is all-or-nothing:
the archive is written to a temporary sibling and only moved onto the
destination once every entry has been written and the stream closed.
"""

import os
import stat
import tarfile
import threading
import time
import zipfile
from contextlib import contextmanager
from pathlib import Path
from typing import BinaryIO, Callable, Iterator, List, Optional, Sequence, Union

import zstandard as zstd
from colored_logger import get_colored_logger

from .archive_errors import (
    ArchiveCancelledError,
    ArchiveError,
    DestinationUnwritableError,
    SourceUnreadableError,
    WriteFailedError,
)
from .entry_namer import ArchiveEntry
from .path_utils import TempFileManager

logger = get_colored_logger(__name__)

DEFAULT_BUFFER_SIZE = 64 * 1024
MIN_BUFFER_SIZE = 4096
MAX_BUFFER_SIZE = 1024 * 1024

# Range of timestamps a ZIP header can store
ZIP_EPOCH = (1980, 1, 1, 0, 0, 0)
ZIP_LATEST = (2107, 12, 31, 23, 59, 58)

EntryCallback = Callable[[int], None]


class ArchiveWriter:
    """Base class holding the run loop shared by every format."""

    format_name = ""
    extension = ""

    def __init__(self, buffer_size: int = DEFAULT_BUFFER_SIZE):
        self.buffer_size = max(MIN_BUFFER_SIZE, min(buffer_size, MAX_BUFFER_SIZE))

    def write(
        self,
        entries: Sequence[ArchiveEntry],
        destination: Union[str, Path],
        on_entry_done: Optional[EntryCallback] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> str:
        """
        Write ``entries`` into a new archive at ``destination``.

        Args:
            entries: Entries to write, in archive order
            destination: Final archive path (extension already normalized)
            on_entry_done: Called with the 1-based count after each entry
            cancel_event: Checked before each entry; when set the run stops

        Returns:
            The destination path as a string

        Raises:
            SourceUnreadableError: A source file could not be read
            DestinationUnwritableError: The archive could not be created or moved into place
            WriteFailedError: Writing the archive stream failed
            ArchiveCancelledError: ``cancel_event`` was set
        """
        destination = Path(destination)
        temp_path = TempFileManager.generate_temp_path(destination)
        logger.debug(
            "Writing %d entries as %s to %s", len(entries), self.format_name, temp_path
        )

        try:
            with self._open_archive(temp_path) as archive:
                for index, entry in enumerate(entries, start=1):
                    if cancel_event is not None and cancel_event.is_set():
                        raise ArchiveCancelledError(
                            f"Cancelled after {index - 1} of {len(entries)} entries"
                        )

                    logger.debug("Adding %s as %s", entry.source_path, entry.archive_name)
                    self._add_entry(archive, entry)

                    if on_entry_done is not None:
                        on_entry_done(index)

            TempFileManager.atomic_move(temp_path, destination)

        except Exception:
            TempFileManager.cleanup_temp_file(temp_path)
            raise

        return str(destination)

    @contextmanager
    def _open_archive(self, temp_path: Path) -> Iterator[object]:
        raise NotImplementedError

    def _add_entry(self, archive: object, entry: ArchiveEntry) -> None:
        raise NotImplementedError

    @staticmethod
    def _open_source(entry: ArchiveEntry) -> BinaryIO:
        try:
            return open(entry.source_path, "rb")
        except OSError as e:
            raise SourceUnreadableError(
                f"Cannot read {entry.source_path}: {e.strerror or e}", entry.source_path
            ) from e

    @staticmethod
    def _stat_source(src_file: BinaryIO, entry: ArchiveEntry) -> os.stat_result:
        try:
            return os.fstat(src_file.fileno())
        except OSError as e:
            raise SourceUnreadableError(
                f"Cannot stat {entry.source_path}: {e.strerror or e}", entry.source_path
            ) from e

    def _read_chunk(
        self, src_file: BinaryIO, entry: ArchiveEntry, size: Optional[int] = None
    ) -> bytes:
        try:
            return src_file.read(size or self.buffer_size)
        except OSError as e:
            raise SourceUnreadableError(
                f"Error reading {entry.source_path}: {e.strerror or e}", entry.source_path
            ) from e


class ZipArchiveWriter(ArchiveWriter):
    """Writes DEFLATE-compressed ZIP archives, one streamed entry per file."""

    format_name = "zip"
    extension = ".zip"

    @contextmanager
    def _open_archive(self, temp_path: Path) -> Iterator[zipfile.ZipFile]:
        try:
            zipf = zipfile.ZipFile(
                temp_path,
                "w",
                zipfile.ZIP_DEFLATED,
                allowZip64=True,  # Support large archives
            )
        except OSError as e:
            raise DestinationUnwritableError(
                f"Cannot create archive {temp_path}: {e.strerror or e}", temp_path
            ) from e

        try:
            yield zipf
        except BaseException:
            # The archive is discarded; keep the original error visible
            try:
                zipf.close()
            except OSError as e:
                logger.debug("Error closing abandoned archive %s: %s", temp_path, e)
            raise

        try:
            # Writes the central directory; flushes and closes the file
            zipf.close()
        except OSError as e:
            raise WriteFailedError(f"Error finishing archive: {e}", temp_path) from e

    @staticmethod
    def _zip_name(archive_name: str) -> str:
        """
        ZIP names are stored as UTF-8. File names that are not valid UTF-8
        on disk arrive surrogate-escaped; their undecodable bytes become
        U+FFFD instead of failing the run.
        """
        encoded = os.fsencode(archive_name)
        name = encoded.decode("utf-8", "replace")
        if name != archive_name:
            logger.warning("File name is not valid UTF-8, stored as %r", name)
        return name

    def _zip_info_for(self, entry: ArchiveEntry, st: os.stat_result) -> zipfile.ZipInfo:
        date_time = time.localtime(st.st_mtime)[:6]
        date_time = max(ZIP_EPOCH, min(date_time, ZIP_LATEST))

        info = zipfile.ZipInfo(self._zip_name(entry.archive_name), date_time=date_time)
        info.compress_type = zipfile.ZIP_DEFLATED
        info.external_attr = (st.st_mode & 0xFFFF) << 16
        # Lets zipfile switch to ZIP64 headers up front for huge files
        info.file_size = st.st_size
        return info

    def _add_entry(self, archive: zipfile.ZipFile, entry: ArchiveEntry) -> None:
        with self._open_source(entry) as src_file:
            info = self._zip_info_for(entry, self._stat_source(src_file, entry))

            try:
                with archive.open(info, "w") as dst_file:
                    while True:
                        chunk = self._read_chunk(src_file, entry)
                        if not chunk:
                            break
                        dst_file.write(chunk)
            except ArchiveError:
                raise
            except OSError as e:
                raise WriteFailedError(
                    f"Error writing {entry.archive_name} to archive: {e.strerror or e}",
                    entry.source_path,
                ) from e


class _SourceReader:
    """Source wrapper for tarfile that classifies read errors and short reads."""

    def __init__(self, writer: ArchiveWriter, src_file: BinaryIO, entry: ArchiveEntry):
        self.writer = writer
        self.src_file = src_file
        self.entry = entry
        self.short_read = False

    def read(self, size: int = -1) -> bytes:
        wanted = size if size and size > 0 else None
        chunk = self.writer._read_chunk(self.src_file, self.entry, wanted)
        if wanted is not None and len(chunk) < wanted:
            self.short_read = True
        return chunk


class ZstdArchiveWriter(ArchiveWriter):
    """Writes a streaming tar archive inside a Zstandard frame (.zst)."""

    format_name = "zstd"
    extension = ".zst"

    def _setup_zstd_compressor(self) -> zstd.ZstdCompressor:
        return zstd.ZstdCompressor(write_content_size=True, write_checksum=True)

    @contextmanager
    def _open_archive(self, temp_path: Path) -> Iterator[tarfile.TarFile]:
        try:
            temp_file = open(temp_path, "wb")
        except OSError as e:
            raise DestinationUnwritableError(
                f"Cannot create archive {temp_path}: {e.strerror or e}", temp_path
            ) from e

        try:
            with temp_file:
                with self._setup_zstd_compressor().stream_writer(temp_file) as compressor:
                    with tarfile.open(
                        fileobj=compressor,
                        mode="w|",
                        format=tarfile.PAX_FORMAT,
                        copybufsize=self.buffer_size,
                    ) as tar:
                        yield tar
        except (ArchiveError, ArchiveCancelledError):
            raise
        except (OSError, zstd.ZstdError) as e:
            raise WriteFailedError(f"Error writing archive: {e}", temp_path) from e

    def _add_entry(self, archive: tarfile.TarFile, entry: ArchiveEntry) -> None:
        with self._open_source(entry) as src_file:
            st = self._stat_source(src_file, entry)

            info = tarfile.TarInfo(entry.archive_name)
            info.size = st.st_size
            info.mtime = int(st.st_mtime)
            info.mode = stat.S_IMODE(st.st_mode)

            reader = _SourceReader(self, src_file, entry)
            try:
                archive.addfile(info, reader)
            except ArchiveError:
                raise
            except OSError as e:
                if reader.short_read:
                    # tarfile hit EOF before the size recorded in the header
                    raise SourceUnreadableError(
                        f"{entry.source_path} changed size while being archived",
                        entry.source_path,
                    ) from e
                raise WriteFailedError(
                    f"Error writing {entry.archive_name} to archive: {e.strerror or e}",
                    entry.source_path,
                ) from e


class ArchiveWriterFactory:
    """Factory for creating the writer for a format name."""

    WRITERS = {
        writer_class.format_name: writer_class
        for writer_class in (ZipArchiveWriter, ZstdArchiveWriter)
    }

    @staticmethod
    def create_archive_writer(
        archive_format: str, buffer_size: int = DEFAULT_BUFFER_SIZE
    ) -> ArchiveWriter:
        """Create the writer for ``archive_format``."""
        try:
            writer_class = ArchiveWriterFactory.WRITERS[archive_format]
        except KeyError:
            raise ValueError(f"Unsupported archive format: {archive_format}") from None
        return writer_class(buffer_size)

    @staticmethod
    def get_extension(archive_format: str) -> str:
        """File extension, with leading dot, of archives in ``archive_format``."""
        try:
            return ArchiveWriterFactory.WRITERS[archive_format].extension
        except KeyError:
            raise ValueError(f"Unsupported archive format: {archive_format}") from None

    @staticmethod
    def get_supported_formats() -> List[str]:
        """Get list of supported archive formats."""
        return list(ArchiveWriterFactory.WRITERS)
