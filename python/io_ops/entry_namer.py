"""
Archive entry naming.

Each file is stored under the label of the selected root that owns it, so
files from independently selected roots never collide:

    /home/me/photos/2024/a.jpg  (root /home/me/photos)  ->  photos/2024/a.jpg
    /home/me/notes.txt          (root /home/me/notes.txt) ->  notes.txt
"""

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, List, Tuple, Union
from colored_logger import get_colored_logger

logger = get_colored_logger(__name__)


@dataclass(frozen=True)
class ArchiveEntry:
    """One file to be written: its name inside the archive and its source."""

    archive_name: str
    source_path: Path


def canonical_path(path: Union[str, Path]) -> Path:
    """Absolute, symlink-free form of ``path`` (works for missing paths too)."""
    return Path(os.path.realpath(os.path.abspath(path)))


class EntryNamer:
    """
    Computes archive names for files relative to the originally selected roots.

    Roots are canonicalized and labelled once, in selection order. A label is
    the root's base name; a later distinct root whose base name is already
    taken gets a numeric suffix (``docs``, ``docs_2``, ...). Selecting the same
    root twice reuses its label.
    """

    def __init__(self, roots: Iterable[Union[str, Path]]):
        self.roots: List[Tuple[Path, str]] = []
        labels_by_root: Dict[Path, str] = {}
        used_labels: set = set()

        for root in roots:
            canonical = canonical_path(root)
            if canonical in labels_by_root:
                label = labels_by_root[canonical]
            else:
                label = self._unique_label(self._base_name(root, canonical), used_labels)
                labels_by_root[canonical] = label
                used_labels.add(label)
                if label != self._base_name(root, canonical):
                    logger.notice(
                        "Root %s shares its name with another selection, stored as '%s/'",
                        root,
                        label,
                    )
            self.roots.append((canonical, label))

    @staticmethod
    def _base_name(root: Union[str, Path], canonical: Path) -> str:
        # Filesystem root ("/") has no name; fall back to the drive or "root"
        name = Path(root).name or canonical.name
        if not name:
            name = canonical.drive.rstrip(":\\/") or "root"
        return name

    @staticmethod
    def _unique_label(name: str, used_labels: set) -> str:
        if name not in used_labels:
            return name

        stem, suffix = os.path.splitext(name)
        if not stem:
            # Dotfiles such as ".config" have no extension to preserve
            stem, suffix = name, ""

        counter = 2
        while f"{stem}_{counter}{suffix}" in used_labels:
            counter += 1
        return f"{stem}_{counter}{suffix}"

    def name_for(self, file_path: Union[str, Path]) -> str:
        """Return the forward-slash archive name for ``file_path``."""
        canonical_file = canonical_path(file_path)

        for canonical_root, label in self.roots:
            try:
                relative = canonical_file.relative_to(canonical_root)
            except ValueError:
                continue

            # A directly selected file is its own root: nothing to append
            if not relative.parts:
                return label
            return f"{label}/{relative.as_posix()}"

        logger.debug("No selected root owns %s, using its base name", file_path)
        return Path(file_path).name

    def entries_for(self, files: Iterable[Union[str, Path]]) -> List[ArchiveEntry]:
        """Build one ArchiveEntry per file, preserving order and duplicates."""
        return [ArchiveEntry(self.name_for(f), Path(f)) for f in files]
