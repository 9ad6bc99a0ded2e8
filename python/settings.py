import json
import os
from typing import Any, Dict, Optional

from colored_logger import get_colored_logger
from io_ops.archive_writers import (
    DEFAULT_BUFFER_SIZE,
    MAX_BUFFER_SIZE,
    MIN_BUFFER_SIZE,
    ArchiveWriterFactory,
)

logger = get_colored_logger(__name__)

DEFAULT_SETTINGS_FILE = os.path.join(
    os.path.dirname(os.path.abspath(__file__)), "..", "settings.json"
)


class Settings:
    """
    Loads archiver settings from a JSON file (by default `settings.json` at the
    repository root). Missing keys, a missing file or an unreadable file all fall
    back to the built-in defaults.
    """

    DEFAULTS: Dict[str, Any] = {
        "archive_format": "zip",
        "buffer_size": DEFAULT_BUFFER_SIZE,
        "default_archive_name": "archive.zip",
        "confirm_before_writing": True,
        "log_level": "INFO",
    }

    def __init__(self, settings_file: Optional[str] = None) -> None:
        """
        :param settings_file: Path to the JSON settings file. Defaults to the
            repository's `settings.json`.
        """
        self.settings_file = settings_file or DEFAULT_SETTINGS_FILE

        self.raw: Dict[str, Any] = {}
        if os.path.isfile(self.settings_file):
            loaded = self._load_json(self.settings_file)
            if isinstance(loaded, dict):
                self.raw = loaded
                logger.debug("Settings loaded from '%s'.", self.settings_file)
            elif loaded is not None:
                logger.error(
                    "Settings file '%s' must contain a JSON object, using defaults.",
                    self.settings_file,
                )
        else:
            logger.debug(
                "No settings file at '%s', using defaults.", self.settings_file
            )

        self.archive_format: str = str(self._get("archive_format")).lower()
        if self.archive_format not in ArchiveWriterFactory.get_supported_formats():
            raise ValueError(
                f"Unsupported archive_format in settings: {self.archive_format}"
            )

        self.buffer_size: int = self._clamp_buffer_size(self._get("buffer_size"))
        self.default_archive_name: str = self._get("default_archive_name")
        self.confirm_before_writing: bool = bool(self._get("confirm_before_writing"))
        self.log_level: str = str(self._get("log_level"))

    def _get(self, key: str) -> Any:
        return self.raw.get(key, self.DEFAULTS[key])

    @staticmethod
    def _clamp_buffer_size(value: Any) -> int:
        try:
            size = int(value)
        except (TypeError, ValueError):
            logger.warning(
                "Invalid buffer_size %r, using %d", value, Settings.DEFAULTS["buffer_size"]
            )
            return Settings.DEFAULTS["buffer_size"]
        return max(MIN_BUFFER_SIZE, min(size, MAX_BUFFER_SIZE))

    def _load_json(self, path: str) -> Any:
        """
        Loads JSON from the given file path.

        :param path: The path to the JSON file.
        :return: The parsed JSON if valid, otherwise None.
        """
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (json.JSONDecodeError, OSError) as e:
            logger.error("Error loading JSON file '%s': %s", path, e)
            return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "archive_format": self.archive_format,
            "buffer_size": self.buffer_size,
            "default_archive_name": self.default_archive_name,
            "confirm_before_writing": self.confirm_before_writing,
            "log_level": self.log_level,
        }
