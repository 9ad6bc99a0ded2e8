import logging
import sys
from typing import Union

# Custom logging levels used by the archiver
TRACE_LEVEL = 5
PROGRESS_LEVEL = 22
SUCCESS_LEVEL = 25
NOTICE_LEVEL = 35
FAILURE_LEVEL = 45

logging.addLevelName(TRACE_LEVEL, "TRACE")
logging.addLevelName(PROGRESS_LEVEL, "PROGRESS")
logging.addLevelName(SUCCESS_LEVEL, "SUCCESS")
logging.addLevelName(NOTICE_LEVEL, "NOTICE")
logging.addLevelName(FAILURE_LEVEL, "FAILURE")


class ColoredFormatter(logging.Formatter):
    """Formatter that wraps each record in an ANSI color picked by its level."""

    COLORS = {
        "TRACE": "\033[90m",  # Gray
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "PROGRESS": "\033[94m",  # Bright Blue
        "SUCCESS": "\033[92m",  # Bright Green
        "WARNING": "\033[33m",  # Yellow
        "NOTICE": "\033[96m",  # Bright Cyan
        "ERROR": "\033[31m",  # Red
        "FAILURE": "\033[91m",  # Bright Red
        "CRITICAL": "\033[35m",  # Magenta
        "RESET": "\033[0m",
    }

    def __init__(self, fmt: str = None, datefmt: str = None, use_colors: bool = None):
        super().__init__(fmt, datefmt)
        self.use_colors = use_colors

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)

        use_colors = self.use_colors
        if use_colors is None:
            use_colors = sys.stderr.isatty()

        if use_colors:
            level_color = self.COLORS.get(record.levelname, "")
            return f"{level_color}{message}{self.COLORS['RESET']}"

        return message


def resolve_level(level: Union[int, str]) -> int:
    """
    Turn a level name such as "debug" or "PROGRESS" into its numeric value.

    Args:
        level: Numeric level or case-insensitive level name

    Returns:
        Numeric logging level (INFO when the name is unknown)
    """
    if isinstance(level, int):
        return level

    resolved = logging.getLevelName(str(level).upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_colored_logging(level: Union[int, str] = logging.INFO) -> None:
    """
    Configure colored console logging on the root logger.

    Args:
        level: Logging level or level name (default: logging.INFO)
    """
    formatter = ColoredFormatter(
        fmt="%(asctime)s - %(levelname)s - %(message)s", datefmt="%Y-%m-%d %H:%M:%S"
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(resolve_level(level))

    # Remove existing handlers to avoid duplicate lines
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)


class EnhancedLogger:
    """Logger wrapper exposing the custom levels as methods."""

    def __init__(self, logger: logging.Logger):
        self._logger = logger

    def trace(self, msg, *args, **kwargs):
        """Very detailed debugging info (per chunk, per directory entry)."""
        self._logger.log(TRACE_LEVEL, msg, *args, **kwargs)

    def progress(self, msg, *args, **kwargs):
        """Progress updates while an archive is being written."""
        self._logger.log(PROGRESS_LEVEL, msg, *args, **kwargs)

    def success(self, msg, *args, **kwargs):
        self._logger.log(SUCCESS_LEVEL, msg, *args, **kwargs)

    def notice(self, msg, *args, **kwargs):
        self._logger.log(NOTICE_LEVEL, msg, *args, **kwargs)

    def failure(self, msg, *args, **kwargs):
        """A whole archive run failed."""
        self._logger.log(FAILURE_LEVEL, msg, *args, **kwargs)

    # debug/info/warning/error/critical and everything else
    def __getattr__(self, name):
        return getattr(self._logger, name)


def get_colored_logger(name: str) -> EnhancedLogger:
    """
    Get an enhanced logger with the custom level methods.

    Args:
        name: Logger name (typically __name__)

    Returns:
        EnhancedLogger wrapping logging.getLogger(name)
    """
    return EnhancedLogger(logging.getLogger(name))
