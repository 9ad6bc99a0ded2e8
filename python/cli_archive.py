#!/usr/bin/env python3
"""
Multi-File Zipper CLI Tool

Compresses any mix of files and directories into a single archive, logging
progress as each file is written.

Usage:
    python3 cli_archive.py create ~/notes ~/photos/2024 report.pdf -o backup.zip
    python3 cli_archive.py create ~/projects --format zstd -o projects --yes
    python3 cli_archive.py formats
"""

import argparse
import logging
import queue
import sys
from pathlib import Path
from typing import Callable, Optional

from colored_logger import get_colored_logger, resolve_level, setup_colored_logging
from io_ops import ArchiveTask, ArchiveWriterFactory, TaskState
from settings import Settings

logger = get_colored_logger(__name__)


class ArchiveCLI:
    """Command-line front end for building archives."""

    def __init__(self, input_func: Callable[[str], str] = input):
        self.parser = self._create_parser()
        self.input_func = input_func
        # Reset by the task's cleanup hook whatever the outcome
        self.busy = False
        self.progress_value = 0

    def _create_parser(self) -> argparse.ArgumentParser:
        """Create the argument parser with all commands and options."""
        parser = argparse.ArgumentParser(
            description="Compress files and folders into a single archive",
            formatter_class=argparse.RawDescriptionHelpFormatter,
            epilog="""
Examples:
  # Zip two folders and a file, asking for confirmation first
  python3 cli_archive.py create ~/notes ~/photos report.pdf -o backup.zip

  # tar + Zstandard archive, no prompt
  python3 cli_archive.py create ~/projects --format zstd -o projects --yes

  # List supported formats
  python3 cli_archive.py formats
            """,
        )

        subparsers = parser.add_subparsers(dest="command", help="Available commands")

        create_parser = subparsers.add_parser(
            "create", help="Compress files and directories into one archive"
        )
        create_parser.add_argument(
            "sources", nargs="+", help="Files and directories to include"
        )
        create_parser.add_argument(
            "--output",
            "-o",
            help="Output archive path (default: default_archive_name from settings)",
        )
        create_parser.add_argument(
            "--format",
            "-f",
            choices=ArchiveWriterFactory.get_supported_formats(),
            help="Archive format (default: archive_format from settings)",
        )
        create_parser.add_argument(
            "--yes", "-y", action="store_true", help="Do not ask for confirmation"
        )
        create_parser.add_argument(
            "--quiet", "-q", action="store_true", help="Suppress progress output"
        )
        create_parser.add_argument(
            "--settings", help="Path to a settings JSON file"
        )

        subparsers.add_parser("formats", help="List supported archive formats")

        return parser

    def run(self, args: Optional[list] = None) -> int:
        """Run the CLI with the given arguments."""
        parsed_args = self.parser.parse_args(args)

        if not parsed_args.command:
            self.parser.print_help()
            return 1

        try:
            if parsed_args.command == "create":
                return self._handle_create(parsed_args)
            elif parsed_args.command == "formats":
                return self._handle_formats(parsed_args)
            else:
                logger.error("Unknown command: %s", parsed_args.command)
                return 1

        except KeyboardInterrupt:
            logger.info("Operation cancelled by user")
            return 130
        except Exception as e:
            logger.error("Error: %s", e)
            logger.debug("Full error details:", exc_info=True)
            return 1

    def _handle_create(self, args) -> int:
        """Handle the 'create' command."""
        settings = Settings(args.settings)
        logging.getLogger().setLevel(resolve_level(settings.log_level))

        missing = [s for s in args.sources if not Path(s).exists()]
        for source in missing:
            logger.error("Source does not exist: %s", source)
        if missing:
            return 1

        if self.busy:
            logger.error("An archive is already being created")
            return 1

        events: "queue.Queue[tuple]" = queue.Queue()

        task = ArchiveTask(
            args.sources,
            args.output or settings.default_archive_name,
            archive_format=args.format,
            on_progress=lambda pct: events.put(("progress", pct)),
            on_complete=lambda result: events.put(("complete", result)),
            on_finished=lambda: events.put(("finished", None)),
            settings=settings,
        )

        if settings.confirm_before_writing and not args.yes:
            if not self._confirm(len(args.sources), task.destination):
                logger.info("Aborted, nothing was written")
                return 1

        self.busy = True
        task.start()
        result = self._drain_events(task, events, quiet=args.quiet)

        if result.state is TaskState.SUCCEEDED:
            logger.success(result.message.replace("\n", " "))
            return 0
        if result.state is TaskState.CANCELLED:
            logger.notice(result.message.replace("\n", " "))
            return 130

        logger.error(result.message.replace("\n", " "))
        return 1

    def _confirm(self, item_count: int, destination: Path) -> bool:
        answer = self.input_func(
            f"Compress {item_count} item(s) into:\n{destination}\nProceed? [y/N] "
        )
        return answer.strip().lower() in ("y", "yes")

    def _drain_events(self, task: ArchiveTask, events: queue.Queue, quiet: bool):
        """Render events from the worker until its cleanup hook has run."""
        result = None

        while True:
            try:
                # Short timeout keeps Ctrl-C responsive on every platform
                kind, value = events.get(timeout=0.2)
            except queue.Empty:
                continue
            except KeyboardInterrupt:
                task.cancel()
                continue

            if kind == "progress":
                self.progress_value = value
                if not quiet:
                    logger.progress("Archiving progress: %d%%", value)
            elif kind == "complete":
                result = value
            elif kind == "finished":
                self.progress_value = 0
                self.busy = False
                break

        return result

    def _handle_formats(self, args) -> int:
        """Handle the 'formats' command."""
        logger.info("Supported archive formats:")
        for name in ArchiveWriterFactory.get_supported_formats():
            logger.info("  %s (%s)", name, ArchiveWriterFactory.get_extension(name))
        return 0


def main():
    """Main entry point for the CLI."""
    setup_colored_logging(level=logging.INFO)

    cli = ArchiveCLI()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
