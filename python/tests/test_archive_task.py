"""
Tests for the background archive task and its state machine.
"""

import threading
import unittest
import warnings
from unittest.mock import Mock, patch

from io_ops import ArchiveTask, TaskAlreadyRunningError, TaskState
from test_utils import ArchiveReader, TempDirTestCase, fail_zip_writes_after

WAIT_SECONDS = 30


class TaskRecorder:
    """Collects everything a task reports, and from which thread."""

    def __init__(self):
        self.progress = []
        self.results = []
        self.events = []
        self.progress_threads = set()

    def on_progress(self, percentage):
        self.progress.append(percentage)
        self.progress_threads.add(threading.current_thread().name)

    def on_complete(self, result):
        self.results.append(result)
        self.events.append("complete")

    def on_finished(self):
        self.events.append("finished")


class TestArchiveTask(TempDirTestCase):
    """Test running, finishing and failing archive tasks."""

    def setUp(self):
        super().setUp()
        self.make_tree(
            {
                "photos/2024/beach.jpg": b"\xff\xd8\xffbeach",
                "photos/cover.jpg": b"\xff\xd8\xffcover",
                "notes.txt": "notes",
                "music/a.mp3": b"ID3a",
                "music/b.mp3": b"ID3b",
            }
        )
        self.sources = [self.base / "photos", self.base / "notes.txt", self.base / "music"]
        self.recorder = TaskRecorder()

    def make_task(self, sources=None, destination=None, **kwargs):
        return ArchiveTask(
            sources if sources is not None else self.sources,
            destination or self.base / "out" / "backup",
            on_progress=self.recorder.on_progress,
            on_complete=self.recorder.on_complete,
            on_finished=self.recorder.on_finished,
            **kwargs,
        )

    def test_successful_run_in_background(self):
        """A started task finishes on a worker thread with one result."""
        task = self.make_task()
        self.assertIs(task.state, TaskState.IDLE)

        task.start()
        result = task.wait(WAIT_SECONDS)

        self.assertIsNotNone(result)
        self.assertIs(result.state, TaskState.SUCCEEDED)
        self.assertIs(task.state, TaskState.SUCCEEDED)
        self.assertEqual(result.entry_count, 5)
        self.assertEqual(result.destination, str(self.base / "out" / "backup.zip"))
        self.assertIn(result.destination, result.message)
        self.assertEqual(self.recorder.results, [result])
        self.assertEqual(self.recorder.events, ["complete", "finished"])
        self.assertNotIn(threading.current_thread().name, self.recorder.progress_threads)

    def test_archive_contents_and_names(self):
        """Entries are prefixed by their root; a file root keeps its own name."""
        result = self.make_task().run()

        entries = dict(ArchiveReader.zip_entries(result.destination))
        self.assertEqual(
            sorted(entries),
            [
                "music/a.mp3",
                "music/b.mp3",
                "notes.txt",
                "photos/2024/beach.jpg",
                "photos/cover.jpg",
            ],
        )
        self.assertEqual(entries["photos/2024/beach.jpg"], b"\xff\xd8\xffbeach")
        self.assertEqual(entries["notes.txt"], b"notes")

    def test_progress_is_monotonic_and_ends_at_100_once(self):
        self.make_task().run()

        progress = self.recorder.progress
        self.assertEqual(len(progress), 5)
        self.assertEqual(progress, sorted(progress))
        self.assertEqual(progress.count(100), 1)
        self.assertEqual(progress[-1], 100)

    def test_empty_selection_succeeds_with_empty_archive(self):
        """Zero files is a success with no progress and no division error."""
        (self.base / "empty" / "nested").mkdir(parents=True)

        result = self.make_task(sources=[self.base / "empty"]).run()

        self.assertIs(result.state, TaskState.SUCCEEDED)
        self.assertEqual(result.entry_count, 0)
        self.assertEqual(self.recorder.progress, [])
        self.assertEqual(ArchiveReader.zip_entries(result.destination), [])
        self.assertEqual(self.recorder.events, ["complete", "finished"])

    def test_no_sources_at_all(self):
        result = self.make_task(sources=[]).run()

        self.assertIs(result.state, TaskState.SUCCEEDED)
        self.assertEqual(result.entry_count, 0)

    def test_overlapping_roots_produce_duplicate_entries(self):
        sources = [self.base / "music", self.base / "music" / "a.mp3"]

        with warnings.catch_warnings():
            warnings.simplefilter("ignore")
            result = self.make_task(sources=sources).run()

        names = [name for name, _ in ArchiveReader.zip_entries(result.destination)]
        self.assertEqual(result.entry_count, 3)
        self.assertEqual(names.count("music/a.mp3"), 2)

    def test_destination_is_normalized_and_parent_created(self):
        task = self.make_task(destination=self.base / "a" / "b" / "c" / "Backup.ZIP")
        result = task.run()

        self.assertTrue(result.succeeded)
        self.assertEqual(task.destination, self.base / "a" / "b" / "c" / "Backup.ZIP")
        self.assertTrue((self.base / "a" / "b" / "c" / "Backup.ZIP").exists())

    def test_zstd_format_from_settings(self):
        settings = Mock(archive_format="zstd", buffer_size=8192)
        result = self.make_task(settings=settings).run()

        self.assertTrue(result.destination.endswith("backup.zst"))
        self.assertEqual(len(ArchiveReader.zstd_entries(result.destination)), 5)

    def test_unsupported_format_is_rejected(self):
        with self.assertRaises(ValueError):
            self.make_task(archive_format="rar")

    def test_source_deleted_after_collection_fails(self):
        """A vanished file fails the task, and cleanup still runs."""
        task = self.make_task()
        real_collect = task.collector.collect

        def collect_then_delete(roots):
            files = real_collect(roots)
            (self.base / "notes.txt").unlink()
            return files

        with patch.object(task.collector, "collect", side_effect=collect_then_delete):
            task.start()
            result = task.wait(WAIT_SECONDS)

        self.assertIs(result.state, TaskState.FAILED)
        self.assertIn("notes.txt", result.error)
        self.assertIn("Error during compression", result.message)
        self.assertEqual(self.recorder.events, ["complete", "finished"])
        self.assertFalse((self.base / "out" / "backup.zip").exists())

    def test_write_failure_mid_run_fails(self):
        """A full disk after two entries transitions to FAILED."""
        task = self.make_task()

        with fail_zip_writes_after(2):
            result = task.run()

        self.assertIs(result.state, TaskState.FAILED)
        self.assertIn("No space left", result.error)
        self.assertEqual(len(self.recorder.progress), 2)
        self.assertEqual(self.recorder.events, ["complete", "finished"])
        self.assertEqual(list((self.base / "out").iterdir()), [])

    def test_unwritable_destination_fails(self):
        (self.base / "blocker").write_text("a file, not a directory")

        result = self.make_task(destination=self.base / "blocker" / "out.zip").run()

        self.assertIs(result.state, TaskState.FAILED)
        self.assertEqual(self.recorder.events, ["complete", "finished"])

    def test_unexpected_error_still_reports_once(self):
        task = self.make_task()

        with patch.object(task.collector, "collect", side_effect=RuntimeError("boom")):
            result = task.run()

        self.assertIs(result.state, TaskState.FAILED)
        self.assertEqual(result.error, "boom")
        self.assertEqual(len(self.recorder.results), 1)

    def test_cancel_between_entries(self):
        """Cancelling after the first entry stops the run cleanly."""
        task = self.make_task()
        task.on_progress = Mock(side_effect=lambda pct: task.cancel())

        task.start()
        result = task.wait(WAIT_SECONDS)

        self.assertIs(result.state, TaskState.CANCELLED)
        self.assertTrue(task.cancelled)
        self.assertEqual(task.on_progress.call_count, 1)
        self.assertIn("cancelled", result.message.lower())
        self.assertEqual(self.recorder.events, ["complete", "finished"])
        self.assertFalse((self.base / "out" / "backup.zip").exists())

    def test_cancel_before_run_is_reported_as_cancelled(self):
        """A cancelled task with nothing to write still ends CANCELLED."""
        (self.base / "empty").mkdir()
        task = self.make_task(sources=[self.base / "empty"])
        task.cancel()

        result = task.run()

        self.assertIs(result.state, TaskState.CANCELLED)
        self.assertEqual(self.recorder.progress, [])
        self.assertEqual(self.recorder.events, ["complete", "finished"])
        self.assertFalse((self.base / "out" / "backup.zip").exists())

    def test_cancel_during_collection_writes_nothing(self):
        task = self.make_task()
        real_collect = task.collector.collect

        def collect_then_cancel(roots):
            files = real_collect(roots)
            task.cancel()
            return files

        with patch.object(task.collector, "collect", side_effect=collect_then_cancel):
            result = task.run()

        self.assertIs(result.state, TaskState.CANCELLED)
        self.assertIn("5 collected files", result.error)
        self.assertEqual(self.recorder.progress, [])
        self.assertEqual(list((self.base / "out").iterdir()), [])

    def test_task_cannot_start_twice(self):
        task = self.make_task()
        task.run()

        with self.assertRaises(TaskAlreadyRunningError):
            task.start()

    def test_second_task_for_same_destination_is_refused(self):
        """Only one task may write a destination at a time."""
        release = threading.Event()
        first = ArchiveTask(
            self.sources,
            self.base / "out" / "backup.zip",
            on_progress=lambda pct: release.wait(WAIT_SECONDS),
        )
        second = self.make_task()

        first.start()
        try:
            with self.assertRaises(TaskAlreadyRunningError):
                second.start()
        finally:
            release.set()

        self.assertTrue(first.wait(WAIT_SECONDS).succeeded)
        # The destination is free again once the first task is done
        self.assertTrue(second.run().succeeded)

    def test_cleanup_runs_even_if_completion_callback_raises(self):
        finished = Mock()
        task = ArchiveTask(
            self.sources,
            self.base / "out" / "backup",
            on_complete=Mock(side_effect=RuntimeError("ui exploded")),
            on_finished=finished,
        )

        result = task.run()

        self.assertTrue(result.succeeded)
        finished.assert_called_once_with()

    def test_wait_times_out_while_blocked(self):
        release = threading.Event()
        task = ArchiveTask(
            self.sources,
            self.base / "out" / "slow.zip",
            on_progress=lambda pct: release.wait(WAIT_SECONDS),
        )

        task.start()
        try:
            self.assertIsNone(task.wait(0.05))
            self.assertTrue(task.is_running)
        finally:
            release.set()

        self.assertTrue(task.wait(WAIT_SECONDS).succeeded)

    def test_result_carries_collection_stats(self):
        result = self.make_task(sources=self.sources + [self.base / "missing"]).run()

        self.assertTrue(result.succeeded)
        self.assertEqual(result.stats["missing_roots"], 1)
        self.assertEqual(result.stats["total_files"], 5)
        self.assertIsNotNone(result.completed_at)


if __name__ == "__main__":
    unittest.main()
