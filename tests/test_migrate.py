"""
Tests for the migration engine: end-to-end runs against a fake Voice Memos directory.
"""
import json
import sqlite3
import threading
from pathlib import Path
from unittest.mock import patch

import pytest

from ciderpress.copier import FileCopier
from ciderpress.db import CiderDB
from ciderpress.errors import AlreadyRunning, OriginUnavailable
from ciderpress.migrate import MigrationEngine, watch_migration
from ciderpress.progress import ProgressTracker
from ciderpress.util import write_jsonl


def destination(config):
    return CiderDB(config.db_path)


class TestScenarios:
    def test_fresh_migration(self, config, voice_memos):
        voice_memos.add(1, "A.m4a", size=2000, title="A", day=0)
        voice_memos.add(2, "B.m4a", size=4000, title="B", day=1)
        engine = MigrationEngine(config)

        stats = engine.get_pre_migration_stats()
        assert stats.files_to_migrate == 2
        assert stats.origin_total_size_bytes == 6000
        assert stats.destination_total_files == 0

        engine.start_migration()
        assert engine.wait(10)
        assert engine.get_migration_stats() is None

        with destination(config) as db:
            recordings = db.list_recordings()
            slices = db.list_slices()
        assert [r.origin_id for r in recordings] == [1, 2]
        assert [r.file_size for r in recordings] == [2000, 4000]
        assert len(slices) == 2
        assert all(not s.transcribed for s in slices)

        outcome = engine.get_last_outcome()
        assert outcome.status == "completed"
        assert outcome.ok
        assert outcome.progress.processed_recordings == 2
        assert outcome.progress.processed_size_bytes == 6000

    def test_only_missing_recordings_are_copied(self, config, voice_memos):
        voice_memos.add(1, "A.m4a", size=2000)
        MigrationEngine(config).run()
        voice_memos.add(2, "B.m4a", size=4000, day=1)

        engine = MigrationEngine(config)
        assert engine.get_pre_migration_stats().files_to_migrate == 1
        outcome = engine.run()

        assert outcome.progress.total_recordings == 1
        with destination(config) as db:
            assert sorted(db.list_destination_origin_ids()) == [1, 2]
            assert len(db.list_recordings()) == 2

    def test_idempotent(self, config, voice_memos):
        voice_memos.add(1, "A.m4a")
        voice_memos.add(2, "B.m4a", day=1)
        MigrationEngine(config).run()
        second = MigrationEngine(config).run()

        assert second.progress.total_recordings == 0
        with destination(config) as db:
            assert len(db.list_recordings()) == 2
            assert len(db.list_slices()) == 2

    def test_byte_exact_and_origin_untouched(self, config, voice_memos, snapshot_tree):
        voice_memos.add(1, "A.m4a", size=5000)
        voice_memos.add(2, "B.m4a", size=70000, day=1)
        before = snapshot_tree(voice_memos.root)

        MigrationEngine(config).run()

        assert snapshot_tree(voice_memos.root) == before
        with destination(config) as db:
            for r in db.list_recordings():
                assert Path(r.destination_path).read_bytes() == Path(r.source_path).read_bytes()

    def test_wal_origin_left_without_sidecar_files(self, config, voice_memos, snapshot_tree):
        voice_memos.add(1, "A.m4a")
        voice_memos.add(2, "B.m4a", day=1)
        voice_memos.use_wal()
        before = snapshot_tree(voice_memos.root)

        engine = MigrationEngine(config)
        assert engine.get_pre_migration_stats().files_to_migrate == 2
        outcome = engine.run()

        assert outcome.progress.processed_recordings == 2
        assert snapshot_tree(voice_memos.root) == before
        assert sorted(p.name for p in voice_memos.root.iterdir()) == \
            ["A.m4a", "B.m4a", "CloudRecordings.db"]


class TestFailures:
    def test_missing_file_does_not_stop_run(self, config, voice_memos, snapshot_tree):
        voice_memos.add(1, "A.m4a")
        voice_memos.add(2, "gone.m4a", write_file=False, day=1)
        voice_memos.add(3, "C.m4a", day=2)
        before = snapshot_tree(voice_memos.root)

        outcome = MigrationEngine(config).run()

        assert snapshot_tree(voice_memos.root) == before
        assert outcome.status == "completed"
        assert outcome.progress.processed_recordings == 2
        assert outcome.progress.failed_recordings == 1
        [failure] = outcome.failures
        assert failure.origin_id == 2
        assert "source file missing" in failure.reason
        with destination(config) as db:
            assert db.list_destination_origin_ids() == {1, 3}

    def test_failed_item_retried_on_next_run(self, config, voice_memos):
        voice_memos.add(1, "A.m4a")
        voice_memos.add(2, "B.m4a", write_file=False, day=1)
        MigrationEngine(config).run()

        (voice_memos.root / "B.m4a").write_bytes(b"late arrival")
        outcome = MigrationEngine(config).run()

        assert outcome.progress.total_recordings == 1
        assert outcome.progress.processed_recordings == 1
        with destination(config) as db:
            assert db.list_destination_origin_ids() == {1, 2}

    def test_database_write_failure_removes_copied_file(self, config, voice_memos):
        voice_memos.add(1, "A.m4a")
        voice_memos.add(2, "B.m4a", day=1)
        original = CiderDB.insert_migrated

        def flaky(self, recording, slice_):
            if recording.origin_id == 2:
                raise sqlite3.OperationalError("disk I/O error")
            return original(self, recording, slice_)

        with patch.object(CiderDB, "insert_migrated", flaky):
            outcome = MigrationEngine(config).run()

        assert outcome.progress.failed_recordings == 1
        assert "disk I/O error" in outcome.failures[0].reason
        assert (config.audio_dir / "A.m4a").exists()
        assert not (config.audio_dir / "B.m4a").exists()

    def test_missing_origin_aborts(self, config, tmp_path):
        config.voice_memo_root = tmp_path / "missing"
        engine = MigrationEngine(config)

        outcome = engine.run()

        assert outcome.status == "aborted"
        assert "not found" in outcome.error
        assert outcome.progress.total_recordings == 0
        assert engine.get_migration_stats() is None

    def test_locked_origin_aborts_then_recovers(self, config, voice_memos, snapshot_tree):
        voice_memos.add(1, "A.m4a")
        before = snapshot_tree(voice_memos.root)
        holder = sqlite3.connect(voice_memos.db_path, isolation_level=None)
        holder.execute("BEGIN EXCLUSIVE")
        try:
            outcome = MigrationEngine(config).run()
        finally:
            holder.execute("ROLLBACK")
            holder.close()
        assert outcome.status == "aborted"
        assert "busy" in outcome.error
        assert snapshot_tree(voice_memos.root) == before

        outcome = MigrationEngine(config).run()
        assert outcome.status == "completed"
        assert outcome.progress.processed_recordings == 1

    def test_full_disk_while_logging_does_not_stop_run(self, config, voice_memos):
        voice_memos.add(1, "A.m4a")
        voice_memos.add(2, "gone.m4a", write_file=False, day=1)
        voice_memos.add(3, "C.m4a", day=2)
        real_jsonl = write_jsonl
        real_log_action = CiderDB.log_action

        def jsonl_disk_full(path, command, action, origin_id=None, detail=None):
            if action == "error":
                raise OSError(28, "No space left on device")
            return real_jsonl(path, command, action, origin_id, detail)

        def log_action_disk_full(self, command, action, origin_id=None, detail=None):
            if action == "error":
                raise sqlite3.OperationalError("database or disk is full")
            return real_log_action(self, command, action, origin_id=origin_id, detail=detail)

        engine = MigrationEngine(config)
        with patch("ciderpress.migrate.write_jsonl", jsonl_disk_full), \
                patch.object(CiderDB, "log_action", log_action_disk_full):
            outcome = engine.run()

        assert outcome.status == "completed"
        assert outcome.progress.processed_recordings == 2
        assert outcome.progress.failed_recordings == 1
        assert len(engine.log_errors) == 2
        assert "No space left" in " ".join(engine.log_errors)
        with destination(config) as db:
            assert db.list_destination_origin_ids() == {1, 3}
            assert [row["action"] for row in db.get_actions("migrate")] == \
                ["start", "copied", "copied", "complete"]

    def test_pre_migration_stats_surface_origin_errors(self, config, tmp_path):
        config.voice_memo_root = tmp_path / "missing"
        with pytest.raises(OriginUnavailable):
            MigrationEngine(config).get_pre_migration_stats()

    def test_same_file_name_in_different_folders(self, config, voice_memos):
        voice_memos.add(1, "one/memo.m4a", size=100)
        voice_memos.add(2, "two/memo.m4a", size=200, day=1)

        outcome = MigrationEngine(config).run()

        assert outcome.progress.processed_recordings == 2
        assert (config.audio_dir / "memo.m4a").stat().st_size == 100
        assert (config.audio_dir / "memo-2.m4a").stat().st_size == 200


class TestConcurrency:
    def test_second_start_rejected_while_running(self, config, voice_memos):
        voice_memos.add(1, "A.m4a")
        voice_memos.add(2, "B.m4a", day=1)
        entered, release = threading.Event(), threading.Event()
        original = FileCopier.copy_one

        def slow_copy(self, item):
            entered.set()
            release.wait(10)
            return original(self, item)

        tracker = ProgressTracker()
        engine = MigrationEngine(config, tracker=tracker)
        with patch.object(FileCopier, "copy_one", slow_copy):
            engine.start_migration()
            assert entered.wait(10)

            with pytest.raises(AlreadyRunning):
                engine.start_migration()
            with pytest.raises(AlreadyRunning):
                MigrationEngine(config, tracker=tracker).start_migration()

            snap = engine.get_migration_stats()
            assert snap.total_recordings == 2
            assert snap.done == 0

            release.set()
            assert engine.wait(10)

        assert engine.get_last_outcome().progress.processed_recordings == 2

    def test_progress_is_monotonic(self, config, voice_memos):
        for i in range(1, 9):
            voice_memos.add(i, f"m{i}.m4a", size=500, day=i, write_file=(i != 4))
        engine = MigrationEngine(config)
        polled, from_worker = [], []
        done = threading.Event()

        def poll():
            while not done.is_set():
                snap = engine.get_migration_stats()
                if snap is not None:
                    polled.append(snap)

        poller = threading.Thread(target=poll)
        poller.start()
        original = FileCopier.copy_one

        def copy_and_look(self, item):
            from_worker.append(engine.get_migration_stats())
            return original(self, item)

        with patch.object(FileCopier, "copy_one", copy_and_look):
            engine.start_migration()
            assert engine.wait(10)
        done.set()
        poller.join()

        for seen in (polled, from_worker):
            counts = [s.done for s in seen]
            assert counts == sorted(counts)
            assert all(s.done <= s.total_recordings for s in seen)
            sizes = [s.processed_size_bytes for s in seen]
            assert sizes == sorted(sizes)
        assert [s.done for s in from_worker] == list(range(8))
        outcome = engine.get_last_outcome()
        assert outcome.progress.done == 8
        assert outcome.progress.failed_recordings == 1

    def test_cancel_between_items(self, config, voice_memos):
        for i in range(1, 4):
            voice_memos.add(i, f"m{i}.m4a", day=i)
        engine = MigrationEngine(config)
        original = FileCopier.copy_one

        def copy_then_cancel(self, item):
            result = original(self, item)
            engine.cancel_migration()
            return result

        with patch.object(FileCopier, "copy_one", copy_then_cancel):
            outcome = engine.run()

        assert outcome.status == "cancelled"
        assert outcome.progress.processed_recordings == 1

        outcome = MigrationEngine(config).run()
        assert outcome.progress.total_recordings == 2
        assert outcome.status == "completed"

    def test_failed_thread_start_releases_run(self, config, voice_memos):
        voice_memos.add(1, "A.m4a")
        engine = MigrationEngine(config)

        with patch.object(threading.Thread, "start", side_effect=RuntimeError("can't start new thread")):
            with pytest.raises(RuntimeError):
                engine.start_migration()

        assert engine.get_migration_stats() is None
        assert engine.get_last_outcome().status == "aborted"
        assert "can't start new thread" in engine.get_last_outcome().error
        assert engine.run().progress.processed_recordings == 1

    def test_cancel_without_run(self, config):
        assert MigrationEngine(config).cancel_migration() is False


class TestPolling:
    def test_watch_until_finished(self, config, voice_memos):
        voice_memos.add(1, "A.m4a")
        engine = MigrationEngine(config)
        seen = []
        engine.start_migration()
        outcome = watch_migration(engine, on_progress=seen.append, interval=0.01)
        assert outcome.status == "completed"
        assert engine.get_migration_stats() is None

    def test_watch_gives_up_but_run_continues(self, config, voice_memos):
        voice_memos.add(1, "A.m4a")
        release = threading.Event()
        original = FileCopier.copy_one

        def slow_copy(self, item):
            release.wait(10)
            return original(self, item)

        engine = MigrationEngine(config)
        with patch.object(FileCopier, "copy_one", slow_copy):
            engine.start_migration()
            assert watch_migration(engine, interval=0.01, max_attempts=3) is None
            release.set()
            assert engine.wait(10)
        assert engine.get_last_outcome().progress.processed_recordings == 1

    def test_nothing_ever_ran(self, config):
        engine = MigrationEngine(config)
        assert engine.get_migration_stats() is None
        assert engine.get_last_outcome() is None
        assert watch_migration(engine, interval=0.01) is None


class TestEventLog:
    def test_actions_recorded(self, config, voice_memos):
        voice_memos.add(1, "A.m4a")
        voice_memos.add(2, "gone.m4a", write_file=False, day=1)
        MigrationEngine(config).run()

        with destination(config) as db:
            actions = [row["action"] for row in db.get_actions("migrate")]
        assert actions == ["start", "copied", "error", "complete"]

        lines = [json.loads(line) for line in config.jsonl_path.read_text().splitlines()]
        assert [entry["act"] for entry in lines] == actions
        assert lines[2]["id"] == 2
