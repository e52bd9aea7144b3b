"""Copy Voice Memos recordings into the CiderPress store.

Designed for:
- Resumability: every run reconciles against the destination first, so a
  rerun picks up whatever an earlier run did not finish
- Crash safety: each recording is copied, verified and committed on its own
- Non-destructive: the Voice Memos database and audio files are only read
- Polling: progress lives in a ProgressTracker that callers can read at
  any time without blocking the run
"""
import sqlite3
import threading
import time
from typing import Callable, List, Optional

from . import reconcile
from .config import Config
from .copier import FileCopier
from .db import CiderDB
from .errors import (
    OriginError, OriginUnavailable, ItemError, DestinationWriteFailed, DuplicateOriginId,
)
from .models import (
    MigrationOutcome, MigrationProgress, OriginRecording, PreMigrationStats, ItemFailure,
)
from .origin import VoiceMemosReader, OriginValidation, check_origin_root
from .progress import ProgressTracker
from .util import write_jsonl

COMMAND = "migrate"

# Origin states that make a run impossible
FATAL_VALIDATIONS = {
    OriginValidation.NOT_FOUND: "Voice Memos directory not found",
    OriginValidation.PERMISSION_DENIED: "Permission denied reading the Voice Memos directory (grant Full Disk Access)",
    OriginValidation.NO_DATABASE: "CloudRecordings.db not found in the Voice Memos directory",
}


class MigrationEngine:
    """
    Runs migrations for one configuration.

    The tracker is the handle shared with pollers; pass the same tracker to
    every engine in a process so that only one run can be active at a time.
    """

    def __init__(self, config: Config, tracker: Optional[ProgressTracker] = None,
                 reader: Optional[VoiceMemosReader] = None):
        self.config = config
        self.tracker = tracker or ProgressTracker()
        self.reader = reader or VoiceMemosReader(config.voice_memo_root,
                                                 timeout=config.origin_timeout_sec)
        self._cancel = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.log_errors: List[str] = []

    # Polling surface

    def start_migration(self) -> threading.Thread:
        """Start a run in the background. Raises AlreadyRunning if one is active."""
        self.tracker.begin()
        self._cancel.clear()
        thread = threading.Thread(target=self._run_claimed, name="ciderpress-migration", daemon=True)
        try:
            thread.start()
        except BaseException as e:
            self.tracker.finish("aborted", f"could not start migration thread: {e}")
            raise
        self._thread = thread
        return thread

    def get_migration_stats(self) -> Optional[MigrationProgress]:
        return self.tracker.snapshot()

    def get_last_outcome(self) -> Optional[MigrationOutcome]:
        return self.tracker.last_outcome()

    def get_pre_migration_stats(self) -> PreMigrationStats:
        origin = self.reader.list_origin_recordings()
        with CiderDB(self.config.db_path) as db:
            db.init_schema()
            existing = db.list_destination_origin_ids()
            summary = db.destination_summary()
        return reconcile.summarize(origin, existing, summary)

    def cancel_migration(self) -> bool:
        """Ask the active run to stop after the current recording."""
        if not self.tracker.is_running:
            return False
        self._cancel.set()
        return True

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Join the background run. Returns True once it has ended."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    # Running

    def run(self) -> MigrationOutcome:
        """Run a migration in the calling thread."""
        self.tracker.begin()
        self._cancel.clear()
        return self._run_claimed()

    def _run_claimed(self) -> MigrationOutcome:
        db = CiderDB(self.config.db_path)
        status, error = "completed", None
        try:
            self.config.ensure_home()
            db.connect()
            db.init_schema()
            status = self._migrate(db)
        except OriginError as e:
            status, error = "aborted", str(e)
            self.tracker.set_step(f"Migration aborted: {e}")
            self._log(db, "abort", detail={"error": error, "kind": type(e).__name__})
        except BaseException as e:
            status, error = "aborted", f"{type(e).__name__}: {e}"
            raise
        finally:
            outcome = self.tracker.finish(status, error)
            if status != "aborted":
                self._log(db, "complete", detail={
                    "status": status,
                    "copied": outcome.progress.processed_recordings,
                    "errors": outcome.progress.failed_recordings,
                    "bytes": outcome.progress.processed_size_bytes,
                })
            db.close()
        return outcome

    def _migrate(self, db: CiderDB) -> str:
        self.tracker.set_step("Connecting to Apple Voice Memo database...")
        validation = check_origin_root(self.config.voice_memo_root)
        if validation in FATAL_VALIDATIONS:
            raise OriginUnavailable(f"{FATAL_VALIDATIONS[validation]}: {self.config.voice_memo_root}")

        self.tracker.set_step("Reading Apple Voice Memo recordings...")
        origin = self.reader.list_origin_recordings()
        existing = db.list_destination_origin_ids()
        migration_plan = reconcile.plan(origin, existing)
        total = len(migration_plan)

        self.tracker.start(total, migration_plan.total_bytes)
        self._log(db, "start", detail={
            "source": str(self.config.voice_memo_root),
            "origin": len(origin),
            "already_migrated": len(existing),
            "to_migrate": total,
            "bytes": migration_plan.total_bytes,
        })

        if total == 0:
            self.tracker.set_step("No files to migrate.")
            return "completed"

        copier = FileCopier(self.config.audio_dir,
                            in_use=db.is_destination_path_in_use,
                            timeout=self.config.copy_timeout_sec)

        for index, item in enumerate(migration_plan, 1):
            if self._cancel.is_set():
                self.tracker.set_step("Migration cancelled.")
                return "cancelled"

            name = item.filename
            self.tracker.set_step(f"Processing ({index}/{total}): {name}", current=name)
            try:
                size = self._migrate_one(db, copier, item)
            except ItemError as e:
                self.tracker.advance(False, 0, name, f"Failed ({index}/{total}): {name}",
                                     ItemFailure(item.origin_id, name, e.reason))
                self._log(db, "error", origin_id=item.origin_id, detail={
                    "file": name, "error": e.reason, "kind": type(e).__name__,
                })
            else:
                self.tracker.advance(True, size, name, f"Copied ({index}/{total}): {name}")
                self._log(db, "copied", origin_id=item.origin_id, detail={
                    "file": name, "bytes": size,
                })

        self.tracker.set_step("Migration completed!")
        return "completed"

    def _migrate_one(self, db: CiderDB, copier: FileCopier, item: OriginRecording) -> int:
        recording, slice_ = copier.copy_one(item)
        try:
            db.insert_migrated(recording, slice_)
        except (sqlite3.Error, DuplicateOriginId) as e:
            copier.discard(recording)
            raise DestinationWriteFailed(str(e), item.origin_id) from e
        return recording.file_size

    def _log(self, db: CiderDB, action: str, origin_id: Optional[int] = None,
             detail: Optional[dict] = None):
        """
        Record an event in action_log and the JSONL file.

        A full disk fails these writes too, so errors here are collected in
        ``log_errors`` and never stop the run.
        """
        if db.conn is not None:
            try:
                db.log_action(COMMAND, action, origin_id=origin_id, detail=detail)
            except sqlite3.Error as e:
                db.conn.rollback()
                self.log_errors.append(f"action_log {action}: {e}")
        try:
            write_jsonl(self.config.jsonl_path, COMMAND, action, origin_id, detail)
        except OSError as e:
            self.log_errors.append(f"jsonl {action}: {e}")


def watch_migration(engine: MigrationEngine,
                    on_progress: Optional[Callable[[MigrationProgress], None]] = None,
                    interval: float = 1.0,
                    max_attempts: Optional[int] = None) -> Optional[MigrationOutcome]:
    """
    Poll ``get_migration_stats`` until the run ends.

    Returns the last outcome, or None if ``max_attempts`` polls passed
    while the run was still going. The run itself is unaffected either way.
    """
    attempts = 0
    while True:
        snap = engine.get_migration_stats()
        if snap is None:
            return engine.get_last_outcome()
        if on_progress:
            on_progress(snap)
        attempts += 1
        if max_attempts is not None and attempts >= max_attempts:
            return None
        time.sleep(interval)
