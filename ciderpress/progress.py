"""Shared migration progress.

One background run writes, any number of pollers read. Every update
builds a new frozen ``MigrationProgress`` and publishes it with a single
attribute assignment, so a reader sees either the old snapshot or the new
one and never a half-applied update. The run lock is what keeps a second
run from starting; the snapshot itself is never locked.
"""
import threading
from dataclasses import replace
from typing import List, Optional

from .errors import AlreadyRunning
from .models import MigrationProgress, MigrationOutcome, ItemFailure
from .util import utc_now


class ProgressTracker:
    def __init__(self):
        self._run_lock = threading.Lock()
        self._snapshot: Optional[MigrationProgress] = None
        self._outcome: Optional[MigrationOutcome] = None
        self._failures: List[ItemFailure] = []

    # Writer side: only the thread holding the run calls these

    def begin(self, step: str = "Initializing..."):
        """Claim the run. Raises AlreadyRunning if another run holds it."""
        if not self._run_lock.acquire(blocking=False):
            raise AlreadyRunning("a migration is already in progress")
        self._failures = []
        self._snapshot = MigrationProgress(current_step=step)

    def set_step(self, step: str, current: Optional[str] = None):
        snap = self._require()
        self._snapshot = replace(snap, current_step=step,
                                 current_recording=current if current is not None else snap.current_recording)

    def start(self, total_count: int, total_bytes: int):
        snap = self._require()
        self._snapshot = replace(
            snap,
            total_recordings=total_count,
            total_size_bytes=total_bytes,
            current_step="Starting file migration...",
        )

    def advance(self, succeeded: bool, bytes_copied: int, current_name: str,
                step_label: str, failure: Optional[ItemFailure] = None):
        snap = self._require()
        if snap.done >= snap.total_recordings:
            raise RuntimeError("progress advanced past total_recordings")
        if succeeded:
            snap = replace(snap,
                           processed_recordings=snap.processed_recordings + 1,
                           processed_size_bytes=snap.processed_size_bytes + bytes_copied)
        else:
            snap = replace(snap, failed_recordings=snap.failed_recordings + 1)
            if failure is not None:
                self._failures.append(failure)
        self._snapshot = replace(snap, current_recording=current_name, current_step=step_label)

    def finish(self, status: str = "completed", error: Optional[str] = None) -> MigrationOutcome:
        """Record the outcome, clear the snapshot and release the run."""
        snap = self._require()
        outcome = MigrationOutcome(
            status=status,
            progress=snap,
            error=error,
            failures=tuple(self._failures),
            finished_at=utc_now(),
        )
        self._outcome = outcome
        self._snapshot = None
        self._run_lock.release()
        return outcome

    def _require(self) -> MigrationProgress:
        snap = self._snapshot
        if snap is None:
            raise RuntimeError("no migration run in progress")
        return snap

    # Reader side

    def snapshot(self) -> Optional[MigrationProgress]:
        """Current progress, or None when no run is in progress."""
        return self._snapshot

    def last_outcome(self) -> Optional[MigrationOutcome]:
        """How the most recent run ended, or None if none has finished yet."""
        return self._outcome

    @property
    def is_running(self) -> bool:
        return self._snapshot is not None
