"""CiderPress SQLite database operations."""
import json
import os
import sqlite3
from pathlib import Path
from typing import Optional, List, Set, Tuple

from .constants import DIR_MODE, FILE_MODE
from .errors import DuplicateOriginId
from .models import DestinationRecording, TranscriptionSlice
from .util import row_to_recording, row_to_slice

SCHEMA_VERSION = 1

SCHEMA_SQL = """
PRAGMA journal_mode=WAL;
PRAGMA foreign_keys=ON;

CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER PRIMARY KEY,
    applied_at  TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);

CREATE TABLE IF NOT EXISTS recordings (
    id               INTEGER PRIMARY KEY AUTOINCREMENT,
    origin_id        INTEGER NOT NULL UNIQUE,
    created_at       INTEGER NOT NULL,
    duration_sec     REAL,
    title            TEXT,
    source_path      TEXT NOT NULL,
    destination_path TEXT NOT NULL UNIQUE,
    file_size        INTEGER NOT NULL,
    mime_type        TEXT NOT NULL DEFAULT 'audio/m4a',
    year             INTEGER NOT NULL
                     CHECK(year = CAST(strftime('%Y', created_at, 'unixepoch') AS INTEGER)),
    migrated_at      TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now'))
);

CREATE INDEX IF NOT EXISTS idx_recordings_year ON recordings(year);
CREATE INDEX IF NOT EXISTS idx_recordings_created_at ON recordings(created_at);

CREATE TABLE IF NOT EXISTS slices (
    id                           INTEGER PRIMARY KEY AUTOINCREMENT,
    recording_id                 INTEGER REFERENCES recordings(id),
    original_audio_file_name     TEXT NOT NULL UNIQUE,
    title                        TEXT,
    transcribed                  INTEGER NOT NULL DEFAULT 0,
    audio_file_size              INTEGER NOT NULL,
    audio_file_type              TEXT NOT NULL,
    estimated_time_to_transcribe INTEGER NOT NULL,
    audio_time_length_seconds    REAL,
    transcription                TEXT,
    transcription_time_taken     INTEGER,
    transcription_word_count     INTEGER,
    transcription_model          TEXT,
    recording_date               INTEGER
);

CREATE INDEX IF NOT EXISTS idx_slices_recording ON slices(recording_id);
CREATE INDEX IF NOT EXISTS idx_slices_transcribed ON slices(transcribed);

CREATE TABLE IF NOT EXISTS action_log (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp   TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%SZ', 'now')),
    command     TEXT NOT NULL,
    origin_id   INTEGER,
    action      TEXT NOT NULL,
    detail      TEXT
);

CREATE INDEX IF NOT EXISTS idx_action_log_command ON action_log(command);
CREATE INDEX IF NOT EXISTS idx_action_log_origin_id ON action_log(origin_id);
"""


class CiderDB:
    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self.conn: Optional[sqlite3.Connection] = None

    def connect(self):
        parent = self.db_path.parent
        if not parent.exists():
            parent.mkdir(mode=DIR_MODE, parents=True)
            os.chmod(parent, DIR_MODE)
        self.db_path.touch(mode=FILE_MODE, exist_ok=True)
        os.chmod(self.db_path, FILE_MODE)
        self.conn = sqlite3.connect(str(self.db_path))
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA foreign_keys=ON")
        return self

    def close(self):
        if self.conn:
            self.conn.close()
            self.conn = None

    def __enter__(self):
        return self.connect()

    def __exit__(self, *args):
        self.close()

    def init_schema(self):
        self.conn.executescript(SCHEMA_SQL)
        self.conn.execute(
            "INSERT OR IGNORE INTO schema_version (version) VALUES (?)",
            (SCHEMA_VERSION,),
        )
        self.conn.commit()

    # Migration contract

    def list_destination_origin_ids(self) -> Set[int]:
        rows = self.conn.execute("SELECT origin_id FROM recordings").fetchall()
        return {row["origin_id"] for row in rows}

    def insert_recording(self, recording: DestinationRecording) -> int:
        """Insert a recording row. Does not commit."""
        try:
            cur = self.conn.execute("""
                INSERT INTO recordings (
                    origin_id, created_at, duration_sec, title, source_path,
                    destination_path, file_size, mime_type, year
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                recording.origin_id, recording.created_at, recording.duration_sec,
                recording.title, recording.source_path, recording.destination_path,
                recording.file_size, recording.mime_type, recording.year,
            ))
        except sqlite3.IntegrityError as e:
            if "recordings.origin_id" in str(e):
                raise DuplicateOriginId(recording.origin_id) from e
            raise
        recording.id = cur.lastrowid
        return recording.id

    def insert_slice(self, slice_: TranscriptionSlice) -> int:
        """Insert a slice row. Does not commit."""
        cur = self.conn.execute("""
            INSERT INTO slices (
                recording_id, original_audio_file_name, title, transcribed,
                audio_file_size, audio_file_type, estimated_time_to_transcribe,
                audio_time_length_seconds, transcription, transcription_time_taken,
                transcription_word_count, transcription_model, recording_date
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (
            slice_.recording_id, slice_.original_audio_file_name, slice_.title,
            int(slice_.transcribed), slice_.audio_file_size, slice_.audio_file_type,
            slice_.estimated_time_to_transcribe, slice_.audio_time_length_seconds,
            slice_.transcription, slice_.transcription_time_taken,
            slice_.transcription_word_count, slice_.transcription_model,
            slice_.recording_date,
        ))
        slice_.id = cur.lastrowid
        return slice_.id

    def insert_migrated(self, recording: DestinationRecording,
                        slice_: TranscriptionSlice) -> Tuple[int, int]:
        """Insert a recording and its slice in one transaction."""
        with self.conn:
            recording_id = self.insert_recording(recording)
            slice_.recording_id = recording_id
            slice_id = self.insert_slice(slice_)
        return recording_id, slice_id

    def is_destination_path_in_use(self, path: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM recordings WHERE destination_path = ?", (str(path),)
        ).fetchone()
        return row is not None

    def destination_summary(self) -> dict:
        row = self.conn.execute("""
            SELECT
                (SELECT COUNT(*) FROM recordings) AS total,
                (SELECT MAX(created_at) FROM recordings) AS most_recent,
                (SELECT COUNT(*) FROM slices WHERE transcribed = 1) AS transcribed,
                (SELECT COUNT(*) FROM slices WHERE transcribed = 0) AS not_transcribed
        """).fetchone()
        return dict(row)

    # Browsing

    def get_recording(self, recording_id: int) -> Optional[DestinationRecording]:
        row = self.conn.execute(
            "SELECT * FROM recordings WHERE id = ?", (recording_id,)
        ).fetchone()
        return row_to_recording(row) if row else None

    def get_recording_by_origin_id(self, origin_id: int) -> Optional[DestinationRecording]:
        row = self.conn.execute(
            "SELECT * FROM recordings WHERE origin_id = ?", (origin_id,)
        ).fetchone()
        return row_to_recording(row) if row else None

    def list_recordings(self) -> List[DestinationRecording]:
        rows = self.conn.execute(
            "SELECT * FROM recordings ORDER BY created_at ASC, id ASC"
        ).fetchall()
        return [row_to_recording(r) for r in rows]

    def get_slice(self, slice_id: int) -> Optional[TranscriptionSlice]:
        row = self.conn.execute(
            "SELECT * FROM slices WHERE id = ?", (slice_id,)
        ).fetchone()
        return row_to_slice(row) if row else None

    def list_slices(self, transcribed: Optional[bool] = None) -> List[TranscriptionSlice]:
        if transcribed is None:
            rows = self.conn.execute(
                "SELECT * FROM slices ORDER BY recording_date ASC, id ASC"
            ).fetchall()
        else:
            rows = self.conn.execute(
                "SELECT * FROM slices WHERE transcribed = ? ORDER BY recording_date ASC, id ASC",
                (int(transcribed),),
            ).fetchall()
        return [row_to_slice(r) for r in rows]

    def search_slices(self, query: str) -> List[TranscriptionSlice]:
        pattern = f"%{query}%"
        rows = self.conn.execute("""
            SELECT * FROM slices
            WHERE title LIKE ? OR transcription LIKE ? OR original_audio_file_name LIKE ?
            ORDER BY recording_date DESC, id DESC
        """, (pattern, pattern, pattern)).fetchall()
        return [row_to_slice(r) for r in rows]

    def update_slice_transcription(self, slice_id: int, text: str, word_count: int,
                                   time_taken: int, model: str,
                                   duration_sec: Optional[float] = None):
        self.conn.execute("""
            UPDATE slices SET
                transcribed = 1,
                transcription = ?,
                transcription_word_count = ?,
                transcription_time_taken = ?,
                transcription_model = ?,
                audio_time_length_seconds = COALESCE(?, audio_time_length_seconds)
            WHERE id = ?
        """, (text, word_count, time_taken, model, duration_sec, slice_id))
        self.conn.commit()

    def update_slice_title(self, slice_id: int, title: str):
        with self.conn:
            self.conn.execute("UPDATE slices SET title = ? WHERE id = ?", (title, slice_id))
            self.conn.execute("""
                UPDATE recordings SET title = ?
                WHERE id = (SELECT recording_id FROM slices WHERE id = ?)
            """, (title, slice_id))

    def log_action(self, command: str, action: str,
                   origin_id: Optional[int] = None, detail: Optional[dict] = None):
        self.conn.execute(
            "INSERT INTO action_log (command, origin_id, action, detail) VALUES (?, ?, ?, ?)",
            (command, origin_id, action, json.dumps(detail) if detail else None),
        )
        self.conn.commit()

    def get_actions(self, command: Optional[str] = None) -> List[sqlite3.Row]:
        if command is None:
            return self.conn.execute("SELECT * FROM action_log ORDER BY id ASC").fetchall()
        return self.conn.execute(
            "SELECT * FROM action_log WHERE command = ? ORDER BY id ASC", (command,)
        ).fetchall()
