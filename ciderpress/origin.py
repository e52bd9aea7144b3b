"""Read Apple Voice Memos CloudRecordings.db (read-only).

Voice Memos may have the database open while we read it, so every query
opens its own read-only connection and closes it straight away. A
read-only connection never takes a write lock and never checkpoints the
WAL. Busy/locked errors surface as ``OriginLocked`` so callers can retry.
"""
import mimetypes
import os
import sqlite3
from enum import Enum
from pathlib import Path
from typing import List

from .constants import (
    APPLE_EPOCH_OFFSET, APPLE_DB_NAME, ORIGIN_TABLE,
    ORIGIN_REQUIRED_COLUMNS, ORIGIN_TITLE_COLUMNS, MIME_TYPES,
    AUDIO_EXTENSIONS,
)
from .errors import OriginUnavailable, OriginLocked
from .models import OriginRecording

SQLITE_BUSY = 5
SQLITE_LOCKED = 6


class OriginValidation(str, Enum):
    VALID = "valid"
    NOT_FOUND = "not_found"
    PERMISSION_DENIED = "permission_denied"
    NO_DATABASE = "no_database"
    NO_RECORDINGS = "no_recordings"


def apple_date_to_unix(apple_timestamp: float) -> int:
    """Convert an Apple epoch timestamp to Unix seconds."""
    return int(apple_timestamp + APPLE_EPOCH_OFFSET)


def mime_type_for(path: str) -> str:
    ext = Path(path).suffix.lower().lstrip(".")
    if ext in MIME_TYPES:
        return MIME_TYPES[ext]
    guessed, _ = mimetypes.guess_type(path)
    return guessed or "application/octet-stream"


def check_origin_root(root: Path) -> OriginValidation:
    """
    Classify the Voice Memos directory.

    macOS reports a protected directory as missing when Full Disk Access
    is not granted, so a missing root whose parent cannot be listed is
    reported as PERMISSION_DENIED rather than NOT_FOUND.
    """
    root = Path(root)
    try:
        entries = list(os.scandir(root))
    except PermissionError:
        return OriginValidation.PERMISSION_DENIED
    except FileNotFoundError:
        try:
            os.scandir(root.parent).close()
        except PermissionError:
            return OriginValidation.PERMISSION_DENIED
        except OSError:
            pass
        return OriginValidation.NOT_FOUND
    except OSError:
        return OriginValidation.NOT_FOUND

    names = {e.name for e in entries}
    if APPLE_DB_NAME not in names:
        return OriginValidation.NO_DATABASE
    if not any(Path(n).suffix.lower() in AUDIO_EXTENSIONS for n in names):
        return OriginValidation.NO_RECORDINGS
    return OriginValidation.VALID


def validate_origin_root(root: Path) -> bool:
    return check_origin_root(root) is OriginValidation.VALID


def _is_busy(exc: sqlite3.Error) -> bool:
    code = getattr(exc, "sqlite_errorcode", None)
    if code is not None:
        # Extended result codes keep the primary code in the low byte
        return code & 0xFF in (SQLITE_BUSY, SQLITE_LOCKED)
    msg = str(exc).lower()
    return "locked" in msg or "busy" in msg


def _is_wal_database(db_path: Path) -> bool:
    # Header bytes 18 and 19 are the file format write/read versions; 2 means WAL
    try:
        with open(db_path, "rb") as f:
            header = f.read(20)
    except OSError:
        return False
    return len(header) == 20 and header[18] == 2 and header[19] == 2


class VoiceMemosReader:
    """Narrow adapter over the foreign ZCLOUDRECORDING schema."""

    def __init__(self, root: Path, timeout: float = 5.0):
        self.root = Path(root)
        self.db_path = self.root / APPLE_DB_NAME
        self.timeout = timeout

    def _uri(self) -> str:
        """
        A WAL database with no ``-wal`` file has no open writer, and a plain
        ``mode=ro`` connection would create ``-wal``/``-shm`` next to it, so
        that case is opened ``immutable=1``. Otherwise ``mode=ro`` keeps
        SQLite's locking so a live Voice Memos surfaces as busy.
        """
        uri = f"{self.db_path.resolve().as_uri()}?mode=ro"
        if _is_wal_database(self.db_path) and not Path(f"{self.db_path}-wal").exists():
            uri += "&immutable=1"
        return uri

    def _connect(self) -> sqlite3.Connection:
        if not self.db_path.exists():
            raise OriginUnavailable(f"Voice Memos database not found: {self.db_path}")
        uri = self._uri()
        try:
            conn = sqlite3.connect(uri, uri=True, timeout=self.timeout)
        except sqlite3.Error as e:
            raise self._translate(e) from e
        conn.row_factory = sqlite3.Row
        return conn

    def _translate(self, exc: sqlite3.Error) -> Exception:
        if _is_busy(exc):
            return OriginLocked(f"Voice Memos database is busy: {exc}")
        return OriginUnavailable(f"Cannot read {self.db_path}: {exc}")

    def _columns(self, conn: sqlite3.Connection) -> List[str]:
        rows = conn.execute(f"PRAGMA table_info({ORIGIN_TABLE})").fetchall()
        return [row["name"] for row in rows]

    def _select_sql(self, columns: List[str]) -> str:
        missing = [c for c in ORIGIN_REQUIRED_COLUMNS if c not in columns]
        if missing:
            if not columns:
                raise OriginUnavailable(f"Table {ORIGIN_TABLE} not found in {self.db_path}")
            raise OriginUnavailable(
                f"Table {ORIGIN_TABLE} is missing column(s): {', '.join(missing)}"
            )
        duration = "ZDURATION" if "ZDURATION" in columns else "NULL"
        title = next((c for c in ORIGIN_TITLE_COLUMNS if c in columns), None) or "NULL"
        return f"""
            SELECT
                Z_PK,
                ZDATE,
                ZPATH,
                {duration} AS ZDURATION,
                {title} AS ZTITLE
            FROM {ORIGIN_TABLE}
            WHERE ZPATH IS NOT NULL AND ZPATH != ''
            ORDER BY ZDATE ASC, Z_PK ASC
        """

    def _source_path(self, zpath: str) -> Path:
        p = Path(zpath)
        return p if p.is_absolute() else self.root / p

    def list_origin_recordings(self) -> List[OriginRecording]:
        """
        Read every recording with a file path, oldest first.

        Only the columns we need are selected, so extra columns added by
        newer macOS releases are ignored.
        """
        conn = self._connect()
        try:
            columns = self._columns(conn)
            rows = conn.execute(self._select_sql(columns)).fetchall()
        except sqlite3.Error as e:
            raise self._translate(e) from e
        finally:
            conn.close()

        recordings = []
        for row in rows:
            source = self._source_path(row["ZPATH"])
            try:
                stat = source.stat()
                size, mtime = stat.st_size, int(stat.st_mtime)
            except OSError:
                size, mtime = 0, None

            if row["ZDATE"] is not None:
                created_at = apple_date_to_unix(row["ZDATE"])
            else:
                created_at = mtime or 0

            recordings.append(OriginRecording(
                origin_id=int(row["Z_PK"]),
                created_at=created_at,
                source_path=str(source),
                file_size=size,
                mime_type=mime_type_for(str(source)),
                duration_sec=row["ZDURATION"],
                title=row["ZTITLE"] or None,
            ))
        return recordings

