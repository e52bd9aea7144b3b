"""Shared fixtures: a fake Voice Memos directory and a CiderPress config."""
import sqlite3
from pathlib import Path

import pytest

from ciderpress.config import Config
from ciderpress.constants import APPLE_EPOCH_OFFSET

# 2023-06-01T00:00:00Z as an Apple timestamp
BASE_APPLE_DATE = 1685577600 - APPLE_EPOCH_OFFSET


class VoiceMemos:
    """Builds a CloudRecordings.db plus audio files the way Voice Memos lays them out."""

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)
        self.db_path = root / "CloudRecordings.db"
        conn = sqlite3.connect(self.db_path)
        conn.execute("""
            CREATE TABLE ZCLOUDRECORDING (
                Z_PK INTEGER PRIMARY KEY,
                Z_ENT INTEGER,
                ZDATE TIMESTAMP,
                ZDURATION FLOAT,
                ZENCRYPTEDTITLE VARCHAR,
                ZPATH VARCHAR,
                ZUNIQUEID VARCHAR,
                ZAUDIODIGEST BLOB
            )
        """)
        conn.commit()
        conn.close()

    def use_wal(self):
        """Switch to WAL like the real database; closing the last connection removes -wal/-shm."""
        conn = sqlite3.connect(self.db_path)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.close()

    def add(self, pk: int, filename: str, size: int = 2000, title=None,
            duration: float = 60.0, day: int = 0, write_file: bool = True) -> Path:
        path = self.root / filename
        if write_file:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(bytes((pk + i) % 256 for i in range(size)))
        conn = sqlite3.connect(self.db_path)
        conn.execute(
            "INSERT INTO ZCLOUDRECORDING (Z_PK, Z_ENT, ZDATE, ZDURATION, ZENCRYPTEDTITLE, ZPATH, ZUNIQUEID) "
            "VALUES (?, 1, ?, ?, ?, ?, ?)",
            (pk, BASE_APPLE_DATE + day * 86400, duration, title, filename, f"uuid-{pk}"),
        )
        conn.commit()
        conn.close()
        return path


@pytest.fixture
def voice_memos(tmp_path):
    return VoiceMemos(tmp_path / "Recordings")


@pytest.fixture
def config(tmp_path, voice_memos):
    return Config(
        voice_memo_root=voice_memos.root,
        ciderpress_home=tmp_path / "ciderpress",
        copy_timeout_sec=30.0,
        origin_timeout_sec=0.1,
    )


@pytest.fixture
def snapshot_tree():
    return _snapshot_tree


def _snapshot_tree(root: Path) -> dict:
    """Map of relative path -> bytes for every file under root."""
    return {
        str(p.relative_to(root)): p.read_bytes()
        for p in sorted(root.rglob("*")) if p.is_file()
    }
