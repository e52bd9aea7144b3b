"""Utility functions."""
import json
import sqlite3
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional

from .models import DestinationRecording, TranscriptionSlice


def utc_now() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def write_jsonl(path: Path, command: str, action: str,
                origin_id: Optional[int] = None, detail: Optional[dict] = None):
    """Append a single line to the JSONL action log."""
    entry = {
        "ts": utc_now(),
        "cmd": command,
        "act": action,
    }
    if origin_id is not None:
        entry["id"] = origin_id
    if detail:
        entry["d"] = detail
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "a", encoding="utf-8") as f:
        f.write(json.dumps(entry, ensure_ascii=False) + "\n")


def row_to_recording(row: sqlite3.Row) -> DestinationRecording:
    """Convert a recordings row to a DestinationRecording."""
    return DestinationRecording(
        id=row["id"],
        origin_id=row["origin_id"],
        created_at=row["created_at"],
        duration_sec=row["duration_sec"],
        title=row["title"],
        source_path=row["source_path"],
        destination_path=row["destination_path"],
        file_size=row["file_size"],
        mime_type=row["mime_type"],
    )


def row_to_slice(row: sqlite3.Row) -> TranscriptionSlice:
    """Convert a slices row to a TranscriptionSlice."""
    return TranscriptionSlice(
        id=row["id"],
        recording_id=row["recording_id"],
        original_audio_file_name=row["original_audio_file_name"],
        title=row["title"],
        transcribed=bool(row["transcribed"]),
        audio_file_size=row["audio_file_size"],
        audio_file_type=row["audio_file_type"],
        estimated_time_to_transcribe=row["estimated_time_to_transcribe"],
        audio_time_length_seconds=row["audio_time_length_seconds"],
        transcription=row["transcription"],
        transcription_time_taken=row["transcription_time_taken"],
        transcription_word_count=row["transcription_word_count"],
        transcription_model=row["transcription_model"],
        recording_date=row["recording_date"],
    )


def format_count_line(counts: dict) -> str:
    """Format a counts dict as a single summary line."""
    parts = [f"{v} {k}" for k, v in counts.items() if v > 0]
    return ", ".join(parts) if parts else "no changes"
