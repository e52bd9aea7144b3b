"""Data models."""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Tuple


def year_from_timestamp(ts: int) -> int:
    return datetime.fromtimestamp(ts, tz=timezone.utc).year


def format_timestamp(ts: Optional[int]) -> Optional[str]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


@dataclass(frozen=True)
class OriginRecording:
    origin_id: int
    created_at: int  # Unix seconds, UTC
    source_path: str
    file_size: int
    mime_type: str
    duration_sec: Optional[float] = None
    title: Optional[str] = None

    @property
    def filename(self) -> str:
        return Path(self.source_path).name

    @property
    def file_type(self) -> str:
        return Path(self.source_path).suffix.lower().lstrip(".")


@dataclass
class DestinationRecording:
    origin_id: int
    created_at: int
    source_path: str
    destination_path: str
    file_size: int
    mime_type: str
    duration_sec: Optional[float] = None
    title: Optional[str] = None
    id: Optional[int] = None

    @property
    def year(self) -> int:
        return year_from_timestamp(self.created_at)


@dataclass
class TranscriptionSlice:
    original_audio_file_name: str
    audio_file_size: int
    audio_file_type: str
    estimated_time_to_transcribe: int  # seconds
    title: Optional[str] = None
    transcribed: bool = False
    audio_time_length_seconds: Optional[float] = None
    transcription: Optional[str] = None
    transcription_time_taken: Optional[int] = None
    transcription_word_count: Optional[int] = None
    transcription_model: Optional[str] = None
    recording_date: Optional[int] = None
    recording_id: Optional[int] = None
    id: Optional[int] = None


@dataclass(frozen=True)
class MigrationPlan:
    items: Tuple[OriginRecording, ...] = ()

    def __len__(self) -> int:
        return len(self.items)

    def __iter__(self):
        return iter(self.items)

    @property
    def total_bytes(self) -> int:
        return sum(item.file_size for item in self.items)


@dataclass(frozen=True)
class MigrationProgress:
    total_recordings: int = 0
    processed_recordings: int = 0
    failed_recordings: int = 0
    current_recording: Optional[str] = None
    current_step: str = "Initializing..."
    total_size_bytes: int = 0
    processed_size_bytes: int = 0

    @property
    def done(self) -> int:
        return self.processed_recordings + self.failed_recordings

    @property
    def percent(self) -> float:
        if self.total_recordings == 0:
            return 0.0
        return self.done / self.total_recordings * 100


@dataclass(frozen=True)
class ItemFailure:
    origin_id: int
    name: str
    reason: str


@dataclass(frozen=True)
class MigrationOutcome:
    status: str  # completed | aborted | cancelled
    progress: MigrationProgress
    error: Optional[str] = None
    failures: Tuple[ItemFailure, ...] = field(default_factory=tuple)
    finished_at: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "completed" and not self.failures


@dataclass
class PreMigrationStats:
    origin_total_files: int
    origin_total_size_bytes: int
    origin_most_recent_date: Optional[str]
    destination_total_files: int
    destination_most_recent_date: Optional[str]
    files_to_migrate: int
    transcribed_count: int
    not_transcribed_count: int


def format_duration(seconds: Optional[float]) -> str:
    if seconds is None:
        return "unknown"
    total = int(round(seconds))
    h, remainder = divmod(total, 3600)
    m, s = divmod(remainder, 60)
    if h > 0:
        return f"{h}:{m:02d}:{s:02d}"
    return f"{m}:{s:02d}"


def format_file_size(size: int) -> str:
    if size < 1024:
        return f"{size} B"
    if size < 1_048_576:
        return f"{size / 1024:.1f} KB"
    if size < 1_073_741_824:
        return f"{size / 1_048_576:.1f} MB"
    return f"{size / 1_073_741_824:.1f} GB"
