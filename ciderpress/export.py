"""Export transcripts and audio out of the CiderPress store."""
import re
import shutil
from datetime import datetime
from pathlib import Path
from typing import Iterable

from .config import Config
from .db import CiderDB
from .util import write_jsonl

SEPARATOR = "\n-------\n\n"
TAG_RE = re.compile(r"<[^>]*>")


def strip_html_tags(html: str) -> str:
    """Drop tags left by the rich-text editor and collapse whitespace."""
    return " ".join(TAG_RE.sub("", html).split())


def export_transcripts(config: Config, db: CiderDB, slice_ids: Iterable[int]) -> Path:
    """Write the selected transcripts, in the given order, to one text file."""
    slice_ids = list(slice_ids)
    slices = [db.get_slice(i) for i in slice_ids]
    slices = [s for s in slices if s is not None and s.transcription]
    if not slices:
        raise ValueError("No transcribed slices found in selection")

    now = datetime.now()
    export_date = now.strftime("%Y-%m-%d %H:%M:%S")
    blocks = []
    for s in slices:
        blocks.append(
            f"Title: {s.title or 'Untitled'}\n"
            f"Export Date: {export_date}\n"
            f"Word Count: {s.transcription_word_count or 0}\n"
            f"\n"
            f"{strip_html_tags(s.transcription)}\n"
        )

    config.exports_dir.mkdir(parents=True, exist_ok=True)
    path = config.exports_dir / f"transcripts_export_{now.strftime('%Y%m%d_%H%M%S')}.txt"
    path.write_text(SEPARATOR.join(blocks), encoding="utf-8")

    write_jsonl(config.jsonl_path, "export", "transcripts", detail={
        "slice_ids": slice_ids, "path": str(path),
    })
    return path


def export_audio(db: CiderDB, recording_ids: Iterable[int], dest_dir: Path) -> int:
    """Copy the selected recordings' audio files into ``dest_dir``."""
    dest_dir = Path(dest_dir)
    dest_dir.mkdir(parents=True, exist_ok=True)
    exported = 0
    for recording_id in recording_ids:
        recording = db.get_recording(recording_id)
        if recording is None:
            continue
        source = Path(recording.destination_path)
        if not source.exists():
            print(f"  SKIP: audio file missing: {source.name}")
            continue
        shutil.copy2(source, dest_dir / source.name)
        exported += 1
    return exported
