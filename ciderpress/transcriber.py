"""Batch transcription of migrated slices using mlx-whisper (Apple Silicon optimized).

Designed for:
- Resumability: only slices with transcribed = 0 are picked up
- Crash safety: commits after each transcript
- Non-destructive: reads the copied audio in the CiderPress audio directory,
  never the Voice Memos originals
"""
import time
from pathlib import Path
from typing import Optional

from .config import Config
from .db import CiderDB
from .models import format_duration
from .util import write_jsonl

MODEL_REPOS = {
    "tiny": "mlx-community/whisper-tiny",
    "tiny.en": "mlx-community/whisper-tiny.en-mlx",
    "base": "mlx-community/whisper-base-mlx",
    "base.en": "mlx-community/whisper-base.en-mlx",
    "small": "mlx-community/whisper-small-mlx",
    "small.en": "mlx-community/whisper-small.en-mlx",
    "medium": "mlx-community/whisper-medium-mlx",
    "large-v3": "mlx-community/whisper-large-v3-mlx",
    "turbo": "mlx-community/whisper-turbo",
}


def resolve_model(model: str) -> str:
    """Map a short whisper model name to its HuggingFace repo; repo IDs pass through."""
    return MODEL_REPOS.get(model, model)


def transcribe(audio_path: Path, model: str) -> dict:
    """Transcribe one file. Returns dict with text, word_count, duration."""
    import mlx_whisper

    result = mlx_whisper.transcribe(str(audio_path), path_or_hf_repo=resolve_model(model))
    text = result.get("text", "").strip()
    segments = result.get("segments", [])
    duration = segments[-1]["end"] if segments else None
    return {"text": text, "word_count": len(text.split()), "duration": duration}


def transcribe_pending(
    config: Config,
    db: CiderDB,
    model: Optional[str] = None,
    limit: Optional[int] = None,
    slice_ids: Optional[list] = None,
    verbose: bool = False,
) -> dict:
    """Transcribe slices in batch.

    With ``config.skip_already_transcribed`` set, only untranscribed slices
    are processed; otherwise ``slice_ids`` may re-run transcribed ones.
    Returns dict with counts: done, failed, skipped.
    """
    model = model or config.model_name
    skip_done = config.skip_already_transcribed

    slices = db.list_slices()
    if slice_ids is not None:
        wanted = set(slice_ids)
        slices = [s for s in slices if s.id in wanted]
    if skip_done or slice_ids is None:
        slices = [s for s in slices if not s.transcribed]
    slices.sort(key=lambda s: s.estimated_time_to_transcribe)
    if limit:
        slices = slices[:limit]

    counts = {"done": 0, "failed": 0, "skipped": 0}
    total = len(slices)
    if total == 0:
        print("No pending transcriptions.")
        return counts

    est = sum(s.estimated_time_to_transcribe for s in slices)
    print(f"Transcription batch: {total} files, est. {format_duration(est)}")
    print(f"Model: {model}")

    for i, slice_ in enumerate(slices, 1):
        audio_path = config.audio_dir / slice_.original_audio_file_name
        print(f"[{i}/{total}] {slice_.title or slice_.original_audio_file_name}")

        if not audio_path.exists():
            print("  SKIP: audio file missing")
            counts["skipped"] += 1
            continue

        try:
            start = time.time()
            result = transcribe(audio_path, model)
            taken = int(round(time.time() - start))
        except Exception as e:
            counts["failed"] += 1
            db.log_action("transcribe", "failed", detail={"slice_id": slice_.id, "error": str(e)})
            write_jsonl(config.jsonl_path, "transcribe", "failed", detail={
                "slice_id": slice_.id, "error": str(e),
            })
            print(f"  FAILED: {e}")
            continue

        db.update_slice_transcription(
            slice_.id, result["text"], result["word_count"], taken, model,
            duration_sec=result["duration"],
        )
        db.log_action("transcribe", "done", detail={
            "slice_id": slice_.id, "model": model, "words": result["word_count"],
        })
        write_jsonl(config.jsonl_path, "transcribe", "done", detail={
            "slice_id": slice_.id, "model": model, "words": result["word_count"],
        })
        counts["done"] += 1

        if verbose:
            print(f"  OK: {result['word_count']} words in {taken}s")
            print(f"  Preview: {result['text'][:100]}...")
        else:
            print(f"  OK ({result['word_count']} words)")

    print()
    print(f"Batch complete: {counts['done']} done, {counts['failed']} failed, {counts['skipped']} skipped")
    return counts
