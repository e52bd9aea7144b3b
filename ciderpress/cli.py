"""CLI interface using Typer."""
import shutil
import typer
from pathlib import Path
from typing import List, Optional

from .config import Config
from .constants import VERSION
from .db import CiderDB
from .errors import AlreadyRunning, OriginError
from .export import export_transcripts, export_audio
from .migrate import MigrationEngine, watch_migration
from .models import MigrationProgress, format_duration, format_file_size, format_timestamp
from .origin import check_origin_root, OriginValidation
from .transcriber import transcribe_pending
from .util import format_count_line

app = typer.Typer(
    name="ciderpress",
    help=f"CiderPress v{VERSION}: liberate Apple Voice Memos into a private local store.",
    no_args_is_help=True,
)


def _load(config_path: Optional[Path] = None) -> tuple:
    config = Config.load(config_path)
    db = CiderDB(config.db_path)
    return config, db


@app.command()
def init(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
):
    """Create the CiderPress home, database and settings file."""
    config, db = _load(config_path)
    config.ensure_home()

    with db:
        db.init_schema()
        print(f"  Database: {config.db_path}")
    print(f"  Audio:    {config.audio_dir}")
    print(f"  Settings: {config.save(config_path)}")

    print("\nInitialized. Run 'ciderpress migrate' to copy your voice memos.")


@app.command()
def doctor(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
):
    """Check system health."""
    config, _ = _load(config_path)
    issues = []
    ok = []

    validation = check_origin_root(config.voice_memo_root)
    if validation is OriginValidation.VALID:
        ok.append(f"Voice Memos: {config.voice_memo_root}")
    else:
        issues.append(f"Voice Memos ({validation.value}): {config.voice_memo_root}")

    if config.db_path.exists():
        ok.append(f"CiderPress DB: {config.db_path}")
    else:
        issues.append(f"CiderPress DB not found (run 'ciderpress init'): {config.db_path}")

    ffmpeg = shutil.which("ffmpeg")
    if ffmpeg:
        ok.append(f"ffmpeg: {ffmpeg}")
    else:
        issues.append("ffmpeg not found (needed by mlx-whisper)")

    for item in ok:
        print(f"  OK  {item}")
    for item in issues:
        print(f"  !!  {item}")

    if not issues:
        print(f"\nAll {len(ok)} checks passed.")
    else:
        print(f"\n{len(issues)} issue(s) found.")
        raise typer.Exit(1)


@app.command()
def status(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
):
    """Compare Voice Memos with the CiderPress store."""
    config, _ = _load(config_path)
    engine = MigrationEngine(config)

    try:
        stats = engine.get_pre_migration_stats()
    except OriginError as e:
        print(f"Cannot read Voice Memos: {e}")
        raise typer.Exit(1)

    print(f"CiderPress v{VERSION}")
    print(f"{'=' * 35}")
    print(f"  Voice Memos:      {stats.origin_total_files} ({format_file_size(stats.origin_total_size_bytes)})")
    print(f"  Latest memo:      {stats.origin_most_recent_date or '-'}")
    print(f"  Migrated:         {stats.destination_total_files}")
    print(f"  Latest migrated:  {stats.destination_most_recent_date or '-'}")
    print(f"  To migrate:       {stats.files_to_migrate}")
    print(f"  Transcribed:      {stats.transcribed_count}")
    print(f"  Not transcribed:  {stats.not_transcribed_count}")
    print("")
    print(f"  Database: {config.db_path}")


@app.command("migrate")
def migrate_cmd(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Copy new voice memos into the CiderPress store."""
    config, _ = _load(config_path)
    engine = MigrationEngine(config)

    last_step = None

    def show(progress: MigrationProgress):
        nonlocal last_step
        if verbose and progress.current_step != last_step:
            print(f"  {progress.current_step}")
            last_step = progress.current_step

    try:
        engine.start_migration()
    except AlreadyRunning as e:
        print(f"Migration not started: {e}")
        raise typer.Exit(1)

    print("Migrating Apple Voice Memos...")
    outcome = watch_migration(engine, on_progress=show)
    engine.wait()
    outcome = outcome or engine.get_last_outcome()

    if outcome.status == "aborted":
        print(f"Aborted: {outcome.error}")
        raise typer.Exit(1)

    p = outcome.progress
    print(f"Done: {format_count_line({'copied': p.processed_recordings, 'failed': p.failed_recordings})}")
    print(f"  {format_file_size(p.processed_size_bytes)} of {format_file_size(p.total_size_bytes)} copied")
    for failure in outcome.failures:
        print(f"  ERROR: {failure.name}: {failure.reason}")

    if outcome.status == "completed" and not config.first_run_complete:
        config.first_run_complete = True
        config.save(config_path)

    if outcome.failures:
        raise typer.Exit(1)


@app.command()
def slices(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
    search: Optional[str] = typer.Option(None, "--search", "-s", help="Match title, transcript or file name"),
    pending: bool = typer.Option(False, "--pending", help="Only untranscribed slices"),
):
    """List migrated recordings."""
    config, db = _load(config_path)

    with db:
        db.init_schema()
        if search:
            rows = db.search_slices(search)
        else:
            rows = db.list_slices(transcribed=False if pending else None)

        for s in rows:
            mark = "T" if s.transcribed else "-"
            date = (format_timestamp(s.recording_date) or "undated")[:10]
            print(f"  {s.id:>5} {mark} {date}  {format_duration(s.audio_time_length_seconds):>8}  "
                  f"{s.title or s.original_audio_file_name}")
        print(f"\n{len(rows)} slice(s)")


@app.command()
def info(
    slice_id: int = typer.Argument(..., help="Slice ID"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
):
    """Show details for a single slice."""
    config, db = _load(config_path)

    with db:
        db.init_schema()
        s = db.get_slice(slice_id)
        if s is None:
            print(f"Slice not found: {slice_id}")
            raise typer.Exit(1)
        recording = db.get_recording(s.recording_id) if s.recording_id else None

        print(f"  ID:         {s.id}")
        print(f"  Title:      {s.title}")
        print(f"  Recorded:   {format_timestamp(s.recording_date)}")
        print(f"  Duration:   {format_duration(s.audio_time_length_seconds)}")
        print(f"  Size:       {format_file_size(s.audio_file_size)} (.{s.audio_file_type})")
        print(f"  File:       {config.audio_dir / s.original_audio_file_name}")
        if recording:
            print(f"  Origin:     {recording.source_path} (#{recording.origin_id})")
        print(f"  Transcript: {'yes' if s.transcribed else 'no'}"
              f" ({s.transcription_word_count or 0} words, {s.transcription_model or '-'})")


@app.command("transcribe")
def transcribe_cmd(
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n", help="Max files to transcribe"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Whisper model (default from settings)"),
    verbose: bool = typer.Option(False, "--verbose", "-v"),
):
    """Transcribe migrated voice memos using mlx-whisper."""
    config, db = _load(config_path)

    with db:
        db.init_schema()
        transcribe_pending(config, db, model=model, limit=limit, verbose=verbose)


@app.command("export")
def export_cmd(
    slice_ids: List[int] = typer.Argument(..., help="Slice IDs to export"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
):
    """Export transcripts to a text file."""
    config, db = _load(config_path)

    with db:
        db.init_schema()
        try:
            path = export_transcripts(config, db, slice_ids)
        except ValueError as e:
            print(str(e))
            raise typer.Exit(1)
        print(f"Exported to {path}")


@app.command("export-audio")
def export_audio_cmd(
    recording_ids: List[int] = typer.Argument(..., help="Recording IDs to export"),
    dest: Path = typer.Option(..., "--dest", "-d", help="Destination directory"),
    config_path: Optional[Path] = typer.Option(None, "--config", "-c"),
):
    """Copy migrated audio files out of CiderPress."""
    config, db = _load(config_path)

    with db:
        db.init_schema()
        count = export_audio(db, recording_ids, dest)
        print(f"Exported {count} file(s) to {dest}")


def main():
    app()
