"""Copy one Voice Memos audio file into the CiderPress audio directory.

The origin file is only ever opened for reading. Bytes are streamed into
``<name>.partial`` and hashed on the way; the partial file is then re-read
and must match the source size and digest before it is renamed into place,
so a destination file under its final name is always complete.
"""
import hashlib
import math
import os
import threading
import time
from pathlib import Path
from typing import Callable, Optional, Tuple

from .constants import (
    COPY_CHUNK_SIZE, PARTIAL_SUFFIX, FILE_MODE, DIR_MODE,
    ESTIMATE_SECONDS_PER_BLOCK, ESTIMATE_AUDIO_BLOCK_SEC, ESTIMATE_BYTES_PER_MINUTE,
)
from .errors import CopyFailed
from .models import OriginRecording, DestinationRecording, TranscriptionSlice


def estimate_transcription_time(file_size: int, duration_sec: Optional[float]) -> int:
    """Heuristic seconds of processing; replaced once a real transcription runs."""
    if duration_sec is not None and duration_sec > 0:
        seconds = math.ceil(duration_sec / ESTIMATE_AUDIO_BLOCK_SEC * ESTIMATE_SECONDS_PER_BLOCK)
        return max(1, seconds)
    audio_minutes = file_size / ESTIMATE_BYTES_PER_MINUTE
    seconds = round(audio_minutes / 10.0 * ESTIMATE_SECONDS_PER_BLOCK)
    return max(1, seconds)


def file_digest(path: Path) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for chunk in iter(lambda: f.read(COPY_CHUNK_SIZE), b""):
            h.update(chunk)
    return h.hexdigest()


class FileCopier:
    def __init__(self, audio_dir: Path,
                 in_use: Optional[Callable[[str], bool]] = None,
                 timeout: float = 300.0,
                 clock: Callable[[], float] = time.monotonic):
        self.audio_dir = Path(audio_dir)
        self.in_use = in_use or (lambda path: False)
        self.timeout = timeout
        self.clock = clock

    def destination_for(self, origin: OriginRecording) -> Path:
        """
        Pick the destination path for a recording.

        The origin file name is used unless another recording already owns
        it, in which case the origin_id is appended to the stem. A file on
        disk that no recording owns is left over from an interrupted run
        and may be replaced.
        """
        source = Path(origin.source_path)
        candidate = self.audio_dir / source.name
        if not self.in_use(str(candidate)):
            return candidate
        candidate = self.audio_dir / f"{source.stem}-{origin.origin_id}{source.suffix}"
        if self.in_use(str(candidate)):
            raise CopyFailed(f"no free destination name for {source.name}", origin.origin_id)
        return candidate

    def copy_one(self, origin: OriginRecording) -> Tuple[DestinationRecording, TranscriptionSlice]:
        source = Path(origin.source_path)
        if not source.is_file():
            raise CopyFailed(f"source file missing: {source}", origin.origin_id)

        dest = self.destination_for(origin)
        partial = dest.with_name(dest.name + PARTIAL_SUFFIX)
        self.audio_dir.mkdir(mode=DIR_MODE, parents=True, exist_ok=True)

        try:
            size, digest = self._stream_with_timeout(source, partial, origin.origin_id)
            source_size = source.stat().st_size
            written_size = partial.stat().st_size
            if not (size == source_size == written_size):
                raise CopyFailed(
                    f"size mismatch: source {source_size} bytes, copied {written_size} bytes",
                    origin.origin_id,
                )
            if file_digest(partial) != digest:
                raise CopyFailed("checksum mismatch after copy", origin.origin_id)
            os.replace(partial, dest)
        except CopyFailed:
            self._remove(partial)
            raise
        except OSError as e:
            self._remove(partial)
            raise CopyFailed(f"{type(e).__name__}: {e}", origin.origin_id) from e

        recording = DestinationRecording(
            origin_id=origin.origin_id,
            created_at=origin.created_at,
            duration_sec=origin.duration_sec,
            title=origin.title,
            source_path=origin.source_path,
            destination_path=str(dest),
            file_size=size,
            mime_type=origin.mime_type,
        )
        slice_ = TranscriptionSlice(
            original_audio_file_name=dest.name,
            title=origin.title,
            transcribed=False,
            audio_file_size=size,
            audio_file_type=origin.file_type or "m4a",
            estimated_time_to_transcribe=estimate_transcription_time(size, origin.duration_sec),
            audio_time_length_seconds=origin.duration_sec,
            recording_date=origin.created_at,
        )
        return recording, slice_

    def _stream_with_timeout(self, source: Path, partial: Path, origin_id: int) -> Tuple[int, str]:
        """
        Run ``_stream`` in a daemon worker and stop waiting after the timeout.

        A read on an evicted iCloud file or a stalled volume can block
        forever, which the chunk deadline in ``_stream`` never sees. The
        abandoned worker removes its partial file whenever it does return.
        """
        result = {}
        abandoned = threading.Event()

        def work():
            try:
                result["value"] = self._stream(source, partial, origin_id)
            except BaseException as e:
                result["error"] = e
            finally:
                if abandoned.is_set():
                    self._remove(partial)

        worker = threading.Thread(target=work, name=f"ciderpress-copy-{origin_id}", daemon=True)
        worker.start()
        worker.join(self.timeout)
        if worker.is_alive():
            abandoned.set()
            if not worker.is_alive():
                self._remove(partial)
            raise CopyFailed(f"timed out after {self.timeout:g}s", origin_id)
        if "error" in result:
            raise result["error"]
        return result["value"]

    def _stream(self, source: Path, partial: Path, origin_id: int) -> Tuple[int, str]:
        deadline = self.clock() + self.timeout
        h = hashlib.sha256()
        size = 0
        fd = os.open(partial, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
        with open(source, "rb") as src, os.fdopen(fd, "wb") as dst:
            for chunk in iter(lambda: src.read(COPY_CHUNK_SIZE), b""):
                if self.clock() > deadline:
                    raise CopyFailed(f"timed out after {self.timeout:g}s", origin_id)
                dst.write(chunk)
                h.update(chunk)
                size += len(chunk)
            dst.flush()
            os.fsync(dst.fileno())
        os.chmod(partial, FILE_MODE)
        return size, h.hexdigest()

    def discard(self, recording: DestinationRecording):
        """Remove a copied file whose database rows could not be written."""
        self._remove(Path(recording.destination_path))

    @staticmethod
    def _remove(path: Path):
        try:
            path.unlink()
        except FileNotFoundError:
            pass
