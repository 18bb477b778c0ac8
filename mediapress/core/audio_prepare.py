"""
Audio preparation using ffmpeg/ffprobe.
Probe → extract (video only) → normalize → plan chunks → cut lazily.
Target: mono, 16kHz, PCM s16le WAV (lossless intermediate).
"""

import json
import math
import logging
import subprocess
import tempfile
from pathlib import Path
from dataclasses import dataclass
from typing import Iterator

from mediapress.core.cleanup import cleanup_workspace
from mediapress.core.constants import (
    CHUNK_TARGET_SEC, NORM_CHANNELS, NORM_SAMPLE_RATE, NORM_CODEC, NORM_FORMAT,
    FFPROBE_TIMEOUT_SEC, FFMPEG_EXTRACT_TIMEOUT_SEC, FFMPEG_CHUNK_TIMEOUT_SEC,
    FFMPEG_TOOL_ATTEMPTS, STDERR_TAIL_CHARS, DEFAULT_WORKSPACE_ROOT,
)
from mediapress.core.error_codes import InvalidMediaError, MediaProcessingError
from mediapress.core.models_sqlite import AudioChunk, ChunkSpan
from mediapress.core.security_utils import run_subprocess_capture
from mediapress.core.storage import StorageResolver

logger = logging.getLogger(__name__)


@dataclass
class MediaInfo:
    duration_sec: float
    has_audio: bool
    has_video: bool


def _stderr_tail(stderr: str | None) -> str:
    text = (stderr or "").strip()
    return text[-STDERR_TAIL_CHARS:]


# ── Chunk planning ────────────────────────────────────────────────────

def create_chunk_manifest(duration_sec: float,
                          chunk_duration_sec: float = CHUNK_TARGET_SEC) -> list[ChunkSpan]:
    """
    Split [0, duration] into contiguous, non-overlapping spans of
    chunk_duration_sec. Count is ceil(D / T); only the last span may be
    shorter, and it always ends exactly at D.
    """
    if duration_sec <= 0:
        raise InvalidMediaError(f"Media has no duration ({duration_sec}s)")
    if chunk_duration_sec <= 0:
        raise ValueError("chunk_duration_sec must be positive")

    count = math.ceil(duration_sec / chunk_duration_sec)
    return [
        ChunkSpan(
            idx=i,
            start_sec=i * chunk_duration_sec,
            end_sec=min((i + 1) * chunk_duration_sec, duration_sec),
        )
        for i in range(count)
    ]


# ── ffprobe / ffmpeg wrappers ─────────────────────────────────────────

def probe_media(path: Path) -> MediaInfo:
    """Read duration and stream kinds. Unreadable input raises InvalidMediaError."""
    args = [
        "ffprobe",
        "-v", "error",
        "-show_entries", "format=duration:stream=codec_type:stream_disposition=attached_pic",
        "-of", "json",
        str(path),
    ]

    try:
        result = run_subprocess_capture(args, timeout=FFPROBE_TIMEOUT_SEC)
    except subprocess.TimeoutExpired:
        raise MediaProcessingError("ffprobe timed out", diagnostic=str(path.name))
    except OSError as e:
        raise MediaProcessingError("ffprobe could not be started", diagnostic=str(e))

    if result.returncode != 0:
        raise InvalidMediaError(f"Unreadable media: {_stderr_tail(result.stderr) or 'ffprobe failed'}")

    try:
        data = json.loads(result.stdout or "{}")
    except json.JSONDecodeError:
        raise InvalidMediaError("Unreadable media: ffprobe returned invalid JSON")

    streams = data.get('streams', [])
    has_audio = any(s.get('codec_type') == 'audio' for s in streams)
    # cover art shows up as a video stream flagged attached_pic
    has_video = any(
        s.get('codec_type') == 'video'
        and not s.get('disposition', {}).get('attached_pic')
        for s in streams
    )

    try:
        duration = float(data.get('format', {}).get('duration', 0) or 0)
    except (TypeError, ValueError):
        duration = 0.0

    return MediaInfo(duration_sec=round(duration, 3), has_audio=has_audio, has_video=has_video)


def _run_media_tool(args: list[str], output_path: Path, timeout: int, what: str):
    """
    Run an ffmpeg command that must produce output_path. A failure is
    retried once with identical arguments; the second failure raises
    MediaProcessingError with the tool's diagnostic text.
    """
    diagnostic = ""
    for attempt in range(1, FFMPEG_TOOL_ATTEMPTS + 1):
        try:
            result = run_subprocess_capture(args, timeout=timeout)
        except subprocess.TimeoutExpired:
            diagnostic = f"timed out after {timeout}s"
        except OSError as e:
            diagnostic = f"{args[0]} could not be started: {e}"
        else:
            if result.returncode == 0 and output_path.exists():
                return
            if result.returncode == 0:
                diagnostic = "output file not created"
            else:
                diagnostic = _stderr_tail(result.stderr) or f"exit code {result.returncode}"

        logger.warning("%s failed (attempt %d/%d): %s",
                       what, attempt, FFMPEG_TOOL_ATTEMPTS, diagnostic)

    raise MediaProcessingError(f"{what} failed", diagnostic=diagnostic)


def extract_audio_track(input_path: Path, output_dir: Path) -> Path:
    """Pull the first audio track out of a video container, losslessly."""
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / "extracted.wav"

    args = [
        "ffmpeg",
        "-y",
        "-i", str(input_path),
        "-vn",
        "-map", "0:a:0",
        "-codec:a", NORM_CODEC,
        str(output_path),
    ]
    _run_media_tool(args, output_path, FFMPEG_EXTRACT_TIMEOUT_SEC, "Audio extraction")
    logger.info("Extracted audio track: %s", output_path)
    return output_path


def normalize_audio(input_path: Path, output_dir: Path) -> Path:
    """
    Normalize audio to mono, 16kHz, PCM s16le WAV.
    Removes codec variance so chunk boundaries do not depend on the source format.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    output_path = output_dir / f"normalized.{NORM_FORMAT}"

    args = [
        "ffmpeg",
        "-y",                           # overwrite
        "-i", str(input_path),
        "-vn",
        "-ar", str(NORM_SAMPLE_RATE),   # 16kHz
        "-ac", str(NORM_CHANNELS),      # mono downmix
        "-codec:a", NORM_CODEC,
        "-f", NORM_FORMAT,
        str(output_path),
    ]
    _run_media_tool(args, output_path, FFMPEG_EXTRACT_TIMEOUT_SEC, "Audio normalization")
    logger.info("Normalized audio: %s", output_path)
    return output_path


def cut_chunk(normalized_path: Path, chunks_dir: Path, span: ChunkSpan) -> Path:
    """Cut one span out of the normalized file. PCM copy is sample-accurate."""
    chunks_dir.mkdir(parents=True, exist_ok=True)
    chunk_file = chunks_dir / f"chunk_{span.idx:03d}.{NORM_FORMAT}"

    args = [
        "ffmpeg",
        "-y",
        "-i", str(normalized_path),
        "-ss", f"{span.start_sec:.3f}",
        "-t", f"{span.duration:.3f}",
        "-codec:a", "copy",  # No re-encoding needed, already normalized
        str(chunk_file),
    ]
    _run_media_tool(args, chunk_file, FFMPEG_CHUNK_TIMEOUT_SEC, f"Chunk {span.idx} creation")
    return chunk_file


# ── Prepared audio (scoped workspace + lazy chunk sequence) ──────────

class PreparedAudio:
    """
    A source converted to normalized audio inside a private workspace.

    Use as a context manager. Iterating yields AudioChunk objects in index
    order, cutting each chunk only when it is requested; every iteration
    starts again from chunk 0. Leaving the context deletes the workspace and
    all chunk files on every exit path.
    """

    def __init__(self, preparer: "AudioPreparer", source_ref: str,
                 spans: list[ChunkSpan] | None = None):
        self._preparer = preparer
        self.source_ref = source_ref
        self.spans: list[ChunkSpan] | None = list(spans) if spans else None
        self.workspace: Path | None = None
        self.normalized_path: Path | None = None
        self.duration_sec: float | None = None
        self._closed = False

    def __enter__(self) -> "PreparedAudio":
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def open(self):
        if self.workspace is not None:
            return
        root = self._preparer.workspace_root
        root.mkdir(parents=True, exist_ok=True)
        self.workspace = Path(tempfile.mkdtemp(prefix="run-", dir=str(root)))
        try:
            self._build()
        except BaseException:
            self.close()
            raise

    def _build(self):
        ws = self.workspace
        source_path = self._preparer.storage.fetch_to(self.source_ref, ws / "source")

        info = probe_media(source_path)
        if not info.has_audio:
            raise InvalidMediaError("Media has no audio track")
        if info.duration_sec <= 0:
            raise InvalidMediaError("Media has zero duration")

        audio_path = source_path
        if info.has_video:
            audio_path = extract_audio_track(source_path, ws / "extracted")
        else:
            logger.debug("Audio-only source, skipping extraction")

        self.normalized_path = normalize_audio(audio_path, ws / "normalized")

        # Chunk boundaries come from the normalized file, not the container
        normalized = probe_media(self.normalized_path)
        if normalized.duration_sec <= 0:
            raise InvalidMediaError("Normalized audio has zero duration")
        self.duration_sec = normalized.duration_sec

        if self.spans is None:
            self.spans = self._preparer.plan(self.duration_sec)
            logger.info("Planned %d chunk(s) for %.1fs of audio",
                        len(self.spans), self.duration_sec)
        else:
            logger.info("Reusing %d persisted chunk boundaries", len(self.spans))

    def close(self):
        if self._closed:
            return
        self._closed = True
        if self.workspace is not None:
            cleanup_workspace(self.workspace)

    @property
    def closed(self) -> bool:
        return self._closed

    def __len__(self) -> int:
        return len(self.spans or [])

    def __iter__(self) -> Iterator[AudioChunk]:
        if self.normalized_path is None or self._closed:
            raise RuntimeError("PreparedAudio is not open")
        return self._generate()

    def _generate(self) -> Iterator[AudioChunk]:
        chunks_dir = self.workspace / "chunks"
        for span in self.spans:
            chunk_file = cut_chunk(self.normalized_path, chunks_dir, span)
            try:
                data = chunk_file.read_bytes()
            finally:
                chunk_file.unlink(missing_ok=True)
            yield AudioChunk(
                index=span.idx,
                start_seconds=span.start_sec,
                end_seconds=span.end_sec,
                data=data,
                sample_rate=NORM_SAMPLE_RATE,
            )


class AudioPreparer:
    """Builds PreparedAudio sequences for source references."""

    def __init__(self, storage: StorageResolver | None = None,
                 workspace_root: Path | None = None,
                 chunk_target_sec: float = CHUNK_TARGET_SEC):
        self.storage = storage or StorageResolver()
        self.workspace_root = Path(workspace_root or DEFAULT_WORKSPACE_ROOT)
        self.chunk_target_sec = chunk_target_sec

    def plan(self, duration_sec: float) -> list[ChunkSpan]:
        return create_chunk_manifest(duration_sec, self.chunk_target_sec)

    def prepare(self, source_ref: str,
                spans: list[ChunkSpan] | None = None) -> PreparedAudio:
        """
        Return the (unopened) chunk sequence for source_ref. Pass spans to
        reuse boundaries persisted by an earlier run instead of planning anew.
        """
        return PreparedAudio(self, source_ref, spans)
