"""
Data models (plain dataclasses) for MediaPress.
Job and JobChunk mirror the SQLite rows; the rest live in memory only.
"""

import json
from dataclasses import dataclass, field
from typing import Optional

from mediapress.core.constants import JobStatus, ChunkStatus


@dataclass
class TimestampEntry:
    offset_seconds: float
    text: str

    def to_dict(self) -> dict:
        # "time" is the key existing consumers of timestamps_json read
        return {'time': self.offset_seconds, 'text': self.text}

    @classmethod
    def from_dict(cls, data: dict) -> "TimestampEntry":
        return cls(offset_seconds=float(data['time']), text=str(data.get('text', '')))


def timestamps_to_json(timestamps: list[TimestampEntry]) -> str:
    return json.dumps({'timestamps': [t.to_dict() for t in timestamps]},
                      ensure_ascii=False)


def timestamps_from_json(raw: str | None) -> list[TimestampEntry] | None:
    """Decode a timestamps_json column value. None when absent or malformed."""
    if not raw:
        return None
    try:
        data = json.loads(raw)
        entries = data['timestamps']
        if not isinstance(entries, list):
            return None
        return [TimestampEntry.from_dict(e) for e in entries]
    except (ValueError, KeyError, TypeError):
        return None


@dataclass
class Job:
    id: str                          # UUID
    source_ref: str
    status: str = JobStatus.UPLOADED
    stage: Optional[str] = None
    transcript: Optional[str] = None
    timestamps_json: Optional[str] = None
    summary: Optional[str] = None
    article: Optional[str] = None
    error_message: Optional[str] = None
    run_token: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None

    @property
    def timestamps(self) -> list[TimestampEntry] | None:
        return timestamps_from_json(self.timestamps_json)

    @property
    def is_live(self) -> bool:
        return self.deleted_at is None


@dataclass
class JobChunk:
    job_id: str
    idx: int
    start_sec: float
    end_sec: float
    status: str = ChunkStatus.PENDING
    attempts: int = 0
    error_code: Optional[str] = None
    error_message: Optional[str] = None


@dataclass(frozen=True)
class ChunkSpan:
    idx: int
    start_sec: float
    end_sec: float

    @property
    def duration(self) -> float:
        return self.end_sec - self.start_sec


@dataclass
class AudioChunk:
    index: int
    start_seconds: float
    end_seconds: float
    data: bytes = field(repr=False)
    sample_rate: int = 16000

    @property
    def duration(self) -> float:
        return self.end_seconds - self.start_seconds


@dataclass
class ChunkTranscript:
    """Provider output for one chunk; timestamps are relative to the chunk start."""
    text: str
    timestamps: list[TimestampEntry] = field(default_factory=list)


@dataclass
class TranscriptResult:
    transcript: str
    timestamps: list[TimestampEntry] = field(default_factory=list)
