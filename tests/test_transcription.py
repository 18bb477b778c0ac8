#!/usr/bin/env python3
"""
Tests for the parallel transcription stage.
"""

import sys
import time
import threading
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from mediapress.core.constants import ChunkStatus
from mediapress.core.error_codes import ProviderError, TranscriptionError
from mediapress.core.models_sqlite import AudioChunk, ChunkTranscript, TimestampEntry
from mediapress.core.transcription import TranscriptionStage


def make_chunks(count: int, length: float = 10.0) -> list[AudioChunk]:
    return [AudioChunk(index=i, start_seconds=i * length, end_seconds=(i + 1) * length,
                       data=str(i).encode())
            for i in range(count)]


class FakeProvider:
    """Transcribes chunk bytes b"<n>" to "text <n>", later chunks finishing first."""

    def __init__(self, fail: dict | None = None, empty: bool = False):
        self.fail = dict(fail or {})
        self.empty = empty
        self.calls: dict[int, int] = {}
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def transcribe_chunk(self, audio_bytes: bytes, sample_rate: int = 16000) -> ChunkTranscript:
        index = int(audio_bytes.decode())
        with self._lock:
            self.calls[index] = self.calls.get(index, 0) + 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            time.sleep(0.005 * (6 - index % 6))
            remaining = self.fail.get(index, 0)
            if remaining:
                self.fail[index] = remaining - 1
                raise ProviderError(f"HTTP 503 for chunk {index}")
            if self.empty:
                return ChunkTranscript("", [])
            return ChunkTranscript(f"text {index}", [TimestampEntry(1.0, f"text {index}")])
        finally:
            with self._lock:
                self.active -= 1


class TestTranscriptionStage(unittest.TestCase):
    """Test fan-out, retry and ordered reassembly."""

    def stage(self, provider, workers=3, max_attempts=4):
        return TranscriptionStage(provider, workers=workers, max_attempts=max_attempts,
                                  base_delay=0.01, sleep=mock.Mock())

    def test_results_merged_in_chunk_order(self):
        provider = FakeProvider()
        result = self.stage(provider).transcribe(make_chunks(6))
        self.assertEqual(result.transcript,
                         "\n\n".join(f"text {i}" for i in range(6)))
        self.assertEqual([t.offset_seconds for t in result.timestamps],
                         [1.0, 11.0, 21.0, 31.0, 41.0, 51.0])

    def test_worker_bound(self):
        provider = FakeProvider()
        self.stage(provider, workers=2).transcribe(make_chunks(8))
        self.assertLessEqual(provider.max_active, 2)
        self.assertEqual(sorted(provider.calls), list(range(8)))

    def test_transient_failure_retried(self):
        provider = FakeProvider(fail={1: 2})
        events = []
        result = self.stage(provider).transcribe(
            make_chunks(3), on_chunk_result=lambda *args: events.append(args))
        self.assertIn("text 1", result.transcript)
        self.assertEqual(provider.calls[1], 3)
        done = {e[0]: e for e in events}
        self.assertEqual(done[1][1], ChunkStatus.DONE)
        self.assertEqual(done[1][2], 3)
        self.assertEqual(done[0][2], 1)

    def test_exhausted_chunk_fails_stage(self):
        provider = FakeProvider(fail={2: 99})
        events = []
        with self.assertRaises(TranscriptionError) as ctx:
            self.stage(provider, max_attempts=3).transcribe(
                make_chunks(4), on_chunk_result=lambda *args: events.append(args))
        err = ctx.exception
        self.assertEqual(err.chunk_index, 2)
        self.assertEqual(err.attempts, 3)
        self.assertIn("Chunk 2", err.message)
        self.assertIn((2, ChunkStatus.FAILED, 3), [e[:3] for e in events])

    def test_non_retryable_failure_not_retried(self):
        provider = mock.Mock()
        provider.transcribe_chunk.side_effect = ProviderError("HTTP 401", retryable=False)
        with self.assertRaises(TranscriptionError) as ctx:
            self.stage(provider).transcribe(make_chunks(1))
        self.assertEqual(ctx.exception.attempts, 1)
        self.assertEqual(provider.transcribe_chunk.call_count, 1)

    def test_unexpected_exception_wrapped(self):
        provider = mock.Mock()
        provider.transcribe_chunk.side_effect = KeyError("results")
        with self.assertRaises(TranscriptionError) as ctx:
            self.stage(provider).transcribe(make_chunks(1))
        self.assertEqual(ctx.exception.chunk_index, 0)
        self.assertIn("KeyError", ctx.exception.message)

    def test_no_chunks(self):
        with self.assertRaises(TranscriptionError) as ctx:
            self.stage(FakeProvider()).transcribe([])
        self.assertIn("No audio chunks", ctx.exception.message)

    def test_no_speech_anywhere(self):
        with self.assertRaises(TranscriptionError) as ctx:
            self.stage(FakeProvider(empty=True)).transcribe(make_chunks(3))
        self.assertIn("No speech", ctx.exception.message)

    def test_chunks_pulled_lazily(self):
        pulled = []

        def lazy():
            for chunk in make_chunks(10):
                pulled.append(chunk.index)
                yield chunk

        provider = FakeProvider(fail={0: 99})
        with self.assertRaises(TranscriptionError):
            self.stage(provider, workers=1, max_attempts=1).transcribe(lazy())
        # window is 2 x workers, so the failing first chunk stops the pull early
        self.assertLess(len(pulled), 10)


if __name__ == "__main__":
    unittest.main()
