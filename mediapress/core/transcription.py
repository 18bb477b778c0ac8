"""
Transcription stage: fan audio chunks out to the provider on a bounded
worker pool, then reassemble the results in chunk order.

The stage is atomic. It returns a full TranscriptResult or raises
TranscriptionError; nothing partial is handed back to the caller.
"""

import time
import logging
from concurrent.futures import ThreadPoolExecutor, Future, wait, FIRST_COMPLETED
from typing import Callable, Iterable

from mediapress.core.backoff import call_with_retry
from mediapress.core.constants import (
    TRANSCRIPTION_WORKERS, PROVIDER_MAX_ATTEMPTS, BACKOFF_BASE_SEC, ChunkStatus,
)
from mediapress.core.error_codes import ProviderError, TranscriptionError
from mediapress.core.merge import merge_chunk_results
from mediapress.core.models_sqlite import AudioChunk, ChunkTranscript, TranscriptResult

logger = logging.getLogger(__name__)

# on_chunk_result(index, status, attempts, error)
ChunkCallback = Callable[[int, str, int, TranscriptionError | None], None]


class TranscriptionStage:

    def __init__(self, provider, workers: int = TRANSCRIPTION_WORKERS,
                 max_attempts: int = PROVIDER_MAX_ATTEMPTS,
                 base_delay: float = BACKOFF_BASE_SEC,
                 sleep: Callable[[float], None] = time.sleep):
        self.provider = provider
        self.workers = max(1, workers)
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep

    def _transcribe_one(self, chunk: AudioChunk) -> tuple[ChunkTranscript, int]:
        attempts = 0

        def call():
            nonlocal attempts
            attempts += 1
            return self.provider.transcribe_chunk(chunk.data, chunk.sample_rate)

        try:
            result = call_with_retry(
                call,
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                label=f"Chunk {chunk.index} transcription",
                sleep=self.sleep,
            )
        except ProviderError as e:
            raise TranscriptionError(e.message, chunk_index=chunk.index,
                                     attempts=e.attempts) from e
        except Exception as e:
            logger.exception("Unexpected error transcribing chunk %d", chunk.index)
            raise TranscriptionError(f"{type(e).__name__}: {e}", chunk_index=chunk.index,
                                     attempts=attempts) from e
        return result, attempts

    def transcribe(self, chunks: Iterable[AudioChunk],
                   on_chunk_result: ChunkCallback | None = None) -> TranscriptResult:
        """
        Transcribe chunks and merge them in index order.

        Chunks are pulled from the iterable only as pool slots free up, so no
        more than 2 x workers chunks are held in memory at once. The first
        chunk failure cancels everything still queued and is re-raised.
        """
        window = 2 * self.workers
        results: dict[int, tuple[float, float, ChunkTranscript]] = {}
        pending: dict[Future, AudioChunk] = {}
        source = iter(chunks)
        exhausted = False

        with ThreadPoolExecutor(max_workers=self.workers,
                                thread_name_prefix="transcribe") as pool:
            try:
                while True:
                    while not exhausted and len(pending) < window:
                        try:
                            chunk = next(source)
                        except StopIteration:
                            exhausted = True
                            break
                        pending[pool.submit(self._transcribe_one, chunk)] = chunk

                    if not pending:
                        break

                    done, _ = wait(pending, return_when=FIRST_COMPLETED)
                    for future in done:
                        chunk = pending.pop(future)
                        try:
                            transcript, attempts = future.result()
                        except TranscriptionError as e:
                            if on_chunk_result:
                                on_chunk_result(chunk.index, ChunkStatus.FAILED, e.attempts, e)
                            raise
                        results[chunk.index] = (chunk.start_seconds, chunk.duration, transcript)
                        if on_chunk_result:
                            on_chunk_result(chunk.index, ChunkStatus.DONE, attempts, None)
                        logger.info("Chunk %d transcribed (%d chars)",
                                    chunk.index, len(transcript.text))
            except BaseException:
                for future in pending:
                    future.cancel()
                raise

        if not results:
            raise TranscriptionError("No audio chunks to transcribe")

        merged = merge_chunk_results([results[i] for i in sorted(results)])
        if not merged.transcript:
            raise TranscriptionError("No speech detected in any chunk")

        logger.info("Transcription complete: %d chunk(s), %d chars",
                    len(results), len(merged.transcript))
        return merged
