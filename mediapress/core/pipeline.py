"""
Pipeline orchestrator.
Drives a job through PREPARE → TRANSCRIBE → SUMMARIZE → ARTICLE, persisting
each stage's output as soon as it is produced.

Every write made by a run is conditional on the run's token. When another
request takes the job over (start on the same source, retry, resume) the
older run's next write fails, and the older run stops without touching the job.
"""

import logging
from contextlib import ExitStack
from functools import partial
from dataclasses import dataclass
from typing import Callable, Optional

from mediapress.core.constants import (
    JobStatus, Step, STEP_NAMES, FIRST_STEP, LAST_STEP, ChunkStatus,
    MAX_ERROR_MESSAGE_LEN,
)
from mediapress.core.db_sqlite import Database
from mediapress.core.error_codes import (
    JobError, ConcurrencyConflictError, JobNotFoundError, MissingPrerequisiteError,
    TranscriptionError,
)
from mediapress.core.models_sqlite import Job, JobChunk, ChunkSpan, timestamps_to_json
from mediapress.core.audio_prepare import AudioPreparer, PreparedAudio
from mediapress.core.transcription import TranscriptionStage
from mediapress.core.summarize import SummarizationStage
from mediapress.core.article import ArticleStage

logger = logging.getLogger(__name__)


def check_prerequisites(step: int, job: Job, chunks: list[JobChunk]):
    """Raise MissingPrerequisiteError if the artifacts stage `step` reads are absent."""
    if step == Step.TRANSCRIBE and not chunks:
        raise MissingPrerequisiteError(step, "Step 2 requires chunk boundaries from step 1")
    if step == Step.SUMMARIZE and not job.transcript:
        raise MissingPrerequisiteError(step, "Step 3 requires a transcript")
    if step == Step.ARTICLE and not job.summary:
        raise MissingPrerequisiteError(step, "Step 4 requires a summary")


def next_incomplete_step(job: Job, chunks: list[JobChunk]) -> int:
    if not chunks:
        return Step.PREPARE
    if not job.transcript:
        return Step.TRANSCRIBE
    if not job.summary:
        return Step.SUMMARIZE
    return Step.ARTICLE


def _validate_step(step) -> int:
    if isinstance(step, bool) or not isinstance(step, int) or not FIRST_STEP <= step <= LAST_STEP:
        raise ValueError(f"step must be an integer in {FIRST_STEP}..{LAST_STEP}, got {step!r}")
    return step


@dataclass
class _Run:
    job: Job
    run_token: str
    resources: ExitStack
    audio: Optional[PreparedAudio] = None


class PipelineOrchestrator:
    """
    Owns the job state machine: UPLOADED → PROCESSING → {DONE, ERROR}.
    DONE and ERROR go back to PROCESSING through start / retry / resume.
    """

    def __init__(self, db: Database, preparer: AudioPreparer,
                 transcriber: TranscriptionStage, summarizer: SummarizationStage,
                 article_writer: ArticleStage,
                 on_job_updated: Callable[[Job], None] | None = None):
        self.db = db
        self.preparer = preparer
        self.transcriber = transcriber
        self.summarizer = summarizer
        self.article_writer = article_writer
        self.on_job_updated = on_job_updated

    # ── Caller operations ─────────────────────────────────────────────

    def create_job(self, source_ref: str) -> Job:
        """Acknowledge an upload. The job waits in UPLOADED until started."""
        if not source_ref or not source_ref.strip():
            raise ValueError("source_ref must not be empty")
        job = self.db.create_job(source_ref)
        logger.info("Job %s created for %s", job.id, source_ref)
        self._notify(job)
        return job

    def start(self, source_ref: str) -> Job:
        """
        Process source_ref from step 1. Any live PROCESSING job for the same
        source is superseded first. Returns the job as the run left it.
        """
        if not source_ref or not source_ref.strip():
            raise ValueError("source_ref must not be empty")
        job, superseded = self.db.claim_source(source_ref)
        self._announce_claim(job, superseded)
        return self._run(job, FIRST_STEP)

    def retry_from_step(self, job_id: str, step: int) -> Job:
        """Re-enter the stage sequence at `step` using persisted artifacts."""
        step = _validate_step(step)
        job, superseded = self.db.claim_job(
            job_id, check=lambda j, chunks: check_prerequisites(step, j, chunks))
        if job is None:
            raise JobNotFoundError(job_id)
        self._announce_claim(job, superseded)
        return self._run(job, step)

    def resume(self, job_id: str) -> Job:
        """Retry from the first stage whose output is missing."""
        job = self.db.get_job(job_id)
        if job is None or not job.is_live:
            raise JobNotFoundError(job_id)
        step = next_incomplete_step(job, self.db.get_chunks(job_id))
        logger.info("Resuming job %s at step %d (%s)", job_id, step, STEP_NAMES[step])
        return self.retry_from_step(job_id, step)

    def get_job(self, job_id: str) -> Job | None:
        return self.db.get_job(job_id)

    def list_jobs(self, limit: int = 50, offset: int = 0) -> list[Job]:
        return self.db.list_live_jobs(limit=limit, offset=offset)

    # ── Claims ────────────────────────────────────────────────────────

    def _announce_claim(self, job: Job, superseded: list[str]):
        for old_id in superseded:
            logger.info("Job %s superseded by job %s", old_id, job.id)
            old = self.db.get_job(old_id)
            if old:
                self._notify(old)
        logger.info("Job %s claimed for processing", job.id)
        self._notify(job)

    # ── Run loop ──────────────────────────────────────────────────────

    def _notify(self, job: Job):
        if self.on_job_updated:
            try:
                self.on_job_updated(job)
            except Exception:
                # a broken listener must not strand the job in PROCESSING
                logger.warning("on_job_updated callback failed for job %s", job.id,
                               exc_info=True)

    def _write(self, run: _Run, **fields):
        """Run-token guarded update; losing ownership ends the run."""
        if not self.db.update_job_if_owner(run.job.id, run.run_token, **fields):
            raise ConcurrencyConflictError(f"Job {run.job.id} is owned by a newer run")
        run.job = self.db.get_job(run.job.id)
        self._notify(run.job)

    def _fail(self, run: _Run, message: str):
        message = (message or "Unknown error")[:MAX_ERROR_MESSAGE_LEN]
        if self.db.update_job_if_owner(run.job.id, run.run_token,
                                       status=JobStatus.ERROR, error_message=message):
            run.job = self.db.get_job(run.job.id)
            self._notify(run.job)
        else:
            logger.info("Job %s: failure not recorded, job is owned by a newer run", run.job.id)

    def _run(self, job: Job, first_step: int) -> Job:
        with ExitStack() as resources:
            run = _Run(job=job, run_token=job.run_token, resources=resources)
            try:
                for step in range(first_step, LAST_STEP + 1):
                    name = STEP_NAMES[step]
                    self._write(run, stage=name)
                    logger.info("Job %s: %s started", job.id, name)
                    fields = self.STAGES[step - 1](self, run)
                    if fields:
                        self._write(run, **fields)
                    logger.info("Job %s: %s finished", job.id, name)

                self._write(run, status=JobStatus.DONE)
                logger.info("Job %s: done", job.id)

            except ConcurrencyConflictError as e:
                logger.info("Job %s: run stopped, %s", job.id, e.message)
            except JobError as e:
                logger.warning("Job %s failed at %s: %s", job.id, run.job.stage, e)
                self._fail(run, e.message)
            except Exception as e:
                logger.error("Unexpected error processing job %s: %s", job.id, e, exc_info=True)
                self._fail(run, f"{type(e).__name__}: {e}")

        return self.db.get_job(job.id)

    # ── Stages ────────────────────────────────────────────────────────
    # Each stage returns the job fields to persist. Downstream artifacts are
    # cleared alongside so a job never pairs new input with stale output.

    def _prepare(self, run: _Run) -> dict:
        audio = run.resources.enter_context(self.preparer.prepare(run.job.source_ref))
        run.audio = audio
        if not self.db.replace_chunks(run.job.id, audio.spans, run.run_token):
            raise ConcurrencyConflictError(f"Job {run.job.id} is owned by a newer run")
        logger.info("Job %s: %d chunk(s) planned", run.job.id, len(audio))
        return {}

    def _record_chunk(self, run: _Run, index: int, status: str, attempts: int,
                      error: TranscriptionError | None):
        recorded = self.db.update_chunk(
            run.job.id, index, run.run_token,
            status=status,
            attempts=attempts,
            error_code=error.code if error else None,
            error_message=error.message[:MAX_ERROR_MESSAGE_LEN] if error else None,
        )
        if not recorded:
            raise ConcurrencyConflictError(f"Job {run.job.id} is owned by a newer run")

    def _transcribe(self, run: _Run) -> dict:
        job_id = run.job.id
        audio = run.audio
        if audio is None:
            # retry from step 2: re-cut from the boundaries step 1 persisted
            spans = [ChunkSpan(c.idx, c.start_sec, c.end_sec) for c in self.db.get_chunks(job_id)]
            if not spans:
                raise MissingPrerequisiteError(Step.TRANSCRIBE,
                                               "Step 2 requires chunk boundaries from step 1")
            audio = run.resources.enter_context(
                self.preparer.prepare(run.job.source_ref, spans=spans))
            run.audio = audio

        if not self.db.update_chunks_status(job_id, ChunkStatus.PENDING, run.run_token):
            raise ConcurrencyConflictError(f"Job {job_id} is owned by a newer run")
        result = self.transcriber.transcribe(
            audio, on_chunk_result=partial(self._record_chunk, run))

        # audio is no longer needed by later stages
        audio.close()
        run.audio = None

        return {
            'transcript': result.transcript,
            'timestamps_json': timestamps_to_json(result.timestamps),
            'summary': None,
            'article': None,
        }

    def _summarize(self, run: _Run) -> dict:
        summary = self.summarizer.summarize(run.job.transcript, run.job.timestamps)
        return {'summary': summary, 'article': None}

    def _article(self, run: _Run) -> dict:
        article = self.article_writer.generate_article(run.job.summary, run.job.transcript)
        return {'article': article}

    STAGES = (_prepare, _transcribe, _summarize, _article)


def build_orchestrator(config, db: Database | None = None,
                       on_job_updated: Callable[[Job], None] | None = None) -> PipelineOrchestrator:
    """Wire the default providers and stages from an AppConfig."""
    from mediapress.core.storage import StorageResolver, HttpStorageResolver
    from mediapress.core.transcribe_deepgram import DeepgramProvider
    from mediapress.core.generate_text import GeminiProvider, OpenRouterProvider
    from mediapress.core.constants import SUMMARY_TEMPERATURE, ARTICLE_TEMPERATURE, ARTICLE_MAX_TOKENS

    db = db or Database(config.db_path)
    storage = StorageResolver(http=HttpStorageResolver(timeout_sec=config.provider_timeout_sec))

    preparer = AudioPreparer(
        storage=storage,
        workspace_root=config.workspace_root,
        chunk_target_sec=config.chunk_target_sec,
    )
    transcriber = TranscriptionStage(
        DeepgramProvider(model=config.deepgram_model, language=config.deepgram_language),
        workers=config.transcription_workers,
        max_attempts=config.provider_max_attempts,
        base_delay=config.backoff_base_sec,
    )
    summarizer = SummarizationStage(
        GeminiProvider(model=config.gemini_model, temperature=SUMMARY_TEMPERATURE,
                       timeout_sec=config.provider_timeout_sec),
        max_input_chars=config.summary_max_input_chars,
        embed_timestamps=config.embed_timestamps_in_summary,
        max_attempts=config.provider_max_attempts,
        base_delay=config.backoff_base_sec,
    )
    article_writer = ArticleStage(
        OpenRouterProvider(model=config.openrouter_model, max_tokens=ARTICLE_MAX_TOKENS,
                           temperature=ARTICLE_TEMPERATURE,
                           timeout_sec=config.provider_timeout_sec),
        include_transcript=config.article_include_transcript,
        max_input_chars=config.summary_max_input_chars,
        max_attempts=config.provider_max_attempts,
        base_delay=config.backoff_base_sec,
    )
    return PipelineOrchestrator(db, preparer, transcriber, summarizer, article_writer,
                                on_job_updated=on_job_updated)
