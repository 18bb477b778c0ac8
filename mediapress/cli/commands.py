"""
Command-line trigger surface for MediaPress.
Exit code 0 when the job ends DONE, 1 when it ends in ERROR or the request is rejected.
"""

import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import typer

from mediapress.core.config import AppConfig
from mediapress.core.constants import (
    APP_NAME, APP_VERSION, JobStatus, ChunkStatus, STEP_NAMES, FIRST_STEP, LAST_STEP,
)
from mediapress.core.db_sqlite import Database
from mediapress.core.diagnostics import get_diagnostics, missing_tools
from mediapress.core.error_codes import JobError
from mediapress.core.models_sqlite import Job
from mediapress.core.output_writer import write_job_outputs
from mediapress.core.pipeline import PipelineOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="mediapress",
    no_args_is_help=True,
    help="Turn uploaded media into a transcript, a summary and an article.",
)


@dataclass
class _State:
    config: AppConfig
    db_path: Optional[Path] = None
    watch: bool = True
    _db: Optional[Database] = None
    _orchestrator: Optional[PipelineOrchestrator] = None

    @property
    def db(self) -> Database:
        if self._db is None:
            self._db = Database(self.db_path or self.config.db_path)
        return self._db

    @property
    def orchestrator(self) -> PipelineOrchestrator:
        if self._orchestrator is None:
            self._orchestrator = build_orchestrator(
                self.config, db=self.db,
                on_job_updated=_ProgressPrinter() if self.watch else None,
            )
        return self._orchestrator


class _ProgressPrinter:
    """Print one line per stage/status transition of a job."""

    def __init__(self):
        self._last: dict[str, tuple] = {}

    def __call__(self, job: Job):
        key = (job.status, job.stage)
        if self._last.get(job.id) == key:
            return
        self._last[job.id] = key
        stage = job.stage or "-"
        typer.echo(f"[{job.id[:8]}] {job.status:<10} {stage}")


def _enable_console_logging():
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s"))
    root = logging.getLogger()
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)


def _fail(message: str):
    typer.echo(message, err=True)
    raise typer.Exit(code=1)


def _require_tools():
    missing = missing_tools()
    if missing:
        _fail(f"Missing required tools: {', '.join(missing)} (install ffmpeg)")


def _finish(job: Job | None):
    """Report the final state of a run and exit accordingly."""
    if job is None:
        _fail("Job disappeared during processing")
    typer.echo(f"Job {job.id}: {job.status}")
    if job.status == JobStatus.DONE:
        return
    if job.error_message:
        typer.echo(job.error_message, err=True)
    raise typer.Exit(code=1)


@app.callback()
def main_callback(
    ctx: typer.Context,
    config_path: Optional[Path] = typer.Option(
        None, "--config", "-c", help="Path to config.json (default: ~/.config/mediapress/config.json)."),
    db_path: Optional[Path] = typer.Option(None, "--db", help="SQLite job database override."),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Also log to stderr."),
    watch: bool = typer.Option(True, "--watch/--no-watch", help="Print stage transitions."),
):
    """MediaPress command-line interface."""
    if verbose:
        _enable_console_logging()
    ctx.obj = _State(config=AppConfig(config_path), db_path=db_path, watch=watch)


@app.command()
def upload(ctx: typer.Context,
           source_ref: str = typer.Argument(..., help="Local path, file:// or http(s):// URL.")):
    """Register an uploaded source without processing it."""
    state: _State = ctx.obj
    try:
        job = state.orchestrator.create_job(source_ref)
    except ValueError as e:
        _fail(str(e))
    typer.echo(job.id)


@app.command()
def start(ctx: typer.Context,
          source_ref: str = typer.Argument(..., help="Local path, file:// or http(s):// URL.")):
    """Process a source from step 1, superseding any run already in progress for it."""
    state: _State = ctx.obj
    _require_tools()
    try:
        job = state.orchestrator.start(source_ref)
    except (ValueError, JobError) as e:
        _fail(str(e))
    _finish(job)


@app.command()
def retry(ctx: typer.Context,
          job_id: str = typer.Argument(...),
          step: int = typer.Argument(..., min=FIRST_STEP, max=LAST_STEP,
                                     help="1=prepare 2=transcribe 3=summarize 4=article")):
    """Re-run a job from the given step using its persisted artifacts."""
    state: _State = ctx.obj
    if step <= 2:
        _require_tools()
    try:
        job = state.orchestrator.retry_from_step(job_id, step)
    except (ValueError, JobError) as e:
        _fail(str(e))
    _finish(job)


@app.command()
def resume(ctx: typer.Context, job_id: str = typer.Argument(...)):
    """Continue a job from its first incomplete step."""
    state: _State = ctx.obj
    _require_tools()
    try:
        job = state.orchestrator.resume(job_id)
    except (ValueError, JobError) as e:
        _fail(str(e))
    _finish(job)


@app.command()
def show(ctx: typer.Context,
         job_id: str = typer.Argument(...),
         full: bool = typer.Option(False, "--full", help="Print artifact text, not just sizes.")):
    """Show one job."""
    state: _State = ctx.obj
    job = state.db.get_job(job_id)
    if job is None:
        _fail(f"Job not found: {job_id}")

    typer.echo(f"id:         {job.id}")
    typer.echo(f"source:     {job.source_ref}")
    typer.echo(f"status:     {job.status}{'' if job.is_live else ' (superseded)'}")
    typer.echo(f"stage:      {job.stage or '-'}")
    typer.echo(f"created:    {job.created_at}")
    typer.echo(f"updated:    {job.updated_at}")
    if job.error_message:
        typer.echo(f"error:      {job.error_message}")

    chunks = state.db.get_chunks(job_id)
    if chunks:
        done = sum(1 for c in chunks if c.status == ChunkStatus.DONE)
        typer.echo(f"chunks:     {done}/{len(chunks)} transcribed")

    timestamps = job.timestamps
    for name, value in (("transcript", job.transcript), ("summary", job.summary),
                        ("article", job.article)):
        if value is None:
            typer.echo(f"{name + ':':<12}-")
        elif full:
            typer.echo(f"\n── {name} ──\n{value}\n")
        else:
            typer.echo(f"{name + ':':<12}{len(value)} chars")
    if timestamps is not None and not full:
        typer.echo(f"timestamps: {len(timestamps)} entries")


@app.command("list")
def list_jobs(ctx: typer.Context,
              limit: int = typer.Option(50, "--limit", "-n", min=1),
              offset: int = typer.Option(0, "--offset", min=0)):
    """List live jobs, newest first."""
    state: _State = ctx.obj
    jobs = state.db.list_live_jobs(limit=limit, offset=offset)
    if not jobs:
        typer.echo("No jobs.")
        return
    for job in jobs:
        typer.echo(f"{job.id}  {job.status:<10} {(job.stage or '-'):<10} "
                   f"{job.updated_at or ''}  {job.source_ref}")


@app.command()
def export(ctx: typer.Context,
           job_id: str = typer.Argument(...),
           output_dir: Optional[Path] = typer.Argument(
               None, help="Output root (default: configured output_root)."),
           title: Optional[str] = typer.Option(None, "--title", help="Folder name override.")):
    """Write a job's transcript, timestamps, summary and article to files."""
    state: _State = ctx.obj
    job = state.db.get_job(job_id)
    if job is None:
        _fail(f"Job not found: {job_id}")
    written = write_job_outputs(job, output_dir or state.config.output_root, title)
    if not written:
        _fail(f"Job {job_id} has no artifacts to export")
    for name, path in written.items():
        typer.echo(f"{name}: {path}")


@app.command()
def doctor():
    """Check external tools and API keys."""
    info = get_diagnostics()
    typer.echo(f"{APP_NAME} {APP_VERSION}")
    typer.echo(f"ffmpeg:  {info['ffmpeg_version']}")
    typer.echo(f"ffprobe: {info['ffprobe_version']}")
    for env, present in info['api_keys'].items():
        typer.echo(f"{env}: {'set' if present else 'missing'}")
    typer.echo("steps:   " + ", ".join(f"{n}={name}" for n, name in STEP_NAMES.items()))

    if missing_tools():
        raise typer.Exit(code=1)
