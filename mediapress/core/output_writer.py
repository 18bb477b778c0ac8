"""
Output writer: exports a job's artifacts as plain files.
"""

import json
import logging
from pathlib import Path
from urllib.parse import urlparse, unquote

from mediapress.core.models_sqlite import Job
from mediapress.core.security_utils import safe_output_path
from mediapress.core.summarize import resolve_timestamps, strip_embedded_timestamps

logger = logging.getLogger(__name__)


def default_title(job: Job) -> str:
    """Folder title derived from the source file name (without extension)."""
    path = urlparse(job.source_ref).path if "://" in job.source_ref else job.source_ref
    return Path(unquote(path)).stem


def write_job_outputs(job: Job, output_root: Path, title: str | None = None) -> dict[str, Path]:
    """
    Write whatever artifacts the job has to <OutputRoot>/<SanitizedTitle>/:
    transcript.txt, timestamps.json, summary.md, article.md.
    Returns {artifact name: written path}.
    """
    folder = safe_output_path(output_root, title or default_title(job), job.id)
    folder.mkdir(parents=True, exist_ok=True)

    written: dict[str, Path] = {}

    if job.transcript:
        path = folder / "transcript.txt"
        path.write_text(job.transcript, encoding='utf-8')
        written['transcript'] = path

    timestamps = resolve_timestamps(job)
    if timestamps:
        path = folder / "timestamps.json"
        path.write_text(
            json.dumps({'timestamps': [t.to_dict() for t in timestamps]},
                       ensure_ascii=False, indent=2),
            encoding='utf-8',
        )
        written['timestamps'] = path

    if job.summary:
        path = folder / "summary.md"
        path.write_text(strip_embedded_timestamps(job.summary), encoding='utf-8')
        written['summary'] = path

    if job.article:
        path = folder / "article.md"
        path.write_text(job.article, encoding='utf-8')
        written['article'] = path

    for name, path in written.items():
        logger.info("Wrote %s: %s", name, path)
    return written
