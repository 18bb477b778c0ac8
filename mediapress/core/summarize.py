"""
Summarization stage and the timestamp embedding codec.

When enabled, the summary carries a trailing self-describing block so that
consumers which only read `summary` can still recover timestamps:

    <!-- mediapress:timestamps v1 {"timestamps": [{"time": 0.0, "text": "..."}]} -->

The dedicated timestamps_json column stays canonical; the embedded copy is a
compatibility channel and is decoded leniently.
"""

import re
import json
import time
import logging
from typing import Callable

from mediapress.core.backoff import call_with_retry
from mediapress.core.constants import (
    SUMMARY_MAX_INPUT_CHARS, TRUNCATION_HEAD_SHARE, TRUNCATION_MARKER, TIMESTAMP_BLOCK_TAG,
    PROVIDER_MAX_ATTEMPTS, BACKOFF_BASE_SEC,
)
from mediapress.core.error_codes import ProviderError, SummarizationError
from mediapress.core.models_sqlite import Job, TimestampEntry, timestamps_to_json, timestamps_from_json
from mediapress.core.prompts import summary_prompt, SUMMARY_SYSTEM

logger = logging.getLogger(__name__)

_BLOCK_RE = re.compile(
    r"\s*<!--\s*" + re.escape(TIMESTAMP_BLOCK_TAG) + r"\s+(\{.*?\})\s*-->\s*",
    re.DOTALL,
)
_WHITESPACE_RE = re.compile(r"\s+")


# ── Head-biased truncation ────────────────────────────────────────────

def truncate_head_biased(text: str, max_chars: int,
                         head_share: float = TRUNCATION_HEAD_SHARE,
                         marker: str = TRUNCATION_MARKER) -> str:
    """
    Fit text into max_chars (marker included). Keeps head_share of the budget
    from the start and the rest from the end, both cut at whitespace.
    """
    if len(text) <= max_chars:
        return text

    budget = max(0, max_chars - len(marker))
    head_len = int(budget * head_share)
    tail_len = budget - head_len

    head = text[:head_len]
    last_ws = max(head.rfind(c) for c in " \n\t")
    if last_ws > 0:
        head = head[:last_ws]

    tail = text[len(text) - tail_len:] if tail_len else ""
    first_ws = _WHITESPACE_RE.search(tail)
    if first_ws and first_ws.end() < len(tail):
        tail = tail[first_ws.end():]

    logger.info("Truncated input from %d to %d chars", len(text), len(head) + len(tail))
    return head.rstrip() + marker + tail.lstrip()


# ── Embedded timestamp block ──────────────────────────────────────────

def embed_timestamps(summary: str, timestamps: list[TimestampEntry]) -> str:
    """Append the timestamp block to summary (replacing any existing one)."""
    body = strip_embedded_timestamps(summary)
    # ">" is escaped so the payload can never close the HTML comment early
    payload = timestamps_to_json(timestamps).replace(">", "\\u003e")
    return f"{body}\n\n<!-- {TIMESTAMP_BLOCK_TAG} {payload} -->"


def _legacy_payload(summary: str) -> dict | None:
    """Older summaries were a whole JSON object: {"summary": ..., "timestamps": [...]}."""
    stripped = summary.strip()
    if not stripped.startswith("{"):
        return None
    try:
        data = json.loads(stripped)
    except ValueError:
        return None
    if isinstance(data, dict) and isinstance(data.get('timestamps'), list):
        return data
    return None


def extract_embedded_timestamps(summary: str | None) -> list[TimestampEntry] | None:
    """Decode timestamps embedded in a summary. Absent or malformed → None."""
    if not summary:
        return None

    matches = _BLOCK_RE.findall(summary)
    if matches:
        return timestamps_from_json(matches[-1])

    legacy = _legacy_payload(summary)
    if legacy is not None:
        return timestamps_from_json(json.dumps({'timestamps': legacy['timestamps']}))
    return None


def strip_embedded_timestamps(summary: str | None) -> str:
    """Summary text without any embedded timestamp block."""
    if not summary:
        return ""

    legacy = _legacy_payload(summary)
    if legacy is not None:
        return str(legacy.get('summary', '')).strip()

    return _BLOCK_RE.sub("\n\n", summary).strip()


def resolve_timestamps(job: Job) -> list[TimestampEntry] | None:
    """job.timestamps is canonical; the copy embedded in the summary is the fallback."""
    timestamps = job.timestamps
    if timestamps is not None:
        return timestamps
    return extract_embedded_timestamps(job.summary)


# ── Stage ─────────────────────────────────────────────────────────────

class SummarizationStage:

    def __init__(self, provider, max_input_chars: int = SUMMARY_MAX_INPUT_CHARS,
                 embed_timestamps: bool = True,
                 max_attempts: int = PROVIDER_MAX_ATTEMPTS,
                 base_delay: float = BACKOFF_BASE_SEC,
                 sleep: Callable[[float], None] = time.sleep):
        self.provider = provider
        self.max_input_chars = max_input_chars
        self.embed_timestamps = embed_timestamps
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep

    def _generate(self, prompt: str) -> str:
        text = self.provider.generate(prompt, system=SUMMARY_SYSTEM)
        if not text or not text.strip():
            raise ProviderError("Summary provider returned empty output")
        return text.strip()

    def summarize(self, transcript: str,
                  timestamps: list[TimestampEntry] | None = None) -> str:
        prompt = summary_prompt(truncate_head_biased(transcript, self.max_input_chars))

        try:
            summary = call_with_retry(
                lambda: self._generate(prompt),
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                label="Summary generation",
                sleep=self.sleep,
            )
        except ProviderError as e:
            raise SummarizationError(e.message, attempts=e.attempts) from e

        if self.embed_timestamps and timestamps:
            summary = embed_timestamps(summary, timestamps)
        return summary
