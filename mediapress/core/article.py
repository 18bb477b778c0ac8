"""
Article stage: turn a summary (and optionally the transcript) into an article.
"""

import time
import logging
from typing import Callable

from mediapress.core.backoff import call_with_retry
from mediapress.core.constants import SUMMARY_MAX_INPUT_CHARS, PROVIDER_MAX_ATTEMPTS, BACKOFF_BASE_SEC
from mediapress.core.error_codes import ProviderError, ArticleGenerationError
from mediapress.core.prompts import article_prompt, ARTICLE_SYSTEM
from mediapress.core.summarize import strip_embedded_timestamps, truncate_head_biased

logger = logging.getLogger(__name__)


class ArticleStage:

    def __init__(self, provider, include_transcript: bool = False,
                 max_input_chars: int = SUMMARY_MAX_INPUT_CHARS,
                 max_attempts: int = PROVIDER_MAX_ATTEMPTS,
                 base_delay: float = BACKOFF_BASE_SEC,
                 sleep: Callable[[float], None] = time.sleep):
        self.provider = provider
        self.include_transcript = include_transcript
        self.max_input_chars = max_input_chars
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.sleep = sleep

    def _generate(self, prompt: str) -> str:
        text = self.provider.generate(prompt, system=ARTICLE_SYSTEM)
        if not text or not text.strip():
            raise ProviderError("Article provider returned empty output")
        return text.strip()

    def generate_article(self, summary: str, transcript: str | None = None) -> str:
        body = strip_embedded_timestamps(summary)
        if not body:
            raise ArticleGenerationError("Summary is empty", attempts=0)

        context = None
        if self.include_transcript and transcript:
            context = truncate_head_biased(transcript, self.max_input_chars)

        prompt = article_prompt(body, context)
        try:
            return call_with_retry(
                lambda: self._generate(prompt),
                max_attempts=self.max_attempts,
                base_delay=self.base_delay,
                label="Article generation",
                sleep=self.sleep,
            )
        except ProviderError as e:
            raise ArticleGenerationError(e.message, attempts=e.attempts) from e
