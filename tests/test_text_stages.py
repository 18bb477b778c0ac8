#!/usr/bin/env python3
"""
Tests for the summary and article stages with a scripted text provider.
"""

import sys
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from mediapress.core.article import ArticleStage
from mediapress.core.constants import TRUNCATION_MARKER, TIMESTAMP_BLOCK_TAG
from mediapress.core.error_codes import ProviderError, SummarizationError, ArticleGenerationError
from mediapress.core.models_sqlite import TimestampEntry
from mediapress.core.summarize import SummarizationStage, embed_timestamps


class ScriptedProvider:
    """Returns (or raises) the scripted replies in order."""

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def generate(self, prompt, system=None):
        self.calls.append((prompt, system))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class TestSummarizationStage(unittest.TestCase):
    """Test summary generation."""

    def stage(self, provider, **kwargs):
        return SummarizationStage(provider, base_delay=0, sleep=mock.Mock(), **kwargs)

    def test_embeds_timestamps(self):
        provider = ScriptedProvider("  - A point  ")
        timestamps = [TimestampEntry(0.0, "Hi")]
        summary = self.stage(provider).summarize("Hi all.", timestamps)
        self.assertTrue(summary.startswith("- A point"))
        self.assertIn(TIMESTAMP_BLOCK_TAG, summary)
        self.assertIsNotNone(provider.calls[0][1])

    def test_embedding_disabled(self):
        provider = ScriptedProvider("- A point")
        summary = self.stage(provider, embed_timestamps=False).summarize(
            "Hi all.", [TimestampEntry(0.0, "Hi")])
        self.assertEqual(summary, "- A point")

    def test_long_transcript_truncated(self):
        provider = ScriptedProvider("ok")
        transcript = " ".join(f"word{i}" for i in range(20000))
        self.stage(provider, max_input_chars=5000).summarize(transcript)
        prompt = provider.calls[0][0]
        self.assertIn(TRUNCATION_MARKER.strip(), prompt)
        self.assertIn("word0 ", prompt)
        self.assertIn("word19999", prompt)
        self.assertLess(len(prompt), 6000)

    def test_empty_output_retried(self):
        provider = ScriptedProvider("", "   ", "- finally")
        self.assertEqual(self.stage(provider).summarize("text"), "- finally")
        self.assertEqual(len(provider.calls), 3)

    def test_exhaustion(self):
        provider = ScriptedProvider(*[ProviderError("HTTP 503")] * 4)
        with self.assertRaises(SummarizationError) as ctx:
            self.stage(provider, max_attempts=4).summarize("text")
        self.assertEqual(ctx.exception.attempts, 4)
        self.assertIn("HTTP 503", ctx.exception.message)


class TestArticleStage(unittest.TestCase):
    """Test article generation."""

    def stage(self, provider, **kwargs):
        return ArticleStage(provider, base_delay=0, sleep=mock.Mock(), **kwargs)

    def test_uses_summary_without_timestamp_block(self):
        provider = ScriptedProvider("# Article")
        summary = embed_timestamps("- Point", [TimestampEntry(1.0, "x")])
        self.assertEqual(self.stage(provider).generate_article(summary, "full transcript"),
                         "# Article")
        prompt = provider.calls[0][0]
        self.assertIn("- Point", prompt)
        self.assertNotIn(TIMESTAMP_BLOCK_TAG, prompt)
        self.assertNotIn("full transcript", prompt)

    def test_include_transcript(self):
        provider = ScriptedProvider("# Article")
        self.stage(provider, include_transcript=True).generate_article("- Point", "full transcript")
        self.assertIn("full transcript", provider.calls[0][0])

    def test_empty_summary(self):
        provider = ScriptedProvider()
        with self.assertRaises(ArticleGenerationError):
            self.stage(provider).generate_article(embed_timestamps("", []))
        self.assertEqual(provider.calls, [])

    def test_non_retryable_failure(self):
        provider = ScriptedProvider(ProviderError("HTTP 401", retryable=False))
        with self.assertRaises(ArticleGenerationError) as ctx:
            self.stage(provider).generate_article("- Point")
        self.assertEqual(ctx.exception.attempts, 1)


if __name__ == "__main__":
    unittest.main()
