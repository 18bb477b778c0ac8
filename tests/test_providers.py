#!/usr/bin/env python3
"""
Tests for provider clients. HTTP is replaced by a mocked requests.Session.
"""

import sys
import json
from pathlib import Path
from unittest import mock

PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

import requests

from mediapress.core.error_codes import ProviderError
from mediapress.core.generate_text import GeminiProvider, OpenRouterProvider
from mediapress.core.models_sqlite import TimestampEntry
from mediapress.core.transcribe_deepgram import (
    DeepgramProvider, extract_transcript_text, extract_timestamps, request_timeout,
)

WAV_BYTES = b"RIFF\x24\x00\x00\x00WAVEfmt " + b"\x00" * 32


def fake_response(status: int = 200, payload=None, text: str | None = None):
    resp = mock.Mock()
    resp.status_code = status
    resp.text = text if text is not None else json.dumps(payload)
    resp.json.side_effect = lambda: json.loads(resp.text)
    return resp


def session_returning(*responses):
    session = mock.Mock()
    session.post.side_effect = list(responses)
    return session


DEEPGRAM_OK = {
    "results": {"channels": [{"alternatives": [{
        "transcript": "Hello there. General Kenobi.",
        "paragraphs": {"paragraphs": [
            {"sentences": [{"text": "Hello there.", "start": 0.4},
                           {"text": "General Kenobi.", "start": 2.1}]},
        ]},
    }]}]},
}


class TestDeepgram(unittest.TestCase):
    """Test Deepgram request building and response handling."""

    def test_success(self):
        session = session_returning(fake_response(payload=DEEPGRAM_OK))
        provider = DeepgramProvider(api_key="dg-key", session=session)
        result = provider.transcribe_chunk(WAV_BYTES)

        self.assertEqual(result.text, "Hello there. General Kenobi.")
        self.assertEqual(result.timestamps, [TimestampEntry(0.4, "Hello there."),
                                             TimestampEntry(2.1, "General Kenobi.")])
        kwargs = session.post.call_args.kwargs
        self.assertEqual(kwargs['headers']['Content-Type'], "audio/wav")
        self.assertEqual(kwargs['headers']['Authorization'], "Token dg-key")
        self.assertEqual(kwargs['params']['model'], "nova-3")
        self.assertNotIn('encoding', kwargs['params'])
        self.assertEqual(kwargs['timeout'], 120)

    def test_raw_pcm_is_described(self):
        session = session_returning(fake_response(payload=DEEPGRAM_OK))
        DeepgramProvider(api_key="k", session=session).transcribe_chunk(b"\x00\x01" * 10, 16000)
        params = session.post.call_args.kwargs['params']
        self.assertEqual(params['encoding'], "linear16")
        self.assertEqual(params['sample_rate'], "16000")
        self.assertEqual(params['channels'], "1")

    def test_missing_key(self):
        with mock.patch.dict("os.environ", {"DEEPGRAM_API_KEY": ""}):
            provider = DeepgramProvider(session=mock.Mock())
        with self.assertRaises(ProviderError) as ctx:
            provider.transcribe_chunk(WAV_BYTES)
        self.assertFalse(ctx.exception.retryable)

    def test_status_classification(self):
        for status, retryable in ((429, True), (503, True), (401, False), (400, False)):
            session = session_returning(fake_response(status, text="nope"))
            with self.assertRaises(ProviderError) as ctx:
                DeepgramProvider(api_key="k", session=session).transcribe_chunk(WAV_BYTES)
            self.assertEqual(ctx.exception.retryable, retryable, status)
            self.assertEqual(ctx.exception.status_code, status)

    def test_error_body_redacted(self):
        session = session_returning(fake_response(401, text="bad token sk-abcdefghijklmnop"))
        with self.assertRaises(ProviderError) as ctx:
            DeepgramProvider(api_key="k", session=session).transcribe_chunk(WAV_BYTES)
        self.assertNotIn("sk-abcdefghijklmnop", ctx.exception.message)

    def test_transport_errors_are_retryable(self):
        for exc in (requests.exceptions.Timeout(), requests.exceptions.ConnectionError()):
            session = mock.Mock()
            session.post.side_effect = exc
            with self.assertRaises(ProviderError) as ctx:
                DeepgramProvider(api_key="k", session=session).transcribe_chunk(WAV_BYTES)
            self.assertTrue(ctx.exception.retryable)

    def test_invalid_json(self):
        session = session_returning(fake_response(text="<html>"))
        with self.assertRaises(ProviderError):
            DeepgramProvider(api_key="k", session=session).transcribe_chunk(WAV_BYTES)

    def test_extract_without_paragraphs(self):
        resp = {"results": {"channels": [{"alternatives": [{"transcript": " Just text "}]}]}}
        text = extract_transcript_text(resp)
        self.assertEqual(text, "Just text")
        self.assertEqual(extract_timestamps(resp, text), [TimestampEntry(0.0, "Just text")])

    def test_extract_empty(self):
        self.assertEqual(extract_transcript_text({}), "")
        self.assertEqual(extract_timestamps({}, ""), [])

    def test_request_timeout_scales(self):
        self.assertEqual(request_timeout(1024), 120)
        self.assertEqual(request_timeout(200 * 1024 * 1024), 1260)


class TestGemini(unittest.TestCase):
    """Test Gemini generateContent client."""

    def test_success(self):
        payload = {"candidates": [{"content": {"parts": [{"text": "Sum"}, {"text": "mary"}]}}]}
        session = session_returning(fake_response(payload=payload))
        provider = GeminiProvider(api_key="g-key", model="gemini-x", temperature=0.2,
                                  session=session)
        self.assertEqual(provider.generate("prompt", system="be brief"), "Summary")

        args, kwargs = session.post.call_args
        self.assertTrue(args[0].endswith("/models/gemini-x:generateContent"))
        self.assertEqual(kwargs['headers']['x-goog-api-key'], "g-key")
        body = kwargs['json']
        self.assertEqual(body['contents'][0]['parts'][0]['text'], "prompt")
        self.assertEqual(body['systemInstruction']['parts'][0]['text'], "be brief")
        self.assertEqual(body['generationConfig']['temperature'], 0.2)

    def test_blocked_prompt(self):
        payload = {"candidates": [], "promptFeedback": {"blockReason": "SAFETY"}}
        session = session_returning(fake_response(payload=payload))
        with self.assertRaises(ProviderError) as ctx:
            GeminiProvider(api_key="k", session=session).generate("p")
        self.assertIn("SAFETY", ctx.exception.message)

    def test_error_detail_from_body(self):
        body = {"error": {"code": 400, "message": "API key not valid"}}
        session = session_returning(fake_response(400, payload=body))
        with self.assertRaises(ProviderError) as ctx:
            GeminiProvider(api_key="k", session=session).generate("p")
        self.assertIn("API key not valid", ctx.exception.message)
        self.assertFalse(ctx.exception.retryable)


class TestOpenRouter(unittest.TestCase):
    """Test OpenRouter chat completions client."""

    def test_success(self):
        payload = {"choices": [{"message": {"content": " # Article "}}]}
        session = session_returning(fake_response(payload=payload))
        provider = OpenRouterProvider(api_key="or-key", model="m", max_tokens=4000,
                                      session=session)
        self.assertEqual(provider.generate("write", system="editor"), "# Article")

        kwargs = session.post.call_args.kwargs
        self.assertEqual(kwargs['headers']['Authorization'], "Bearer or-key")
        body = kwargs['json']
        self.assertEqual([m['role'] for m in body['messages']], ["system", "user"])
        self.assertEqual(body['max_tokens'], 4000)
        self.assertNotIn('temperature', body)

    def test_list_content(self):
        payload = {"choices": [{"message": {"content": [{"type": "text", "text": "A"},
                                                        {"type": "text", "text": "B"}]}}]}
        session = session_returning(fake_response(payload=payload))
        self.assertEqual(OpenRouterProvider(api_key="k", session=session).generate("p"), "AB")

    def test_upstream_error_in_200_body(self):
        payload = {"error": {"message": "upstream overloaded"}}
        session = session_returning(fake_response(payload=payload))
        with self.assertRaises(ProviderError) as ctx:
            OpenRouterProvider(api_key="k", session=session).generate("p")
        self.assertTrue(ctx.exception.retryable)
        self.assertIn("overloaded", ctx.exception.message)

    def test_empty_output(self):
        payload = {"choices": [{"message": {"content": "   "}}]}
        session = session_returning(fake_response(payload=payload))
        with self.assertRaises(ProviderError):
            OpenRouterProvider(api_key="k", session=session).generate("p")

    def test_rate_limited(self):
        session = session_returning(fake_response(429, text="slow down"))
        with self.assertRaises(ProviderError) as ctx:
            OpenRouterProvider(api_key="k", session=session).generate("p")
        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(ctx.exception.status_code, 429)


if __name__ == "__main__":
    unittest.main()
