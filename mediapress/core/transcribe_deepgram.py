"""
Deepgram Speech-to-Text integration.
Uses Nova-3, pre-recorded mode, one request per audio chunk.
Retries are the caller's business: this module only classifies failures.
"""

import json
import logging
import requests

from mediapress.core.security_utils import get_api_key, redact_secrets
from mediapress.core.error_codes import ProviderError, is_retryable_status
from mediapress.core.models_sqlite import ChunkTranscript, TimestampEntry
from mediapress.core.constants import (
    DEEPGRAM_API_BASE, DEEPGRAM_MODEL, DEEPGRAM_LANGUAGE, DEEPGRAM_MIN_TIMEOUT_SEC,
    DEEPGRAM_API_KEY_ENV, NORM_SAMPLE_RATE, NORM_CHANNELS, MAX_PROVIDER_MESSAGE_CHARS,
)

logger = logging.getLogger(__name__)

DEEPGRAM_PRERECORDED_URL = f"{DEEPGRAM_API_BASE}/listen"


def request_timeout(payload_size: int) -> int:
    # ~1 min per 10MB, minimum 120s
    return max(DEEPGRAM_MIN_TIMEOUT_SEC, int(payload_size / (10 * 1024 * 1024) * 60) + 60)


def _is_wav(audio_bytes: bytes) -> bool:
    return audio_bytes[:4] == b"RIFF" and audio_bytes[8:12] == b"WAVE"


class DeepgramProvider:
    """Transcribes one chunk per call. Timestamps are relative to the chunk start."""

    def __init__(self, api_key: str | None = None, model: str = DEEPGRAM_MODEL,
                 language: str = DEEPGRAM_LANGUAGE, session: requests.Session | None = None):
        self.api_key = api_key or get_api_key(DEEPGRAM_API_KEY_ENV)
        self.model = model
        self.language = language
        self.session = session or requests.Session()

    def _request_params(self, audio_bytes: bytes, sample_rate: int) -> tuple[dict, dict]:
        headers = {"Authorization": f"Token {self.api_key}"}
        params = {
            "model": self.model,
            "language": self.language,
            "smart_format": "true",
            "punctuate": "true",
            "paragraphs": "true",
        }
        if _is_wav(audio_bytes):
            headers["Content-Type"] = "audio/wav"
        else:
            # headerless PCM must be described explicitly
            headers["Content-Type"] = "application/octet-stream"
            params["encoding"] = "linear16"
            params["sample_rate"] = str(sample_rate)
            params["channels"] = str(NORM_CHANNELS)
        return headers, params

    def transcribe_chunk(self, audio_bytes: bytes,
                         sample_rate: int = NORM_SAMPLE_RATE) -> ChunkTranscript:
        if not self.api_key:
            raise ProviderError("Deepgram API key not configured", retryable=False)

        headers, params = self._request_params(audio_bytes, sample_rate)
        timeout_sec = request_timeout(len(audio_bytes))

        try:
            resp = self.session.post(
                DEEPGRAM_PRERECORDED_URL,
                headers=headers,
                params=params,
                data=audio_bytes,
                timeout=timeout_sec,
            )
        except requests.exceptions.Timeout:
            raise ProviderError("Deepgram request timed out")
        except requests.exceptions.ConnectionError:
            raise ProviderError("Network error connecting to Deepgram")
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"Deepgram request failed: {type(e).__name__}")

        if resp.status_code != 200:
            # Sanitize error message (never log API key)
            body = redact_secrets(resp.text[:MAX_PROVIDER_MESSAGE_CHARS]) if resp.text else "No response body"
            raise ProviderError(f"Deepgram returned {resp.status_code}: {body}",
                                retryable=is_retryable_status(resp.status_code),
                                status_code=resp.status_code)

        try:
            result = resp.json()
        except (json.JSONDecodeError, ValueError):
            raise ProviderError("Failed to parse Deepgram response JSON")

        text = extract_transcript_text(result)
        return ChunkTranscript(text=text, timestamps=extract_timestamps(result, text))


def _first_alternative(deepgram_response: dict) -> dict:
    results = deepgram_response.get('results', {})
    return results.get('channels', [{}])[0].get('alternatives', [{}])[0]


def extract_transcript_text(deepgram_response: dict) -> str:
    """
    Extract plain text transcript from Deepgram response.
    Uses paragraphs if available, falls back to channels/alternatives.
    """
    try:
        alternative = _first_alternative(deepgram_response)

        # Try paragraphs first
        paragraphs = alternative.get('paragraphs', {})
        if paragraphs and paragraphs.get('paragraphs'):
            text_parts = []
            for para in paragraphs['paragraphs']:
                sentences = para.get('sentences', [])
                para_text = ' '.join(s.get('text', '') for s in sentences)
                if para_text.strip():
                    text_parts.append(para_text.strip())
            if text_parts:
                return '\n\n'.join(text_parts)

        # Fallback to transcript
        transcript = alternative.get('transcript', '')
        if transcript:
            return transcript.strip()

    except (IndexError, KeyError, TypeError, AttributeError) as e:
        logger.warning("Error extracting transcript: %s", e)

    return ""


def extract_timestamps(deepgram_response: dict, text: str = "") -> list[TimestampEntry]:
    """
    Sentence-level timestamps from the paragraphs block. Without paragraphs a
    non-empty transcript yields a single entry at 0.
    """
    entries: list[TimestampEntry] = []
    try:
        paragraphs = _first_alternative(deepgram_response).get('paragraphs', {}) or {}
        for para in paragraphs.get('paragraphs', []):
            for sentence in para.get('sentences', []):
                sentence_text = (sentence.get('text') or '').strip()
                if not sentence_text:
                    continue
                entries.append(TimestampEntry(
                    offset_seconds=float(sentence.get('start', 0.0)),
                    text=sentence_text,
                ))
    except (IndexError, KeyError, TypeError, ValueError, AttributeError) as e:
        logger.warning("Error extracting timestamps: %s", e)
        entries = []

    if not entries and text.strip():
        entries.append(TimestampEntry(offset_seconds=0.0, text=text.strip()))
    return entries
