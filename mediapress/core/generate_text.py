"""
Generative-text providers used by the summary and article stages.

- GeminiProvider: Google generateContent REST API (summaries by default)
- OpenRouterProvider: OpenAI-compatible chat completions (articles by default)

Both expose generate(prompt, system=None) -> str and map transport and HTTP
failures to ProviderError so the caller's retry policy can classify them.
"""

import json
import logging
import requests

from mediapress.core.security_utils import get_api_key, redact_secrets
from mediapress.core.error_codes import ProviderError, is_retryable_status
from mediapress.core.constants import (
    GEMINI_API_BASE, GEMINI_MODEL, GEMINI_API_KEY_ENV,
    OPENROUTER_API_BASE, OPENROUTER_MODEL, OPENROUTER_API_KEY_ENV,
    PROVIDER_TIMEOUT_SEC, MAX_PROVIDER_MESSAGE_CHARS, APP_NAME,
)

logger = logging.getLogger(__name__)


def _short_message(text: str) -> str:
    """Normalize, redact and cap provider message text."""
    compact = " ".join(redact_secrets(text).split())
    if len(compact) <= MAX_PROVIDER_MESSAGE_CHARS:
        return compact
    return f"{compact[:MAX_PROVIDER_MESSAGE_CHARS - 3]}..."


def _error_detail(resp: requests.Response) -> str:
    """Pull {"error": {"message": ...}} out of an error body, else the raw text."""
    body = resp.text or ""
    try:
        payload = json.loads(body)
    except ValueError:
        return _short_message(body) or "No response body"
    if isinstance(payload, dict) and isinstance(payload.get('error'), dict):
        message = payload['error'].get('message')
        if isinstance(message, str) and message.strip():
            return _short_message(message)
    return _short_message(body) or "No response body"


class _HttpTextProvider:
    """Shared POST-and-classify logic."""

    name = "provider"

    def __init__(self, api_key: str | None, model: str,
                 timeout_sec: float = PROVIDER_TIMEOUT_SEC,
                 session: requests.Session | None = None):
        self.api_key = api_key.strip() if isinstance(api_key, str) else ""
        self.model = model
        self.timeout_sec = timeout_sec
        self.session = session or requests.Session()

    def _post_json(self, url: str, headers: dict, payload: dict) -> dict:
        if not self.api_key:
            raise ProviderError(f"{self.name} API key not configured", retryable=False)

        try:
            resp = self.session.post(url, headers=headers, json=payload,
                                     timeout=self.timeout_sec)
        except requests.exceptions.Timeout:
            raise ProviderError(f"{self.name} request timed out")
        except requests.exceptions.ConnectionError:
            raise ProviderError(f"Network error connecting to {self.name}")
        except requests.exceptions.RequestException as e:
            raise ProviderError(f"{self.name} request failed: {type(e).__name__}")

        if resp.status_code != 200:
            raise ProviderError(
                f"{self.name} returned {resp.status_code}: {_error_detail(resp)}",
                retryable=is_retryable_status(resp.status_code),
                status_code=resp.status_code,
            )

        try:
            data = resp.json()
        except ValueError:
            raise ProviderError(f"Failed to parse {self.name} response JSON")
        if not isinstance(data, dict):
            raise ProviderError(f"{self.name} response is not a JSON object")
        return data

    def generate(self, prompt: str, system: str | None = None) -> str:
        raise NotImplementedError


class GeminiProvider(_HttpTextProvider):

    name = "Gemini"

    def __init__(self, api_key: str | None = None, model: str = GEMINI_MODEL,
                 temperature: float | None = None, **kwargs):
        super().__init__(api_key or get_api_key(GEMINI_API_KEY_ENV), model, **kwargs)
        self.temperature = temperature

    def generate(self, prompt: str, system: str | None = None) -> str:
        payload: dict = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
        if system:
            payload["systemInstruction"] = {"parts": [{"text": system}]}
        if self.temperature is not None:
            payload["generationConfig"] = {"temperature": self.temperature}

        data = self._post_json(
            f"{GEMINI_API_BASE}/models/{self.model}:generateContent",
            {"x-goog-api-key": self.api_key, "Content-Type": "application/json"},
            payload,
        )
        return extract_gemini_text(data)


def extract_gemini_text(data: dict) -> str:
    """Concatenate the text parts of the first candidate. Empty output is a provider error."""
    try:
        parts = data['candidates'][0]['content']['parts']
        text = "".join(p.get('text', '') for p in parts).strip()
    except (KeyError, IndexError, TypeError, AttributeError):
        text = ""

    if not text:
        reason = ""
        feedback = data.get('promptFeedback') if isinstance(data, dict) else None
        if isinstance(feedback, dict) and feedback.get('blockReason'):
            reason = f" (blocked: {feedback['blockReason']})"
        raise ProviderError(f"Gemini returned no text{reason}")
    return text


class OpenRouterProvider(_HttpTextProvider):

    name = "OpenRouter"

    def __init__(self, api_key: str | None = None, model: str = OPENROUTER_MODEL,
                 max_tokens: int | None = None, temperature: float | None = None, **kwargs):
        super().__init__(api_key or get_api_key(OPENROUTER_API_KEY_ENV), model, **kwargs)
        self.max_tokens = max_tokens
        self.temperature = temperature

    def generate(self, prompt: str, system: str | None = None) -> str:
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": prompt})

        payload: dict = {"model": self.model, "messages": messages}
        if self.max_tokens is not None:
            payload["max_tokens"] = self.max_tokens
        if self.temperature is not None:
            payload["temperature"] = self.temperature

        data = self._post_json(
            f"{OPENROUTER_API_BASE}/chat/completions",
            {
                "Authorization": f"Bearer {self.api_key}",
                "Content-Type": "application/json",
                "X-Title": APP_NAME,
            },
            payload,
        )
        return extract_chat_text(data)


def extract_chat_text(data: dict) -> str:
    """Text of the first chat-completions choice. Empty output is a provider error."""
    # OpenRouter reports upstream failures inside a 200 body
    if isinstance(data.get('error'), dict):
        message = data['error'].get('message', 'unknown error')
        raise ProviderError(f"OpenRouter upstream error: {_short_message(str(message))}")

    try:
        content = data['choices'][0]['message']['content']
    except (KeyError, IndexError, TypeError):
        content = None

    if isinstance(content, list):
        content = "".join(part.get('text', '') for part in content if isinstance(part, dict))
    text = (content or "").strip() if isinstance(content, str) else ""
    if not text:
        raise ProviderError("OpenRouter returned no text")
    return text
