"""
Application configuration manager.
Stores settings in a JSON file under ~/.config/mediapress.
API keys are never stored here; they come from the environment.
"""

import json
import logging
from pathlib import Path

from mediapress.core.constants import (
    CONFIG_PATH, DB_PATH, DEFAULT_WORKSPACE_ROOT, DEFAULT_OUTPUT_ROOT,
    CHUNK_TARGET_SEC, MIN_CHUNK_TARGET_SEC, MAX_CHUNK_TARGET_SEC,
    TRANSCRIPTION_WORKERS, PROVIDER_MAX_ATTEMPTS, BACKOFF_BASE_SEC, PROVIDER_TIMEOUT_SEC,
    SUMMARY_MAX_INPUT_CHARS, DEEPGRAM_MODEL, DEEPGRAM_LANGUAGE, GEMINI_MODEL, OPENROUTER_MODEL,
)

logger = logging.getLogger(__name__)

# Validation bounds: key -> (type, min, max)
_NUMERIC_BOUNDS = {
    'chunk_target_sec': (int, MIN_CHUNK_TARGET_SEC, MAX_CHUNK_TARGET_SEC),
    'transcription_workers': (int, 1, 8),
    'provider_max_attempts': (int, 1, 10),
    'backoff_base_sec': (float, 0.0, 60.0),
    'provider_timeout_sec': (int, 10, 900),
    'summary_max_input_chars': (int, 1000, 1_000_000),
}

_BOOL_KEYS = {'embed_timestamps_in_summary', 'article_include_transcript'}

_DEFAULTS = {
    'db_path': str(DB_PATH),
    'workspace_root': str(DEFAULT_WORKSPACE_ROOT),
    'output_root': str(DEFAULT_OUTPUT_ROOT),
    'chunk_target_sec': CHUNK_TARGET_SEC,
    'transcription_workers': TRANSCRIPTION_WORKERS,
    'provider_max_attempts': PROVIDER_MAX_ATTEMPTS,
    'backoff_base_sec': BACKOFF_BASE_SEC,
    'provider_timeout_sec': PROVIDER_TIMEOUT_SEC,
    'summary_max_input_chars': SUMMARY_MAX_INPUT_CHARS,
    'embed_timestamps_in_summary': True,
    'article_include_transcript': False,
    'deepgram_model': DEEPGRAM_MODEL,
    'deepgram_language': DEEPGRAM_LANGUAGE,
    'gemini_model': GEMINI_MODEL,
    'openrouter_model': OPENROUTER_MODEL,
}

_TRUE_STRINGS = {'1', 'true', 'yes', 'on'}
_FALSE_STRINGS = {'0', 'false', 'no', 'off'}


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None):
        self.path = config_path or CONFIG_PATH
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults. Saved values are re-validated."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load config: %s", e)
                return
            if not isinstance(saved, dict):
                logger.warning("Ignoring config file %s: not a JSON object", self.path)
                return
            for key, value in saved.items():
                self._data[key] = self._validate(key, value)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def set(self, key: str, value):
        if key not in _DEFAULTS:
            raise KeyError(f"Unknown config key: {key}")
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in _NUMERIC_BOUNDS:
            kind, lo, hi = _NUMERIC_BOUNDS[key]
            try:
                value = kind(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r, using default", key, value)
                return _DEFAULTS[key]
            return max(lo, min(hi, value))

        if key in _BOOL_KEYS:
            if isinstance(value, str):
                lowered = value.strip().lower()
                if lowered in _TRUE_STRINGS:
                    return True
                if lowered in _FALSE_STRINGS:
                    return False
                logger.warning("Invalid %s %r, using default", key, value)
                return _DEFAULTS[key]
            return bool(value)

        if key in _DEFAULTS and not isinstance(value, str):
            logger.warning("Invalid %s %r, using default", key, value)
            return _DEFAULTS[key]

        return value

    # ── Typed accessors ───────────────────────────────────────────────

    @property
    def db_path(self) -> Path:
        return Path(self._data['db_path']).expanduser()

    @property
    def workspace_root(self) -> Path:
        return Path(self._data['workspace_root']).expanduser()

    @property
    def output_root(self) -> Path:
        return Path(self._data['output_root']).expanduser()

    @property
    def chunk_target_sec(self) -> int:
        return self._data['chunk_target_sec']

    @property
    def transcription_workers(self) -> int:
        return self._data['transcription_workers']

    @property
    def provider_max_attempts(self) -> int:
        return self._data['provider_max_attempts']

    @property
    def backoff_base_sec(self) -> float:
        return self._data['backoff_base_sec']

    @property
    def provider_timeout_sec(self) -> int:
        return self._data['provider_timeout_sec']

    @property
    def summary_max_input_chars(self) -> int:
        return self._data['summary_max_input_chars']

    @property
    def embed_timestamps_in_summary(self) -> bool:
        return self._data['embed_timestamps_in_summary']

    @property
    def article_include_transcript(self) -> bool:
        return self._data['article_include_transcript']

    @property
    def deepgram_model(self) -> str:
        return self._data['deepgram_model']

    @property
    def deepgram_language(self) -> str:
        return self._data['deepgram_language']

    @property
    def gemini_model(self) -> str:
        return self._data['gemini_model']

    @property
    def openrouter_model(self) -> str:
        return self._data['openrouter_model']
