"""
Shared constants for MediaPress.
Single source of truth, imported by every other module.
"""

import os
import pathlib

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "MediaPress"
APP_SLUG = "mediapress"
APP_VERSION = "1.0.0"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

DATA_DIR = pathlib.Path(os.environ.get("XDG_DATA_HOME", HOME / ".local" / "share")) / APP_SLUG
STATE_DIR = pathlib.Path(os.environ.get("XDG_STATE_HOME", HOME / ".local" / "state")) / APP_SLUG
CONFIG_DIR = pathlib.Path(os.environ.get("XDG_CONFIG_HOME", HOME / ".config")) / APP_SLUG

DB_PATH = DATA_DIR / "jobs.db"
CONFIG_PATH = CONFIG_DIR / "config.json"
LOG_DIR = STATE_DIR / "logs"
DEFAULT_WORKSPACE_ROOT = pathlib.Path(os.environ.get("TMPDIR", "/tmp")) / APP_SLUG
DEFAULT_OUTPUT_ROOT = HOME / "MediaPress Articles"

# ── API key environment variables ────────────────────────────────────
DEEPGRAM_API_KEY_ENV = "DEEPGRAM_API_KEY"
GEMINI_API_KEY_ENV = "GEMINI_API_KEY"
OPENROUTER_API_KEY_ENV = "OPENROUTER_API_KEY"

# ── Job status values ─────────────────────────────────────────────────
class JobStatus:
    UPLOADED = "UPLOADED"
    PROCESSING = "PROCESSING"
    DONE = "DONE"
    ERROR = "ERROR"

# ── Pipeline steps (1-based, ordered) ─────────────────────────────────
class Step:
    PREPARE = 1
    TRANSCRIBE = 2
    SUMMARIZE = 3
    ARTICLE = 4

STEP_NAMES = {
    Step.PREPARE: "PREPARE",
    Step.TRANSCRIBE: "TRANSCRIBE",
    Step.SUMMARIZE: "SUMMARIZE",
    Step.ARTICLE: "ARTICLE",
}
FIRST_STEP = Step.PREPARE
LAST_STEP = Step.ARTICLE

# ── Chunk status ──────────────────────────────────────────────────────
class ChunkStatus:
    PENDING = "pending"
    DONE = "done"
    FAILED = "failed"

# ── Error codes ───────────────────────────────────────────────────────
class ErrorCode:
    # Non-retryable
    INVALID_MEDIA = "ERR_INVALID_MEDIA"
    MEDIA_PROCESSING = "ERR_MEDIA_PROCESSING"
    MISSING_PREREQUISITE = "ERR_MISSING_PREREQUISITE"
    CONCURRENCY_CONFLICT = "ERR_CONCURRENCY_CONFLICT"
    JOB_NOT_FOUND = "ERR_JOB_NOT_FOUND"

    # Retryable
    STORAGE = "ERR_STORAGE"
    PROVIDER = "ERR_PROVIDER"
    TRANSCRIPTION = "ERR_TRANSCRIPTION"
    SUMMARIZATION = "ERR_SUMMARIZATION"
    ARTICLE = "ERR_ARTICLE"

RETRYABLE_ERRORS = {
    ErrorCode.STORAGE,
    ErrorCode.PROVIDER,
    ErrorCode.TRANSCRIPTION,
    ErrorCode.SUMMARIZATION,
    ErrorCode.ARTICLE,
}

SUPERSEDED_MESSAGE = "Superseded by a newer processing request"
MAX_ERROR_MESSAGE_LEN = 2000

# ── Audio pipeline defaults ───────────────────────────────────────────
CHUNK_TARGET_SEC = 300         # 5 minutes
MIN_CHUNK_TARGET_SEC = 30
MAX_CHUNK_TARGET_SEC = 1800

# Normalization target (lossless intermediate)
NORM_CHANNELS = 1
NORM_SAMPLE_RATE = 16000
NORM_CODEC = "pcm_s16le"
NORM_FORMAT = "wav"

# Tool timeouts (seconds)
FFPROBE_TIMEOUT_SEC = 30
FFMPEG_EXTRACT_TIMEOUT_SEC = 900
FFMPEG_CHUNK_TIMEOUT_SEC = 120
FFMPEG_TOOL_ATTEMPTS = 2       # one transient retry, same options

STDERR_TAIL_CHARS = 500

# ── Provider retry defaults ───────────────────────────────────────────
PROVIDER_MAX_ATTEMPTS = 4
BACKOFF_BASE_SEC = 2.0
BACKOFF_JITTER = 0.1           # +/- 10%
PROVIDER_TIMEOUT_SEC = 120
TRANSCRIPTION_WORKERS = 3

# ── Summarization ─────────────────────────────────────────────────────
SUMMARY_MAX_INPUT_CHARS = 100_000
TRUNCATION_HEAD_SHARE = 0.8
TRUNCATION_MARKER = "\n\n[... transcript truncated ...]\n\n"
TIMESTAMP_BLOCK_TAG = "mediapress:timestamps v1"

# ── Deepgram ──────────────────────────────────────────────────────────
DEEPGRAM_API_BASE = "https://api.deepgram.com/v1"
DEEPGRAM_MODEL = "nova-3"
DEEPGRAM_LANGUAGE = "multi"
DEEPGRAM_MIN_TIMEOUT_SEC = 120

# ── Generative-text providers ─────────────────────────────────────────
GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta"
GEMINI_MODEL = "gemini-2.0-flash"
OPENROUTER_API_BASE = "https://openrouter.ai/api/v1"
OPENROUTER_MODEL = "anthropic/claude-3.7-sonnet"
ARTICLE_MAX_TOKENS = 4000
ARTICLE_TEMPERATURE = 0.7
SUMMARY_TEMPERATURE = 0.2

MAX_PROVIDER_MESSAGE_CHARS = 300

# ── Job store ─────────────────────────────────────────────────────────
SQLITE_BUSY_TIMEOUT_SEC = 30

# Characters forbidden in folder names
UNSAFE_FILENAME_CHARS = r'[<>:"/\\|?*\x00-\x1f]'
MAX_FOLDER_NAME_LEN = 200
