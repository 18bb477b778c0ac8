"""
Guards around the three places MediaPress touches the outside world:
export folders on disk, ffmpeg/ffprobe child processes, and provider
credentials that may leak back into error text.
"""

import os
import re
import subprocess
import pathlib
import logging

from mediapress.core.constants import (
    UNSAFE_FILENAME_CHARS,
    MAX_FOLDER_NAME_LEN,
)

logger = logging.getLogger(__name__)

_SECRET_PATTERNS = (
    (re.compile(r"\bsk-[A-Za-z0-9_-]{8,}\b"), "[redacted-key]"),
    (re.compile(r"\bAIza[0-9A-Za-z_-]{20,}\b"), "[redacted-key]"),
    (re.compile(r"(?i)(bearer|token)\s+[A-Za-z0-9._-]{12,}"), r"\1 [redacted-token]"),
)


# ── Export folders ────────────────────────────────────────────────────

def sanitize_title(title: str) -> str:
    """Turn a job title or media filename into a single folder name component."""
    if not title:
        return ""
    name = re.sub(UNSAFE_FILENAME_CHARS, '_', title).replace('..', '')
    name = re.sub(r'[_\s]+', ' ', name).strip()
    return name[:MAX_FOLDER_NAME_LEN].rstrip().strip('.')


def _is_contained(root: pathlib.Path, candidate: pathlib.Path) -> bool:
    # component-wise, so /out_evil is not inside /out
    return candidate.resolve(strict=False).is_relative_to(root.resolve(strict=False))


def safe_output_path(output_root: pathlib.Path, title: str, job_id: str) -> pathlib.Path:
    """
    Folder for a job's exported files under output_root.

    The title is sanitized first; if nothing usable is left, or the folder
    would resolve (through symlinks) outside output_root, ``job_<job_id>``
    is used instead.
    """
    fallback = output_root / f"job_{job_id}"
    name = sanitize_title(title)
    if not name:
        return fallback

    candidate = output_root / name
    if not _is_contained(output_root, candidate):
        logger.warning("Export folder %r escapes %s, using %s",
                       name, output_root, fallback.name)
        return fallback
    return candidate


# ── Child processes ───────────────────────────────────────────────────

def run_subprocess_capture(args: list[str], timeout: int = 300, **kwargs) -> subprocess.CompletedProcess:
    """Run a tool from an argument list (never through a shell) and capture its text output."""
    if isinstance(args, (str, bytes)):
        raise TypeError("Subprocess args must be a list/tuple, not a string")
    kwargs.pop('shell', None)

    logger.debug("Running subprocess: %s", ' '.join(map(str, args)))
    return subprocess.run(list(args), shell=False, capture_output=True, text=True,
                          timeout=timeout, **kwargs)


# ── Credentials ───────────────────────────────────────────────────────

def get_api_key(env_name: str) -> str | None:
    """Provider API key from the environment, or None if unset or blank."""
    return os.environ.get(env_name, "").strip() or None


def redact_secrets(text: str) -> str:
    """Mask anything that looks like an API key or bearer token."""
    for pattern, replacement in _SECRET_PATTERNS:
        text = pattern.sub(replacement, text)
    return text
