"""
Diagnostics: tool version detection and system checks.
"""

import shutil
import logging
import subprocess

from mediapress.core.security_utils import run_subprocess_capture, get_api_key
from mediapress.core.constants import (
    DEEPGRAM_API_KEY_ENV, GEMINI_API_KEY_ENV, OPENROUTER_API_KEY_ENV,
)

logger = logging.getLogger(__name__)

REQUIRED_TOOLS = ("ffmpeg", "ffprobe")


def get_tool_version(tool: str) -> str:
    """Return the first line of `<tool> -version`, or an error message."""
    try:
        result = run_subprocess_capture([tool, "-version"], timeout=10)
    except FileNotFoundError:
        return "Not installed"
    except (OSError, subprocess.TimeoutExpired) as e:
        return f"Error: {e}"
    if result.returncode == 0 and result.stdout.strip():
        return result.stdout.strip().splitlines()[0]
    return f"Error (rc={result.returncode})"


def get_ffmpeg_version() -> str:
    return get_tool_version("ffmpeg")


def get_ffprobe_version() -> str:
    return get_tool_version("ffprobe")


def missing_tools() -> list[str]:
    """Required external tools that are not on PATH."""
    return [tool for tool in REQUIRED_TOOLS if shutil.which(tool) is None]


def check_api_keys() -> dict[str, bool]:
    """Presence (never the value) of each provider API key."""
    return {
        env: get_api_key(env) is not None
        for env in (DEEPGRAM_API_KEY_ENV, GEMINI_API_KEY_ENV, OPENROUTER_API_KEY_ENV)
    }


def get_diagnostics() -> dict:
    """Gather all diagnostic information."""
    return {
        "ffmpeg_version": get_ffmpeg_version(),
        "ffprobe_version": get_ffprobe_version(),
        "api_keys": check_api_keys(),
    }
