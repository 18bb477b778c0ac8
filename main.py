#!/usr/bin/env python3
"""
MediaPress v1.0.0: main entry point.
Sets up file logging, checks for ffmpeg/ffprobe, then hands off to the CLI.
"""

import sys
import os
import shutil
import logging
from pathlib import Path
from datetime import datetime

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent

if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from mediapress.core.constants import APP_NAME, APP_VERSION, LOG_DIR  # noqa: E402
from mediapress.core.diagnostics import REQUIRED_TOOLS  # noqa: E402

# ── Logging setup (writes to ~/.local/state/mediapress/logs/) ────────
LOG_DIR.mkdir(parents=True, exist_ok=True)
LOG_FILE = LOG_DIR / "app.log"

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.FileHandler(LOG_FILE, encoding="utf-8"),
    ],
)
logger = logging.getLogger(APP_NAME.lower())


def check_prerequisites() -> list[str]:
    """Log where ffmpeg/ffprobe were found. Returns the missing ones."""
    missing = []
    for tool in REQUIRED_TOOLS:
        path = shutil.which(tool)
        if path:
            logger.info("%s found at: %s", tool, path)
        else:
            missing.append(tool)

    if missing:
        # commands that touch media refuse to run; the rest still work
        logger.warning("Missing tools: %s. PATH = %s",
                       ", ".join(missing), os.environ.get("PATH", ""))
    return missing


def main():
    logger.info("=" * 60)
    logger.info("%s v%s starting at %s", APP_NAME, APP_VERSION, datetime.now().isoformat())
    logger.info("Python: %s", sys.executable)
    logger.info("Args: %s", sys.argv[1:])
    logger.info("=" * 60)

    check_prerequisites()

    from mediapress.cli.commands import app
    try:
        app()
    except Exception as e:
        logger.critical("Fatal error: %s: %s", type(e).__name__, e, exc_info=True)
        raise


if __name__ == "__main__":
    main()
