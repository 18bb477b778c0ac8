"""
Cleanup: release a run's temporary audio workspace.
"""

import shutil
import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def cleanup_workspace(workspace: Path):
    """
    Delete a workspace directory and everything in it (source copy,
    extracted/normalized audio, chunk files). Safe to call more than once.
    """
    if not workspace.exists():
        return

    try:
        shutil.rmtree(workspace)
        logger.debug("Deleted workspace: %s", workspace)
    except OSError as e:
        logger.warning("Failed to delete %s: %s", workspace, e)
        # second pass ignores files that vanished or are still locked
        shutil.rmtree(workspace, ignore_errors=True)
