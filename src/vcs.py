"""
Local git checkout helpers.
"""

import logging
import subprocess
from typing import Optional

from errors import VcsError

logger = logging.getLogger(__name__)


def current_branch_name(cwd: Optional[str] = None) -> str:
    """Return the branch checked out in the working directory."""
    try:
        proc = subprocess.run(
            ["git", "rev-parse", "--abbrev-ref", "HEAD"],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError as e:
        raise VcsError(f"Failed to get branch: {e}")

    if proc.returncode != 0:
        raise VcsError(f"Failed to get branch: {proc.stderr.strip() or proc.returncode}")

    branch = proc.stdout.strip()
    logger.debug(f"Current branch: {branch}")
    return branch
