"""
Cleanup: per-attempt workspaces for downloaded audio and caption files.
"""

import shutil
import logging
import tempfile
from pathlib import Path

logger = logging.getLogger(__name__)


def create_attempt_workspace(work_root: Path, job_id: str, attempt: int) -> Path:
    """Unique directory private to one job attempt."""
    work_root.mkdir(parents=True, exist_ok=True)
    return Path(tempfile.mkdtemp(prefix=f"{job_id}-a{attempt}-", dir=work_root))


def cleanup_job_artifacts(job_workspace: Path):
    """Delete an attempt workspace (success or failure)."""
    if not job_workspace.exists():
        return
    try:
        shutil.rmtree(job_workspace)
        logger.debug("Deleted: %s", job_workspace)
    except OSError as e:
        logger.warning("Failed to delete %s: %s", job_workspace, e)
