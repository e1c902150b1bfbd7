"""
Diagnostics: tool version detection and system checks.
"""

import logging
import shutil

from tubescribe.core.constants import YTDLP_BINARY, APP_VERSION
from tubescribe.core.cookies import CredentialStore
from tubescribe.core.error_codes import JobError
from tubescribe.core.security_utils import ToolInvoker

logger = logging.getLogger(__name__)

_VERSION_TIMEOUT = 10
_VERSION_MAX_OUTPUT = 64 * 1024


def _tool_version(args: list[str]) -> str:
    if not shutil.which(args[0]):
        return "Not installed"
    try:
        result = ToolInvoker().invoke(args, timeout=_VERSION_TIMEOUT,
                                      max_output_bytes=_VERSION_MAX_OUTPUT,
                                      use_credentials=False)
    except JobError as e:
        return f"Error: {e.message}"
    lines = result.stdout.strip().splitlines()
    return lines[0] if lines else "unknown"


def get_ytdlp_version() -> str:
    """Return yt-dlp version string, or error message."""
    return _tool_version([YTDLP_BINARY, "--version"])


def get_ffmpeg_version() -> str:
    """Return ffmpeg version string, or error message."""
    return _tool_version(["ffmpeg", "-version"])


def missing_tools() -> list[str]:
    return [tool for tool in (YTDLP_BINARY, "ffmpeg") if not shutil.which(tool)]


def get_diagnostics(credentials: CredentialStore, manager=None) -> dict:
    """Gather all diagnostic information."""
    info = {
        "version": APP_VERSION,
        "ytdlp_version": get_ytdlp_version(),
        "ffmpeg_version": get_ffmpeg_version(),
        "cookies": credentials.health(),
    }
    if manager is not None:
        info["queue"] = manager.get_queue_counts()
        info["workers"] = manager.concurrency
    return info
