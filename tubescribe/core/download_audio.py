"""
Audio download via yt-dlp.
"""

import logging
from pathlib import Path

from tubescribe.core.constants import YTDLP_BINARY, DOWNLOAD_MAX_OUTPUT
from tubescribe.core.error_codes import JobError, ErrorKind
from tubescribe.core.security_utils import ToolInvoker

logger = logging.getLogger(__name__)


def download_audio(invoker: ToolInvoker, video_url: str, output_dir: Path,
                   timeout: float = 300) -> Path:
    """
    Download the best audio stream and extract it to mp3.
    Returns path to the downloaded file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    output_template = str(output_dir / "audio.%(ext)s")

    args = [
        YTDLP_BINARY,
        "--no-playlist",
        "--no-warnings",
        "-f", "bestaudio",
        "--extract-audio",
        "--audio-format", "mp3",
        "--audio-quality", "192K",
        "-o", output_template,
        "--",
        video_url,
    ]
    invoker.invoke(args, timeout=timeout, max_output_bytes=DOWNLOAD_MAX_OUTPUT)

    # Find the downloaded file
    audio_files = sorted(output_dir.glob("audio.*"))
    if not audio_files:
        raise JobError(ErrorKind.UNKNOWN, "No audio file found after download")

    downloaded = audio_files[0]
    logger.info("Downloaded audio: %s (%d bytes)", downloaded.name, downloaded.stat().st_size)
    return downloaded
