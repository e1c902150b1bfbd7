"""
Native captions fetching via yt-dlp (json3 format).
Creator captions are preferred; auto-generated captions are the last resort.
"""

import logging
from pathlib import Path

from tubescribe.core.captions_parse import parse_json3_file
from tubescribe.core.constants import YTDLP_BINARY, CAPTIONS_MAX_OUTPUT
from tubescribe.core.models_sqlite import Segment
from tubescribe.core.security_utils import ToolInvoker

logger = logging.getLogger(__name__)


def sub_langs_arg(language: str) -> str:
    """Exact language, then regional variants, then anything else in the family."""
    return f"{language},{language}-.*,{language}.*"


def caption_rank(filename: str, video_id: str, language: str) -> int | None:
    """
    Priority of a downloaded caption file (lower is better), or None if the
    file is not a caption track for this video.
    """
    prefix = f"{video_id}."
    if not filename.startswith(prefix) or not filename.endswith(".json3"):
        return None
    code = filename[len(prefix):-len(".json3")]
    if code == language:
        return 0
    if code.startswith(f"{language}-") and not code.endswith("-orig"):
        return 1
    if code.startswith(language):
        return 2
    return None


def select_caption_file(work_dir: Path, video_id: str, language: str) -> Path | None:
    ranked = []
    for path in work_dir.glob(f"{video_id}.*.json3"):
        rank = caption_rank(path.name, video_id, language)
        if rank is not None:
            ranked.append((rank, path.name, path))
    if not ranked:
        return None
    ranked.sort()
    return ranked[0][2]


def fetch_native_captions(invoker: ToolInvoker, video_url: str, video_id: str,
                          work_dir: Path, language: str = "en",
                          timeout: float = 30) -> list[Segment]:
    """
    Download caption tracks into work_dir and parse the best one.
    Returns an empty list when the video has no usable captions.
    Tool failures propagate for the caller to classify.
    """
    work_dir.mkdir(parents=True, exist_ok=True)
    args = [
        YTDLP_BINARY,
        "--skip-download",
        "--write-subs",
        "--write-auto-subs",
        "--sub-format", "json3",
        "--sub-langs", sub_langs_arg(language),
        "--no-playlist",
        "--no-warnings",
        "-o", str(work_dir / "%(id)s.%(ext)s"),
        "--",
        video_url,
    ]
    invoker.invoke(args, timeout=timeout, max_output_bytes=CAPTIONS_MAX_OUTPUT)

    caption_file = select_caption_file(work_dir, video_id, language)
    if caption_file is None:
        logger.info("No caption track downloaded for %s", video_id)
        return []

    segments = parse_json3_file(caption_file)
    logger.info("Parsed %d caption segments from %s", len(segments), caption_file.name)
    return segments
