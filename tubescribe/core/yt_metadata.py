"""
Video metadata fetching via yt-dlp.
"""

import json
import logging

from tubescribe.core.constants import YTDLP_BINARY, METADATA_MAX_OUTPUT
from tubescribe.core.error_codes import JobError, ErrorKind
from tubescribe.core.models_sqlite import VideoMetadata
from tubescribe.core.security_utils import ToolInvoker

logger = logging.getLogger(__name__)


def fetch_metadata(invoker: ToolInvoker, video_url: str, video_id: str,
                   timeout: float = 15) -> VideoMetadata:
    """
    Fetch title/channel/duration using yt-dlp --dump-json.
    Tool failures propagate as ToolFailed for the caller to classify.
    """
    args = [
        YTDLP_BINARY,
        "--dump-json",
        "--no-warnings",
        "--no-playlist",
        "--skip-download",
        "--",
        video_url,
    ]
    result = invoker.invoke(args, timeout=timeout, max_output_bytes=METADATA_MAX_OUTPUT)

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise JobError(ErrorKind.METADATA_UNAVAILABLE,
                       "Could not parse video metadata", detail=str(e))
    if not isinstance(data, dict):
        raise JobError(ErrorKind.METADATA_UNAVAILABLE, "Unexpected metadata format")

    return VideoMetadata(
        video_id=video_id,
        title=data.get('title') or 'Unknown',
        channel=data.get('uploader') or data.get('channel') or 'Unknown',
        canonical_url=data.get('webpage_url') or video_url,
        duration_seconds=float(data.get('duration') or 0),
    )
