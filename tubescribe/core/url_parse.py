"""
Video URL parsing and validation.
"""

import re

from tubescribe.core.constants import VIDEO_ID_PATTERNS
from tubescribe.core.error_codes import JobError, ErrorKind

_COMPILED_PATTERNS = [re.compile(p) for p in VIDEO_ID_PATTERNS]


def extract_video_id(url: str) -> str | None:
    """
    Extract the 11-character video_id from a video URL or a bare id.
    Supported shapes, tried in order: short link, watch URL (``v=`` anywhere
    in the query), embed URL, legacy ``/v/`` URL, shorts URL, bare id.
    Returns None if nothing matches.
    """
    if not isinstance(url, str):
        return None
    url = url.strip()
    if not url:
        return None

    for pattern in _COMPILED_PATTERNS:
        m = pattern.search(url)
        if m:
            return m.group(1)
    return None


def validate_video_url(url: str) -> str:
    """
    Validate a video URL and return the video_id.
    Raises JobError(INVALID_INPUT) if invalid.
    """
    video_id = extract_video_id(url)
    if not video_id:
        raise JobError(ErrorKind.INVALID_INPUT, "Could not extract a video ID from the URL")
    return video_id


def is_video_url(url: str) -> bool:
    """Quick check if a string looks like a supported video URL."""
    return extract_video_id(url) is not None


def parse_input_lines(text: str) -> list[str]:
    """
    Parse pasted text into a list of video URLs.
    - Trims whitespace
    - Ignores empty lines and '#' comments
    - Silently skips lines that are not video URLs
    """
    urls = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith('#'):
            continue
        if is_video_url(line):
            urls.append(line)
    return urls


def parse_txt_file(filepath: str) -> list[str]:
    """Parse a .txt file containing one URL per line."""
    with open(filepath, 'r', encoding='utf-8', errors='replace') as f:
        return parse_input_lines(f.read())
