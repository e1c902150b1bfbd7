"""
JSON3 captions parsing → ordered transcript segments.
Each caption event becomes one segment; events without text are dropped.
"""

import json
import re
import logging
from pathlib import Path

from tubescribe.core.models_sqlite import Segment

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r'\s+')


def parse_json3(content: str) -> list[Segment]:
    """
    Convert json3 caption content to segments in source order.
    Malformed content yields an empty list (treated as "no captions").
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as e:
        logger.warning("Failed to parse json3 captions: %s", e)
        return []

    events = data.get('events') if isinstance(data, dict) else None
    if not events:
        return []

    segments = []
    for event in events:
        segs = event.get('segs')
        if not segs:
            continue
        text = ''.join(s.get('utf8', '') for s in segs)
        text = _WHITESPACE_RE.sub(' ', text).strip()
        if not text:
            continue
        start_ms = event.get('tStartMs') or 0
        duration_ms = event.get('dDurationMs') or 0
        segments.append(Segment(
            text=text,
            start_seconds=max(0.0, start_ms / 1000.0),
            duration_seconds=max(0.0, duration_ms / 1000.0),
        ))
    return segments


def parse_json3_file(path: Path) -> list[Segment]:
    return parse_json3(path.read_text(encoding='utf-8', errors='replace'))
