"""
Output writer: materializes a transcript as two durable artifacts.
"""

import json
import logging
from dataclasses import dataclass
from typing import Sequence

from tubescribe.core.constants import ARTIFACT_PREFIX, PLAIN_TEXT_NAME, JSON_NAME
from tubescribe.core.error_codes import JobError, ErrorKind
from tubescribe.core.models_sqlite import Segment
from tubescribe.core.storage import ArtifactStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ArtifactUrls:
    plain_text_url: str
    json_url: str


def artifact_key(video_id: str, name: str) -> str:
    return f"{ARTIFACT_PREFIX}/{video_id}/{name}"


def render_plain_text(segments: Sequence[Segment]) -> bytes:
    return '\n'.join(s.text for s in segments).encode('utf-8')


def render_json(segments: Sequence[Segment]) -> bytes:
    payload = [s.to_dict() for s in segments]
    return json.dumps(payload, indent=2, ensure_ascii=False).encode('utf-8')


class ResultMaterializer:
    """Writes transcript.txt and transcript.json keyed by video_id."""

    def __init__(self, store: ArtifactStore):
        self.store = store

    def persist(self, video_id: str, segments: Sequence[Segment]) -> ArtifactUrls:
        try:
            text_url = self.store.upload_artifact(
                artifact_key(video_id, PLAIN_TEXT_NAME),
                render_plain_text(segments),
                "text/plain; charset=utf-8",
            )
            json_url = self.store.upload_artifact(
                artifact_key(video_id, JSON_NAME),
                render_json(segments),
                "application/json",
            )
        except Exception as e:
            logger.error("Artifact upload failed for %s: %s", video_id, e)
            raise JobError(ErrorKind.STORAGE_WRITE_FAILED,
                           "Failed to store transcript artifacts",
                           detail=f"{type(e).__name__}: {e}")

        logger.info("Wrote transcript artifacts for %s (%d segments)", video_id, len(segments))
        return ArtifactUrls(plain_text_url=text_url, json_url=json_url)
