"""
Data models (plain dataclasses) for tubescribe.
"""

from dataclasses import dataclass, field
from typing import Optional

from tubescribe.core.constants import JobState


@dataclass(frozen=True)
class Segment:
    text: str
    start_seconds: float
    duration_seconds: float

    def to_dict(self) -> dict:
        return {"text": self.text, "start": self.start_seconds,
                "duration": self.duration_seconds}

    @classmethod
    def from_dict(cls, data: dict) -> "Segment":
        return cls(text=data["text"],
                   start_seconds=float(data.get("start", 0.0)),
                   duration_seconds=float(data.get("duration", 0.0)))


@dataclass(frozen=True)
class VideoMetadata:
    video_id: str
    title: str
    channel: str
    canonical_url: str
    duration_seconds: float = 0.0


@dataclass
class ResultEnvelope:
    video_id: str
    title: str
    channel: str
    canonical_url: str
    source: str
    confidence_score: float
    segments: list[Segment]
    tier: int
    plain_text_url: Optional[str] = None
    json_url: Optional[str] = None
    duration_seconds: float = 0.0
    language: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "video_id": self.video_id,
            "title": self.title,
            "channel": self.channel,
            "canonical_url": self.canonical_url,
            "source": self.source,
            "confidence_score": self.confidence_score,
            "segments": [s.to_dict() for s in self.segments],
            "tier": self.tier,
            "plain_text_url": self.plain_text_url,
            "json_url": self.json_url,
            "duration_seconds": self.duration_seconds,
            "language": self.language,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResultEnvelope":
        return cls(
            video_id=data["video_id"],
            title=data["title"],
            channel=data["channel"],
            canonical_url=data["canonical_url"],
            source=data["source"],
            confidence_score=float(data["confidence_score"]),
            segments=[Segment.from_dict(s) for s in data.get("segments", [])],
            tier=int(data["tier"]),
            plain_text_url=data.get("plain_text_url"),
            json_url=data.get("json_url"),
            duration_seconds=float(data.get("duration_seconds") or 0.0),
            language=data.get("language"),
        )


@dataclass(frozen=True)
class FailureReason:
    kind: str
    message: str
    attempts: int
    max_attempts: int

    def to_dict(self) -> dict:
        return {"kind": self.kind, "message": self.message,
                "attempts": self.attempts, "max_attempts": self.max_attempts}


@dataclass
class Job:
    id: str                          # UUID
    source_url: str
    force_fallback_tier: bool = False
    state: str = JobState.WAITING
    attempts: int = 0
    max_attempts: int = 2
    progress: int = 0
    video_id: Optional[str] = None
    result: Optional[ResultEnvelope] = None
    failure_reason: Optional[FailureReason] = None
    stalled_count: int = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    finished_at: Optional[str] = None
    lock_token: Optional[str] = field(default=None, repr=False)

    def to_status_dict(self) -> dict:
        """Payload for the status endpoint. Never includes lock tokens."""
        status = {
            "id": self.id,
            "state": self.state,
            "progress": self.progress,
            "attempts": self.attempts,
            "max_attempts": self.max_attempts,
            "video_id": self.video_id,
            "force_fallback_tier": self.force_fallback_tier,
            "created_at": self.created_at,
            "finished_at": self.finished_at,
        }
        if self.result is not None:
            status["result"] = self.result.to_dict()
        if self.failure_reason is not None:
            status["failure_reason"] = self.failure_reason.to_dict()
        return status
