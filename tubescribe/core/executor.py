"""
Tiered transcription executor.

One call to `execute` drives one job attempt:

    FetchMetadata -> Tier 1 (native captions, optional) -> Tier 2 (local model)

Tier 1 failures of any kind fall through to Tier 2. A platform block or an
expired session during the Tier 2 audio download ends the job: both tiers
hit the same platform, so retrying would only repeat the block.
"""

import logging
from pathlib import Path
from typing import Callable, Optional

from tubescribe.core.captions_fetch import fetch_native_captions
from tubescribe.core.cleanup import create_attempt_workspace, cleanup_job_artifacts
from tubescribe.core.constants import (
    DEFAULT_WORK_ROOT, WATCH_URL_TEMPLATE,
    SOURCE_NATIVE_CAPTIONS, SOURCE_LOCAL_MODEL_PREFIX,
    NATIVE_CAPTIONS_CONFIDENCE, LOCAL_MODEL_CONFIDENCE, TIER_NATIVE, TIER_MODEL,
    PROGRESS_METADATA, PROGRESS_TIER2_START, PROGRESS_AUDIO_DOWNLOADED,
    PROGRESS_CAPTIONS_FOUND, PROGRESS_TRANSCRIBED, PROGRESS_DONE,
)
from tubescribe.core.download_audio import download_audio
from tubescribe.core.error_codes import JobError, ErrorKind, ToolFailed
from tubescribe.core.failure_classifier import classify, to_error_kind, FailureKind
from tubescribe.core.models_sqlite import Job, ResultEnvelope, Segment, VideoMetadata
from tubescribe.core.output_writer import ResultMaterializer
from tubescribe.core.security_utils import ToolInvoker
from tubescribe.core.transcribe_local import WhisperSettings, transcribe_audio
from tubescribe.core.url_parse import validate_video_url
from tubescribe.core.yt_metadata import fetch_metadata

logger = logging.getLogger(__name__)

ProgressFn = Callable[[int], None]


class TieredExecutor:
    """Runs one job attempt through the tier state machine."""

    def __init__(self, invoker: ToolInvoker, materializer: ResultMaterializer,
                 config=None):
        self.invoker = invoker
        self.materializer = materializer
        self.config = config if config is not None else {}

    # ── Config helpers ────────────────────────────────────────────────

    def _cfg(self, key: str, default):
        value = self.config.get(key)
        return default if value is None else value

    @property
    def work_root(self) -> Path:
        return Path(self._cfg('work_root', str(DEFAULT_WORK_ROOT)))

    @property
    def native_tier_enabled(self) -> bool:
        return bool(self._cfg('enable_native_tier', True))

    @property
    def model_tier_enabled(self) -> bool:
        return bool(self._cfg('enable_model_tier', True))

    @property
    def whisper_settings(self) -> WhisperSettings:
        return WhisperSettings(
            model=self._cfg('whisper_model', 'small'),
            device=self._cfg('whisper_device', 'cpu'),
            compute_type=self._cfg('whisper_compute_type', 'int8'),
            language=self._cfg('whisper_language', 'en'),
            beam_size=int(self._cfg('whisper_beam_size', 5)),
        )

    # ── Entry point ───────────────────────────────────────────────────

    def execute(self, job: Job, report_progress: ProgressFn,
                on_video_id: Optional[Callable[[str], None]] = None) -> ResultEnvelope:
        video_id = validate_video_url(job.source_url)
        if on_video_id:
            on_video_id(video_id)
        watch_url = WATCH_URL_TEMPLATE.format(video_id=video_id)

        workspace = create_attempt_workspace(self.work_root, job.id, job.attempts)
        try:
            metadata = self._fetch_metadata(watch_url, video_id)
            report_progress(PROGRESS_METADATA)

            if self.native_tier_enabled and not job.force_fallback_tier:
                envelope = self._run_native_tier(job, watch_url, metadata,
                                                 workspace, report_progress)
                if envelope is not None:
                    return envelope
            elif job.force_fallback_tier:
                logger.info("Job %s: native captions skipped (fallback forced)", job.id)

            return self._run_model_tier(job, watch_url, metadata, workspace,
                                        report_progress)
        finally:
            cleanup_job_artifacts(workspace)

    # ── Steps ─────────────────────────────────────────────────────────

    def _fetch_metadata(self, watch_url: str, video_id: str) -> VideoMetadata:
        try:
            return fetch_metadata(self.invoker, watch_url, video_id,
                                  timeout=float(self._cfg('metadata_timeout_sec', 15)))
        except ToolFailed as e:
            c = classify(e.stderr)
            if c.is_auth_failure:
                logger.error("Platform refused metadata request for %s: %s",
                             video_id, c.matched_pattern)
                raise JobError(to_error_kind(c), c.user_message, detail=e.detail,
                               retryable=True)
            if c.kind == FailureKind.NOT_FOUND:
                raise JobError(ErrorKind.NOT_FOUND, c.user_message, detail=e.detail)
            raise JobError(ErrorKind.METADATA_UNAVAILABLE,
                           "Could not fetch video metadata", detail=e.detail)

    def _run_native_tier(self, job: Job, watch_url: str, metadata: VideoMetadata,
                         workspace: Path, report_progress: ProgressFn) -> ResultEnvelope | None:
        logger.info("Job %s: trying native captions for %s", job.id, metadata.video_id)
        try:
            segments = fetch_native_captions(
                self.invoker, watch_url, metadata.video_id, workspace / "captions",
                language=self._cfg('caption_language', 'en'),
                timeout=float(self._cfg('captions_timeout_sec', 30)),
            )
        except ToolFailed as e:
            c = classify(e.stderr)
            if c.is_auth_failure:
                logger.error("Job %s: %s during caption extraction; trying local model",
                             job.id, c.kind)
            else:
                logger.warning("Job %s: caption extraction failed (%s); trying local model",
                               job.id, e.message)
            return None
        except JobError as e:
            logger.warning("Job %s: caption extraction failed (%s); trying local model",
                           job.id, e.kind)
            return None

        if not segments:
            logger.info("Job %s: no native captions available", job.id)
            return None

        report_progress(PROGRESS_CAPTIONS_FOUND)
        envelope = self._materialize(metadata, segments, SOURCE_NATIVE_CAPTIONS,
                                     NATIVE_CAPTIONS_CONFIDENCE, TIER_NATIVE,
                                     self._cfg('caption_language', 'en'))
        report_progress(PROGRESS_DONE)
        logger.info("Job %s: completed from native captions (%d segments)",
                    job.id, len(segments))
        return envelope

    def _run_model_tier(self, job: Job, watch_url: str, metadata: VideoMetadata,
                        workspace: Path, report_progress: ProgressFn) -> ResultEnvelope:
        if not self.model_tier_enabled:
            raise JobError(ErrorKind.TIER_UNAVAILABLE,
                           "Local transcription is disabled and no captions were available")

        logger.info("Job %s: falling back to local speech model", job.id)
        report_progress(PROGRESS_TIER2_START)

        try:
            audio_path = download_audio(self.invoker, watch_url, workspace / "audio",
                                        timeout=float(self._cfg('download_timeout_sec', 300)))
        except ToolFailed as e:
            c = classify(e.stderr)
            if c.is_auth_failure:
                logger.error("Job %s: %s during audio download; failing job",
                             job.id, c.kind)
                raise JobError(to_error_kind(c), c.user_message, detail=e.detail,
                               retryable=False)
            if c.kind == FailureKind.NOT_FOUND:
                raise JobError(ErrorKind.NOT_FOUND, c.user_message, detail=e.detail)
            raise JobError(ErrorKind.UNKNOWN, "Audio download failed", detail=e.detail)
        report_progress(PROGRESS_AUDIO_DOWNLOADED)

        settings = self.whisper_settings
        try:
            transcript = transcribe_audio(self.invoker, audio_path, settings,
                                          timeout=float(self._cfg('job_timeout_sec', 3600)))
        except ToolFailed as e:
            raise JobError(ErrorKind.UNKNOWN, "Local transcription failed", detail=e.detail)
        if not transcript.segments:
            raise JobError(ErrorKind.UNKNOWN, "Local transcription produced no text")
        report_progress(PROGRESS_TRANSCRIBED)

        envelope = self._materialize(metadata, transcript.segments,
                                     SOURCE_LOCAL_MODEL_PREFIX + settings.model,
                                     LOCAL_MODEL_CONFIDENCE, TIER_MODEL,
                                     transcript.language)
        report_progress(PROGRESS_DONE)
        logger.info("Job %s: completed with local model (%d segments)",
                    job.id, len(transcript.segments))
        return envelope

    def _materialize(self, metadata: VideoMetadata, segments: list[Segment],
                     source: str, confidence: float, tier: int,
                     language: str | None) -> ResultEnvelope:
        urls = self.materializer.persist(metadata.video_id, segments)
        return ResultEnvelope(
            video_id=metadata.video_id,
            title=metadata.title,
            channel=metadata.channel,
            canonical_url=metadata.canonical_url,
            source=source,
            confidence_score=confidence,
            segments=list(segments),
            tier=tier,
            plain_text_url=urls.plain_text_url,
            json_url=urls.json_url,
            duration_seconds=metadata.duration_seconds,
            language=language,
        )
