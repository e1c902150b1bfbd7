"""
Local speech-to-text (Tier 2) through the faster-whisper child process.
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path

from tubescribe.core.constants import TRANSCRIBE_MAX_OUTPUT
from tubescribe.core.error_codes import JobError, ErrorKind
from tubescribe.core.models_sqlite import Segment
from tubescribe.core.security_utils import ToolInvoker

logger = logging.getLogger(__name__)

RUNNER_MODULE = "tubescribe.core.whisper_runner"


@dataclass(frozen=True)
class WhisperSettings:
    model: str = "small"
    device: str = "cpu"
    compute_type: str = "int8"
    language: str = "en"
    beam_size: int = 5


@dataclass
class ModelTranscript:
    segments: list[Segment] = field(default_factory=list)
    language: str | None = None


def build_runner_args(audio_path: Path, settings: WhisperSettings) -> list[str]:
    return [
        sys.executable, "-m", RUNNER_MODULE,
        str(audio_path),
        "--model", settings.model,
        "--device", settings.device,
        "--compute-type", settings.compute_type,
        "--language", settings.language,
        "--beam-size", str(settings.beam_size),
    ]


def parse_runner_output(stdout: str) -> ModelTranscript:
    try:
        data = json.loads(stdout.strip())
    except json.JSONDecodeError as e:
        raise JobError(ErrorKind.UNKNOWN, "Speech model returned unreadable output",
                       detail=str(e))

    segments = []
    for seg in data.get('segments', []):
        text = (seg.get('text') or '').strip()
        if not text:
            continue
        start = max(0.0, float(seg.get('start') or 0.0))
        end = float(seg.get('end') or start)
        segments.append(Segment(text=text, start_seconds=start,
                                duration_seconds=max(0.0, end - start)))
    return ModelTranscript(segments=segments, language=data.get('language'))


def transcribe_audio(invoker: ToolInvoker, audio_path: Path,
                     settings: WhisperSettings, timeout: float = 3600) -> ModelTranscript:
    """Run the model over audio_path. Cookies are never passed to the runner."""
    if not audio_path.exists():
        raise JobError(ErrorKind.UNKNOWN, "Downloaded audio file is missing")

    logger.info("Starting local transcription (model=%s, device=%s)",
                settings.model, settings.device)
    result = invoker.invoke(build_runner_args(audio_path, settings), timeout=timeout,
                            max_output_bytes=TRANSCRIBE_MAX_OUTPUT,
                            use_credentials=False)
    transcript = parse_runner_output(result.stdout)
    logger.info("Local transcription produced %d segments", len(transcript.segments))
    return transcript
