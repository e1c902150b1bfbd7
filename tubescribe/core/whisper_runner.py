"""
Child-process entry point for local speech-to-text with faster-whisper.

Run as `python -m tubescribe.core.whisper_runner AUDIO [options]`; prints one
JSON object with `language` and `segments` ([{start, end, text}]) to stdout.
Keeping the model in a child process lets the parent enforce a hard timeout
and release all model memory when the attempt ends.
"""

import argparse
import json
import sys

from faster_whisper import WhisperModel


def transcribe(audio_path: str, model_name: str, device: str, compute_type: str,
               language: str | None, beam_size: int) -> dict:
    model = WhisperModel(model_name, device=device, compute_type=compute_type)
    segments, info = model.transcribe(audio_path, language=language or None,
                                      beam_size=beam_size)
    return {
        "language": info.language,
        "duration": info.duration,
        "segments": [
            {"start": seg.start, "end": seg.end, "text": seg.text.strip()}
            for seg in segments
        ],
    }


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="whisper_runner")
    parser.add_argument("audio")
    parser.add_argument("--model", default="small")
    parser.add_argument("--device", default="cpu")
    parser.add_argument("--compute-type", default="int8")
    parser.add_argument("--language", default="en")
    parser.add_argument("--beam-size", type=int, default=5)
    args = parser.parse_args(argv)

    result = transcribe(args.audio, args.model, args.device, args.compute_type,
                        args.language, args.beam_size)
    json.dump(result, sys.stdout, ensure_ascii=False)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
