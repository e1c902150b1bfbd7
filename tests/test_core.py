#!/usr/bin/env python3
"""
Unit tests for tubescribe core modules.
Tests cover: URL parsing, error codes, failure classification, cookie health,
subprocess invocation, captions parsing, config, storage and materialization.
"""

import sys
import os
import json
import tempfile
import time
from pathlib import Path
from unittest import mock

# Add project root to path
PROJECT_ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

import unittest

from tubescribe.core.constants import (
    CredentialStatus, COOKIES_MIN_ENTRIES, COOKIES_STALE_HOURS, COOKIES_CRITICAL_HOURS,
)
from tubescribe.core.url_parse import (
    extract_video_id, validate_video_url, is_video_url, parse_input_lines,
)
from tubescribe.core.error_codes import JobError, ErrorKind, ToolFailed, is_retryable
from tubescribe.core.failure_classifier import (
    classify, to_error_kind, FailureKind, BOT_DETECTION_PATTERNS, SESSION_EXPIRED_PATTERNS,
)
from tubescribe.core.cookies import CredentialStore, count_cookie_entries
from tubescribe.core.security_utils import ToolInvoker, redact, REDACTED_COOKIES
from tubescribe.core.captions_parse import parse_json3
from tubescribe.core.captions_fetch import caption_rank, select_caption_file, sub_langs_arg
from tubescribe.core.transcribe_local import parse_runner_output, build_runner_args, WhisperSettings
from tubescribe.core.config import AppConfig
from tubescribe.core.models_sqlite import Segment
from tubescribe.core.storage import LocalArtifactStore, HttpArtifactStore, S3ArtifactStore
from tubescribe.core.output_writer import ResultMaterializer, render_plain_text

VIDEO_ID = "dQw4w9WgXcQ"


def write_cookie_jar(path: Path, entries: int, mtime: float):
    lines = ["# Netscape HTTP Cookie File", ""]
    for i in range(entries):
        lines.append(f".youtube.com\tTRUE\t/\tTRUE\t0\tNAME{i}\tvalue{i}")
    path.write_text("\n".join(lines) + "\n")
    os.utime(path, (mtime, mtime))


class TestURLParsing(unittest.TestCase):
    """Test video URL parsing and validation."""

    def test_standard_url(self):
        self.assertEqual(
            extract_video_id("https://www.youtube.com/watch?v=dQw4w9WgXcQ"), VIDEO_ID)

    def test_watch_url_any_host(self):
        self.assertEqual(
            extract_video_id("https://example.com/watch?v=dQw4w9WgXcQ"), VIDEO_ID)

    def test_short_url(self):
        self.assertEqual(extract_video_id("https://youtu.be/dQw4w9WgXcQ"), VIDEO_ID)

    def test_short_url_with_params(self):
        self.assertEqual(extract_video_id("https://youtu.be/dQw4w9WgXcQ?t=42"), VIDEO_ID)

    def test_embed_url(self):
        self.assertEqual(
            extract_video_id("https://www.youtube.com/embed/dQw4w9WgXcQ"), VIDEO_ID)

    def test_url_with_params(self):
        self.assertEqual(
            extract_video_id("https://www.youtube.com/watch?feature=share&v=dQw4w9WgXcQ&t=120"),
            VIDEO_ID)

    def test_bare_id(self):
        self.assertEqual(extract_video_id("  dQw4w9WgXcQ  "), VIDEO_ID)

    def test_shorts_url(self):
        self.assertEqual(
            extract_video_id("https://www.youtube.com/shorts/dQw4w9WgXcQ"), VIDEO_ID)

    def test_invalid_url(self):
        self.assertIsNone(extract_video_id("https://www.google.com"))
        self.assertIsNone(extract_video_id("not a url"))
        self.assertIsNone(extract_video_id(""))
        self.assertIsNone(extract_video_id("dQw4w9WgXcQx"))
        self.assertIsNone(extract_video_id("https://youtu.be/short"))
        self.assertIsNone(extract_video_id(None))

    def test_validate_raises_on_invalid(self):
        with self.assertRaises(JobError) as ctx:
            validate_video_url("https://www.google.com")
        self.assertEqual(ctx.exception.kind, ErrorKind.INVALID_INPUT)
        self.assertFalse(ctx.exception.retryable)

    def test_parse_input_lines(self):
        text = """
        https://www.youtube.com/watch?v=dQw4w9WgXcQ
        https://youtu.be/abc123def45
        # comment

        not a url
        """
        self.assertEqual(len(parse_input_lines(text)), 2)
        self.assertTrue(is_video_url("https://youtu.be/abc123def45"))


class TestErrorCodes(unittest.TestCase):
    """Test error code handling."""

    def test_retryable_kinds(self):
        for kind in (ErrorKind.TIMEOUT, ErrorKind.METADATA_UNAVAILABLE,
                     ErrorKind.STORAGE_WRITE_FAILED, ErrorKind.UNKNOWN):
            self.assertTrue(is_retryable(kind), kind)

    def test_fatal_kinds(self):
        for kind in (ErrorKind.INVALID_INPUT, ErrorKind.OUTPUT_TOO_LARGE,
                     ErrorKind.NOT_FOUND, ErrorKind.TIER_UNAVAILABLE):
            self.assertFalse(is_retryable(kind), kind)

    def test_explicit_retryable_override(self):
        err = JobError(ErrorKind.PLATFORM_BLOCKED, "blocked", retryable=False)
        self.assertFalse(err.retryable)

    def test_unknown_kind_rejected(self):
        with self.assertRaises(ValueError):
            JobError("ERR_MADE_UP", "nope")

    def test_tool_failed_keeps_stderr_out_of_message(self):
        err = ToolFailed("yt-dlp", 1, "ERROR: secret stderr text")
        self.assertNotIn("secret", err.message)
        self.assertIn("secret", err.stderr)
        self.assertEqual(err.kind, ErrorKind.UNKNOWN)


class TestFailureClassifier(unittest.TestCase):

    def test_bot_detection(self):
        c = classify("ERROR: [youtube] x: Sign in to confirm you're not a bot.")
        self.assertEqual(c.kind, FailureKind.BOT_DETECTED)
        self.assertFalse(c.is_retryable_locally)
        self.assertEqual(to_error_kind(c), ErrorKind.PLATFORM_BLOCKED)

    def test_http_429_case_insensitive(self):
        self.assertEqual(classify("http error 429: too many requests").kind,
                         FailureKind.BOT_DETECTED)
        self.assertEqual(classify("Solve the CAPTCHA").kind, FailureKind.BOT_DETECTED)

    def test_session_expired(self):
        c = classify("The provided YouTube account cookies are no longer valid")
        self.assertEqual(c.kind, FailureKind.SESSION_EXPIRED)
        self.assertEqual(to_error_kind(c), ErrorKind.SESSION_EXPIRED)

    def test_bot_patterns_checked_first(self):
        text = "HTTP Error 403 and your session has expired"
        self.assertEqual(classify(text).kind, FailureKind.BOT_DETECTED)

    def test_not_found(self):
        c = classify("ERROR: [youtube] abc: Private video. Sign in if you've been granted access")
        self.assertEqual(c.kind, FailureKind.NOT_FOUND)
        self.assertEqual(to_error_kind(c), ErrorKind.NOT_FOUND)

    def test_other(self):
        c = classify("ERROR: unable to download webpage: connection reset")
        self.assertEqual(c.kind, FailureKind.OTHER)
        self.assertTrue(c.is_retryable_locally)
        self.assertEqual(classify(None).kind, FailureKind.OTHER)

    def test_every_table_pattern_matches_itself(self):
        for p in BOT_DETECTION_PATTERNS:
            self.assertEqual(classify(p.upper()).kind, FailureKind.BOT_DETECTED, p)
        for p in SESSION_EXPIRED_PATTERNS:
            self.assertEqual(classify(p).kind, FailureKind.SESSION_EXPIRED, p)


class TestCredentialStore(unittest.TestCase):

    NOW = 1_700_000_000

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = Path(self.tmpdir.name) / "cookies.txt"
        self.store = CredentialStore(self.path, clock=lambda: self.NOW)

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_missing(self):
        snap = self.store.snapshot()
        self.assertFalse(snap.present)
        self.assertEqual(snap.status, CredentialStatus.MISSING)
        self.assertIsNone(snap.age_hours)

    def test_fresh(self):
        write_cookie_jar(self.path, 20, self.NOW - 3600)
        snap = self.store.snapshot()
        self.assertEqual(snap.status, CredentialStatus.FRESH)
        self.assertEqual(snap.entry_count, 20)
        self.assertAlmostEqual(snap.age_hours, 1.0, places=3)

    def test_one_below_min_entries_is_invalid_regardless_of_age(self):
        for age_hours in (0, COOKIES_STALE_HOURS + 1, COOKIES_CRITICAL_HOURS + 10):
            write_cookie_jar(self.path, COOKIES_MIN_ENTRIES - 1, self.NOW - age_hours * 3600)
            self.assertEqual(self.store.snapshot().status, CredentialStatus.INVALID)

    def test_min_entries_is_enough(self):
        write_cookie_jar(self.path, COOKIES_MIN_ENTRIES, self.NOW)
        self.assertEqual(self.store.snapshot().status, CredentialStatus.FRESH)

    def test_stale_boundary(self):
        write_cookie_jar(self.path, 10, self.NOW - COOKIES_STALE_HOURS * 3600)
        self.assertEqual(self.store.snapshot().status, CredentialStatus.FRESH)
        write_cookie_jar(self.path, 10, self.NOW - (COOKIES_STALE_HOURS + 1) * 3600)
        self.assertEqual(self.store.snapshot().status, CredentialStatus.STALE)

    def test_exactly_critical_is_critical(self):
        write_cookie_jar(self.path, 10, self.NOW - COOKIES_CRITICAL_HOURS * 3600)
        snap = self.store.snapshot()
        self.assertEqual(snap.status, CredentialStatus.CRITICAL)
        self.assertAlmostEqual(snap.age_hours, COOKIES_CRITICAL_HOURS, places=3)

    def test_count_ignores_comments_and_blank_lines(self):
        content = "# comment\n\n#HttpOnly_.x\tTRUE\n.a\tTRUE\t/\n.b\tb\nno tabs here\n"
        self.assertEqual(count_cookie_entries(content), 2)

    def test_health_has_no_path(self):
        write_cookie_jar(self.path, 10, self.NOW)
        health = self.store.health()
        self.assertNotIn(str(self.path), json.dumps(health))
        self.assertEqual(health["critical_hours"], COOKIES_CRITICAL_HOURS)


class TestToolInvoker(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.cookie_path = Path(self.tmpdir.name) / "cookies.txt"
        self.invoker = ToolInvoker(CredentialStore(self.cookie_path))

    def tearDown(self):
        self.tmpdir.cleanup()

    def test_rejects_string_args(self):
        with self.assertRaises(TypeError):
            self.invoker.invoke("echo hi", timeout=5, max_output_bytes=100)

    def test_no_cookies_when_missing(self):
        args, secret = self.invoker.build_args(["yt-dlp", "--dump-json", "URL"])
        self.assertEqual(args, ["yt-dlp", "--dump-json", "URL"])
        self.assertIsNone(secret)

    def test_cookies_injected_after_executable(self):
        write_cookie_jar(self.cookie_path, 2, 0)  # INVALID but present
        args, secret = self.invoker.build_args(["yt-dlp", "--dump-json", "URL"])
        self.assertEqual(args, ["yt-dlp", "--cookies", str(self.cookie_path),
                                "--dump-json", "URL"])
        self.assertEqual(secret, str(self.cookie_path))

    def test_cookies_skipped_when_not_requested(self):
        write_cookie_jar(self.cookie_path, 10, 0)
        args, _ = self.invoker.build_args(["python", "-V"], use_credentials=False)
        self.assertEqual(args, ["python", "-V"])

    def test_redact(self):
        self.assertEqual(redact("failed reading /tmp/c.txt", "/tmp/c.txt"),
                         f"failed reading {REDACTED_COOKIES}")

    def test_metacharacters_passed_verbatim(self):
        tricky = "https://x.test/watch?v=abc&rm -rf /; echo $(whoami) 'quoted' \"dq\""
        out = self.invoker.invoke(
            [sys.executable, "-c", "import sys; print(sys.argv[1])", tricky],
            timeout=30, max_output_bytes=10_000)
        self.assertEqual(out.stdout.strip(), tricky)

    def test_nonzero_exit(self):
        with self.assertRaises(ToolFailed) as ctx:
            self.invoker.invoke(
                [sys.executable, "-c", "import sys; sys.stderr.write('HTTP Error 429'); sys.exit(3)"],
                timeout=30, max_output_bytes=10_000)
        self.assertEqual(ctx.exception.returncode, 3)
        self.assertIn("HTTP Error 429", ctx.exception.stderr)

    def test_timeout_kills_process(self):
        with self.assertRaises(JobError) as ctx:
            self.invoker.invoke([sys.executable, "-c", "import time; time.sleep(30)"],
                                timeout=0.5, max_output_bytes=10_000)
        self.assertEqual(ctx.exception.kind, ErrorKind.TIMEOUT)
        self.assertTrue(ctx.exception.retryable)

    def test_output_too_large(self):
        with self.assertRaises(JobError) as ctx:
            self.invoker.invoke([sys.executable, "-c", "print('x' * 5000)"],
                                timeout=30, max_output_bytes=100)
        self.assertEqual(ctx.exception.kind, ErrorKind.OUTPUT_TOO_LARGE)
        self.assertFalse(ctx.exception.retryable)

    def test_endless_writer_stopped_at_output_cap(self):
        started = time.monotonic()
        with self.assertRaises(JobError) as ctx:
            self.invoker.invoke(
                [sys.executable, "-c",
                 "import sys\nwhile True: sys.stdout.write('x' * 65536)"],
                timeout=20, max_output_bytes=1000)
        self.assertEqual(ctx.exception.kind, ErrorKind.OUTPUT_TOO_LARGE)
        self.assertFalse(ctx.exception.retryable)
        self.assertLess(time.monotonic() - started, 10)

    def test_timeout_kills_grandchildren(self):
        marker = Path(self.tmpdir.name) / "late-write.txt"
        script = (
            "import subprocess, sys, time\n"
            "subprocess.Popen([sys.executable, '-c', "
            "'import sys, time; time.sleep(1.5); open(sys.argv[1], \"w\").write(\"late\")', "
            "sys.argv[1]])\n"
            "time.sleep(30)\n"
        )
        with self.assertRaises(JobError) as ctx:
            self.invoker.invoke([sys.executable, "-c", script, str(marker)],
                                timeout=0.5, max_output_bytes=10_000)
        self.assertEqual(ctx.exception.kind, ErrorKind.TIMEOUT)
        time.sleep(2.5)
        self.assertFalse(marker.exists())

    def test_missing_tool(self):
        with self.assertRaises(JobError) as ctx:
            self.invoker.invoke(["definitely-not-a-real-tool-xyz"], timeout=5,
                                max_output_bytes=100)
        self.assertEqual(ctx.exception.kind, ErrorKind.UNKNOWN)


class TestCaptions(unittest.TestCase):

    def test_parse_json3(self):
        content = json.dumps({"events": [
            {"tStartMs": 0, "dDurationMs": 1500, "segs": [{"utf8": "Hello "}, {"utf8": "world"}]},
            {"tStartMs": 1500, "dDurationMs": 500, "segs": [{"utf8": "\n"}]},
            {"tStartMs": 2000, "segs": [{"utf8": "second\nline"}]},
            {"tStartMs": 2500, "dDurationMs": 10},
        ]})
        segments = parse_json3(content)
        self.assertEqual([s.text for s in segments], ["Hello world", "second line"])
        self.assertEqual(segments[0].start_seconds, 0.0)
        self.assertEqual(segments[0].duration_seconds, 1.5)
        self.assertEqual(segments[1].duration_seconds, 0.0)

    def test_parse_json3_malformed(self):
        self.assertEqual(parse_json3("not json"), [])
        self.assertEqual(parse_json3("{}"), [])

    def test_sub_langs(self):
        self.assertEqual(sub_langs_arg("en"), "en,en-.*,en.*")

    def test_caption_rank(self):
        self.assertEqual(caption_rank(f"{VIDEO_ID}.en.json3", VIDEO_ID, "en"), 0)
        self.assertEqual(caption_rank(f"{VIDEO_ID}.en-GB.json3", VIDEO_ID, "en"), 1)
        self.assertEqual(caption_rank(f"{VIDEO_ID}.en-orig.json3", VIDEO_ID, "en"), 2)
        self.assertIsNone(caption_rank(f"{VIDEO_ID}.de.json3", VIDEO_ID, "en"))
        self.assertIsNone(caption_rank("other.en.json3", VIDEO_ID, "en"))

    def test_select_prefers_exact_language(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            d = Path(tmpdir)
            for code in ("en-orig", "en-US", "en"):
                (d / f"{VIDEO_ID}.{code}.json3").write_text("{}")
            self.assertEqual(select_caption_file(d, VIDEO_ID, "en").name, f"{VIDEO_ID}.en.json3")
            (d / f"{VIDEO_ID}.en.json3").unlink()
            self.assertEqual(select_caption_file(d, VIDEO_ID, "en").name,
                             f"{VIDEO_ID}.en-US.json3")


class TestLocalModelOutput(unittest.TestCase):

    def test_parse_runner_output(self):
        stdout = json.dumps({"language": "en", "segments": [
            {"start": 0.0, "end": 2.5, "text": " Hi there "},
            {"start": 2.5, "end": 2.5, "text": "   "},
            {"start": 3.0, "end": 4.0, "text": "bye"},
        ]})
        transcript = parse_runner_output(stdout)
        self.assertEqual(transcript.language, "en")
        self.assertEqual([s.text for s in transcript.segments], ["Hi there", "bye"])
        self.assertEqual(transcript.segments[0].duration_seconds, 2.5)

    def test_parse_runner_garbage(self):
        with self.assertRaises(JobError):
            parse_runner_output("Traceback (most recent call last)")

    def test_runner_args(self):
        args = build_runner_args(Path("/tmp/a.mp3"), WhisperSettings(model="base"))
        self.assertEqual(args[0], sys.executable)
        self.assertIn("tubescribe.core.whisper_runner", args)
        self.assertEqual(args[args.index("--model") + 1], "base")


class TestConfig(unittest.TestCase):

    def test_defaults(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = AppConfig(Path(tmpdir) / "config.json", environ={})
            self.assertEqual(cfg.concurrency, 1)
            self.assertEqual(cfg.max_attempts, 2)
            self.assertEqual(cfg.get('lock_duration_sec'), 30.0)
            self.assertEqual(cfg.get('job_timeout_sec'), 3600.0)

    def test_file_and_env_overrides(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.json"
            path.write_text(json.dumps({"concurrency": 3, "whisper_model": "base"}))
            cfg = AppConfig(path, environ={"TUBESCRIBE_CONCURRENCY": "4",
                                           "TUBESCRIBE_ENABLE_NATIVE_TIER": "false"})
            self.assertEqual(cfg.concurrency, 4)
            self.assertEqual(cfg.get('whisper_model'), "base")
            self.assertFalse(cfg.get('enable_native_tier'))

    def test_validation_clamps(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = AppConfig(Path(tmpdir) / "config.json", environ={})
            cfg.set('concurrency', 1000)
            self.assertEqual(cfg.concurrency, 32)
            cfg.set('max_attempts', "abc")
            self.assertEqual(cfg.max_attempts, 2)
            cfg.set('storage_backend', "ftp")
            self.assertEqual(cfg.get('storage_backend'), "local")
            self.assertTrue((Path(tmpdir) / "config.json").exists())

    def test_secrets_redacted(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            cfg = AppConfig(Path(tmpdir) / "config.json",
                            environ={"TUBESCRIBE_S3_SECRET_KEY": "hunter2"})
            self.assertEqual(cfg.as_dict()['s3_secret_key'], '***')
            self.assertEqual(cfg.get('s3_secret_key'), 'hunter2')


class TestMaterializer(unittest.TestCase):

    SEGMENTS = [
        Segment("Hello — world", 0.0, 1.5),
        Segment("Second line", 1.5, 2.0),
    ]

    def test_persist_twice_is_byte_identical(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = LocalArtifactStore(Path(tmpdir))
            materializer = ResultMaterializer(store)
            first = materializer.persist(VIDEO_ID, self.SEGMENTS)
            txt_path = store.path_for(f"transcripts/{VIDEO_ID}/transcript.txt")
            json_path = store.path_for(f"transcripts/{VIDEO_ID}/transcript.json")
            txt_bytes, json_bytes = txt_path.read_bytes(), json_path.read_bytes()

            second = materializer.persist(VIDEO_ID, list(self.SEGMENTS))
            self.assertEqual(first, second)
            self.assertEqual(txt_path.read_bytes(), txt_bytes)
            self.assertEqual(json_path.read_bytes(), json_bytes)

            self.assertEqual(txt_bytes.decode('utf-8'), "Hello — world\nSecond line")
            self.assertEqual(json.loads(json_bytes)[1],
                             {"text": "Second line", "start": 1.5, "duration": 2.0})

    def test_public_base_url(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            store = LocalArtifactStore(Path(tmpdir), public_base_url="https://cdn.test/")
            urls = ResultMaterializer(store).persist(VIDEO_ID, self.SEGMENTS)
            self.assertEqual(urls.plain_text_url,
                             f"https://cdn.test/transcripts/{VIDEO_ID}/transcript.txt")

    def test_storage_failure_is_retryable(self):
        store = mock.Mock()
        store.upload_artifact.side_effect = OSError("disk full")
        with self.assertRaises(JobError) as ctx:
            ResultMaterializer(store).persist(VIDEO_ID, self.SEGMENTS)
        self.assertEqual(ctx.exception.kind, ErrorKind.STORAGE_WRITE_FAILED)
        self.assertTrue(ctx.exception.retryable)

    def test_unsafe_key_rejected(self):
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(ValueError):
                LocalArtifactStore(Path(tmpdir)).upload_artifact("../x", b"", "text/plain")

    def test_http_store_puts(self):
        session = mock.Mock()
        store = HttpArtifactStore("https://bucket.test/", token="t0k", session=session)
        url = store.upload_artifact("transcripts/a/transcript.txt", b"hi", "text/plain")
        self.assertEqual(url, "https://bucket.test/transcripts/a/transcript.txt")
        _, kwargs = session.put.call_args
        self.assertEqual(kwargs["headers"]["Authorization"], "Bearer t0k")
        session.put.return_value.raise_for_status.assert_called_once()

    def test_s3_store_puts(self):
        client = mock.Mock()
        store = S3ArtifactStore("bucket", endpoint_url="https://nyc3.example.com", client=client)
        url = store.upload_artifact("transcripts/a/transcript.json", b"[]", "application/json")
        self.assertEqual(url, "https://nyc3.example.com/bucket/transcripts/a/transcript.json")
        client.put_object.assert_called_once_with(
            Bucket="bucket", Key="transcripts/a/transcript.json", Body=b"[]",
            ContentType="application/json", ACL="public-read")

    def test_render_plain_text_empty(self):
        self.assertEqual(render_plain_text([]), b"")


if __name__ == "__main__":
    unittest.main()
