"""
Shared constants for tubescribe.
Single source of truth, imported by every other module.
"""

import pathlib
import tempfile

# ── Application identity ──────────────────────────────────────────────
APP_NAME = "tubescribe"
APP_VERSION = "1.0.0"
ENV_PREFIX = "TUBESCRIBE_"

# ── Filesystem paths ─────────────────────────────────────────────────
HOME = pathlib.Path.home()

APP_DATA_DIR = HOME / ".local" / "share" / APP_NAME
DB_PATH = APP_DATA_DIR / "jobs.db"
CONFIG_PATH = APP_DATA_DIR / "config.json"
LOG_DIR = APP_DATA_DIR / "logs"
DEFAULT_STORAGE_ROOT = APP_DATA_DIR / "artifacts"
DEFAULT_WORK_ROOT = pathlib.Path(tempfile.gettempdir()) / APP_NAME

# Cookies (Netscape cookie jar exported from a logged-in browser)
DEFAULT_COOKIES_PATH = APP_DATA_DIR / "cookies" / "youtube_cookies.txt"


# ── Job states ────────────────────────────────────────────────────────
class JobState:
    WAITING = "WAITING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


# ── Credential snapshot status ───────────────────────────────────────
class CredentialStatus:
    FRESH = "FRESH"
    STALE = "STALE"
    CRITICAL = "CRITICAL"
    INVALID = "INVALID"
    MISSING = "MISSING"
    ERROR = "ERROR"


COOKIES_MIN_ENTRIES = 5
COOKIES_STALE_HOURS = 72
COOKIES_CRITICAL_HOURS = 168

# ── Result envelope ──────────────────────────────────────────────────
SOURCE_NATIVE_CAPTIONS = "native-captions"
SOURCE_LOCAL_MODEL_PREFIX = "local-speech-model:"
NATIVE_CAPTIONS_CONFIDENCE = 0.98
LOCAL_MODEL_CONFIDENCE = 0.96
TIER_NATIVE = 1
TIER_MODEL = 2

# ── Progress checkpoints ─────────────────────────────────────────────
PROGRESS_METADATA = 5
PROGRESS_TIER2_START = 10
PROGRESS_AUDIO_DOWNLOADED = 40
PROGRESS_CAPTIONS_FOUND = 50
PROGRESS_TRANSCRIBED = 90
PROGRESS_DONE = 100

# ── Subprocess limits ────────────────────────────────────────────────
YTDLP_BINARY = "yt-dlp"
WATCH_URL_TEMPLATE = "https://www.youtube.com/watch?v={video_id}"
MIB = 1024 * 1024
METADATA_MAX_OUTPUT = 10 * MIB
CAPTIONS_MAX_OUTPUT = 50 * MIB
DOWNLOAD_MAX_OUTPUT = 50 * MIB
TRANSCRIBE_MAX_OUTPUT = 100 * MIB

# ── Artifact keys ────────────────────────────────────────────────────
ARTIFACT_PREFIX = "transcripts"
PLAIN_TEXT_NAME = "transcript.txt"
JSON_NAME = "transcript.json"

# ── Video ID extraction ──────────────────────────────────────────────
# Order matters: first match wins.
VIDEO_ID_PATTERNS = [
    r'youtu\.be/([a-zA-Z0-9_-]{11})(?![a-zA-Z0-9_-])',
    r'/watch\?(?:[^#]*&)?v=([a-zA-Z0-9_-]{11})(?![a-zA-Z0-9_-])',
    r'/embed/([a-zA-Z0-9_-]{11})(?![a-zA-Z0-9_-])',
    r'youtube\.com/v/([a-zA-Z0-9_-]{11})(?![a-zA-Z0-9_-])',
    r'youtube\.com/shorts/([a-zA-Z0-9_-]{11})(?![a-zA-Z0-9_-])',
    r'^([a-zA-Z0-9_-]{11})$',
]
