"""
Application configuration manager.
Stores settings in a JSON file; TUBESCRIBE_* environment variables override
the file on load.
"""

import json
import logging
import os
from pathlib import Path

from tubescribe.core.constants import (
    CONFIG_PATH, DB_PATH, DEFAULT_WORK_ROOT, DEFAULT_COOKIES_PATH,
    DEFAULT_STORAGE_ROOT, ENV_PREFIX,
)

logger = logging.getLogger(__name__)

_DEFAULTS = {
    'db_path': str(DB_PATH),
    'work_root': str(DEFAULT_WORK_ROOT),
    'cookies_path': str(DEFAULT_COOKIES_PATH),

    # Worker pool
    'concurrency': 1,
    'max_attempts': 2,
    'backoff_base_sec': 2.0,
    'lock_duration_sec': 30.0,
    'lock_renew_sec': 15.0,
    'max_stalled_count': 2,
    'completed_retention_sec': 3600.0,
    'poll_interval_sec': 1.0,

    # Subprocess timeouts
    'metadata_timeout_sec': 15.0,
    'captions_timeout_sec': 30.0,
    'download_timeout_sec': 300.0,
    'job_timeout_sec': 3600.0,

    # Tiers
    'enable_native_tier': True,
    'enable_model_tier': True,
    'caption_language': 'en',
    'whisper_model': 'small',
    'whisper_device': 'cpu',
    'whisper_language': 'en',
    'whisper_compute_type': 'int8',
    'whisper_beam_size': 5,

    # Artifact storage
    'storage_backend': 'local',
    'storage_root': str(DEFAULT_STORAGE_ROOT),
    'storage_public_base_url': None,
    'storage_http_base_url': None,
    'storage_http_token': None,
    's3_bucket': None,
    's3_endpoint_url': None,
    's3_region': None,
    's3_access_key': None,
    's3_secret_key': None,
}

# key -> (min, max)
_INT_BOUNDS = {
    'concurrency': (1, 32),
    'max_attempts': (1, 20),
    'max_stalled_count': (0, 20),
    'whisper_beam_size': (1, 10),
}
_FLOAT_BOUNDS = {
    'backoff_base_sec': (0.0, 600.0),
    'lock_duration_sec': (1.0, 3600.0),
    'lock_renew_sec': (0.1, 1800.0),
    'completed_retention_sec': (0.0, 30 * 86400.0),
    'poll_interval_sec': (0.01, 60.0),
    'metadata_timeout_sec': (1.0, 600.0),
    'captions_timeout_sec': (1.0, 600.0),
    'download_timeout_sec': (10.0, 6 * 3600.0),
    'job_timeout_sec': (60.0, 24 * 3600.0),
}
_BOOL_KEYS = {'enable_native_tier', 'enable_model_tier'}
_STORAGE_BACKENDS = ('local', 'http', 's3')
_SECRET_KEYS = {'storage_http_token', 's3_access_key', 's3_secret_key'}


def _parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() not in ('0', 'false', 'no', 'off', '')
    return bool(value)


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None, environ: dict | None = None):
        self.path = Path(config_path) if config_path else CONFIG_PATH
        self._environ = os.environ if environ is None else environ
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults, then apply env overrides."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = self._validate(key, value)
            except (OSError, ValueError) as e:
                logger.warning("Failed to load config: %s", e)

        for key in _DEFAULTS:
            env_value = self._environ.get(ENV_PREFIX + key.upper())
            if env_value is not None:
                self._data[key] = self._validate(key, env_value)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        value = self._data.get(key)
        return default if value is None else value

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in _INT_BOUNDS:
            lo, hi = _INT_BOUNDS[key]
            try:
                value = int(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r; using default", key, value)
                return _DEFAULTS[key]
            return max(lo, min(hi, value))

        if key in _FLOAT_BOUNDS:
            lo, hi = _FLOAT_BOUNDS[key]
            try:
                value = float(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r; using default", key, value)
                return _DEFAULTS[key]
            return max(lo, min(hi, value))

        if key in _BOOL_KEYS:
            return _parse_bool(value)

        if key == 'storage_backend':
            if value not in _STORAGE_BACKENDS:
                logger.warning("Invalid storage_backend %r; using local", value)
                return 'local'

        return value

    def as_dict(self, redact_secrets: bool = True) -> dict:
        data = dict(self._data)
        if redact_secrets:
            for key in _SECRET_KEYS:
                if data.get(key):
                    data[key] = '***'
        return data

    # ── Typed accessors ───────────────────────────────────────────────

    @property
    def db_path(self) -> Path:
        return Path(self._data['db_path'])

    @property
    def work_root(self) -> Path:
        return Path(self._data['work_root'])

    @property
    def cookies_path(self) -> Path:
        return Path(self._data['cookies_path'])

    @property
    def concurrency(self) -> int:
        return self._data['concurrency']

    @property
    def max_attempts(self) -> int:
        return self._data['max_attempts']
