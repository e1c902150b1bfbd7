"""
SQLite job store for tubescribe.

This is the durable queue: the single source of truth for job state. Several
worker processes may share one database file; claims run inside
BEGIN IMMEDIATE transactions so each job is handed to exactly one worker,
and every write made on behalf of a running attempt is guarded by that
attempt's lock token.
"""

import json
import sqlite3
import threading
import time
import uuid
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path

from tubescribe.core.constants import DB_PATH, JobState
from tubescribe.core.error_codes import ErrorKind
from tubescribe.core.models_sqlite import Job, ResultEnvelope, FailureReason

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_CREATE_TABLES = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    source_url TEXT NOT NULL,
    force_fallback_tier INTEGER NOT NULL DEFAULT 0,
    state TEXT NOT NULL DEFAULT 'WAITING',
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 2,
    progress INTEGER NOT NULL DEFAULT 0,
    video_id TEXT,
    result_json TEXT,
    failure_kind TEXT,
    failure_message TEXT,
    stalled_count INTEGER NOT NULL DEFAULT 0,
    lock_token TEXT,
    lock_expires_at REAL,
    available_at REAL NOT NULL DEFAULT 0,
    created_at TEXT,
    updated_at TEXT,
    finished_at TEXT,
    finished_ts REAL
);

CREATE INDEX IF NOT EXISTS idx_jobs_state_available ON jobs(state, available_at);
CREATE INDEX IF NOT EXISTS idx_jobs_video_id ON jobs(video_id);
"""


class Database:
    """SQLite database wrapper holding the job queue."""

    def __init__(self, db_path: Path | None = None, clock=time.time):
        self.db_path = Path(db_path) if db_path else DB_PATH
        self._clock = clock
        self._lock = threading.RLock()
        self._ensure_dirs()
        self.conn = sqlite3.connect(
            str(self.db_path),
            check_same_thread=False,
            timeout=30,
        )
        self.conn.row_factory = sqlite3.Row
        self.conn.execute("PRAGMA journal_mode=WAL")
        self._migrate()

    def _ensure_dirs(self):
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

    def _migrate(self):
        with self._lock:
            cur = self.conn.cursor()
            cur.executescript(_CREATE_TABLES)
            cur.execute(
                "INSERT OR REPLACE INTO schema_version (version) VALUES (?)",
                (_SCHEMA_VERSION,),
            )
            self.conn.commit()

    def close(self):
        if self.conn:
            self.conn.close()

    # ── Helpers ───────────────────────────────────────────────────────

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()

    @contextmanager
    def _transaction(self):
        """Serialise writers across threads (RLock) and processes (IMMEDIATE)."""
        with self._lock:
            self.conn.execute("BEGIN IMMEDIATE")
            try:
                yield self.conn
            except BaseException:
                self.conn.rollback()
                raise
            else:
                self.conn.commit()

    @staticmethod
    def _row_to_job(row: sqlite3.Row) -> Job:
        result = None
        if row["result_json"]:
            result = ResultEnvelope.from_dict(json.loads(row["result_json"]))
        failure = None
        if row["failure_kind"]:
            failure = FailureReason(
                kind=row["failure_kind"],
                message=row["failure_message"] or "",
                attempts=row["attempts"],
                max_attempts=row["max_attempts"],
            )
        return Job(
            id=row["id"],
            source_url=row["source_url"],
            force_fallback_tier=bool(row["force_fallback_tier"]),
            state=row["state"],
            attempts=row["attempts"],
            max_attempts=row["max_attempts"],
            progress=row["progress"],
            video_id=row["video_id"],
            result=result,
            failure_reason=failure,
            stalled_count=row["stalled_count"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            finished_at=row["finished_at"],
            lock_token=row["lock_token"],
        )

    # ── Submission / lookup ───────────────────────────────────────────

    def enqueue(self, source_url: str, force_fallback_tier: bool = False,
                max_attempts: int = 2) -> Job:
        job_id = str(uuid.uuid4())
        now = self._now()
        with self._transaction() as conn:
            conn.execute(
                """INSERT INTO jobs
                   (id, source_url, force_fallback_tier, state, attempts,
                    max_attempts, progress, available_at, created_at, updated_at)
                   VALUES (?, ?, ?, ?, 0, ?, 0, ?, ?, ?)""",
                (job_id, source_url, 1 if force_fallback_tier else 0,
                 JobState.WAITING, max_attempts, self._clock(), now, now),
            )
        return self.get_job(job_id)

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM jobs WHERE id = ?", (job_id,)
            ).fetchone()
        return self._row_to_job(row) if row else None

    def list_jobs(self, state: str | None = None) -> list[Job]:
        with self._lock:
            if state is None:
                rows = self.conn.execute(
                    "SELECT * FROM jobs ORDER BY created_at DESC"
                ).fetchall()
            else:
                rows = self.conn.execute(
                    "SELECT * FROM jobs WHERE state = ? ORDER BY created_at DESC",
                    (state,),
                ).fetchall()
        return [self._row_to_job(r) for r in rows]

    def get_counts(self) -> dict:
        counts = {"waiting": 0, "active": 0, "completed": 0, "failed": 0}
        with self._lock:
            rows = self.conn.execute(
                "SELECT state, COUNT(*) AS n FROM jobs GROUP BY state"
            ).fetchall()
        for row in rows:
            counts[row["state"].lower()] = row["n"]
        return counts

    # ── Worker side ───────────────────────────────────────────────────

    def claim(self, lock_token: str, lock_duration: float) -> Job | None:
        """Move the oldest due WAITING job to ACTIVE under a fresh lock."""
        now = self._clock()
        with self._transaction() as conn:
            row = conn.execute(
                """SELECT id FROM jobs
                   WHERE state = ? AND available_at <= ?
                   ORDER BY available_at ASC, created_at ASC
                   LIMIT 1""",
                (JobState.WAITING, now),
            ).fetchone()
            if row is None:
                return None
            conn.execute(
                """UPDATE jobs
                   SET state = ?, attempts = attempts + 1, progress = 0,
                       lock_token = ?, lock_expires_at = ?, updated_at = ?
                   WHERE id = ?""",
                (JobState.ACTIVE, lock_token, now + lock_duration,
                 self._now(), row["id"]),
            )
            job_id = row["id"]
        return self.get_job(job_id)

    def _update_locked(self, job_id: str, lock_token: str, sets: str,
                       values: tuple) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                f"""UPDATE jobs SET {sets}, updated_at = ?
                    WHERE id = ? AND state = ? AND lock_token = ?""",
                values + (self._now(), job_id, JobState.ACTIVE, lock_token),
            )
            return cur.rowcount == 1

    def renew_lock(self, job_id: str, lock_token: str, lock_duration: float) -> bool:
        return self._update_locked(job_id, lock_token, "lock_expires_at = ?",
                                   (self._clock() + lock_duration,))

    def set_progress(self, job_id: str, lock_token: str, progress: int) -> bool:
        progress = max(0, min(100, int(progress)))
        return self._update_locked(job_id, lock_token, "progress = MAX(progress, ?)",
                                   (progress,))

    def set_video_id(self, job_id: str, lock_token: str, video_id: str) -> bool:
        return self._update_locked(job_id, lock_token, "video_id = ?", (video_id,))

    def complete(self, job_id: str, lock_token: str, result: ResultEnvelope) -> bool:
        now = self._now()
        return self._update_locked(
            job_id, lock_token,
            """state = ?, progress = 100, result_json = ?, video_id = ?,
               failure_kind = NULL, failure_message = NULL,
               lock_token = NULL, lock_expires_at = NULL,
               finished_at = ?, finished_ts = ?""",
            (JobState.COMPLETED, json.dumps(result.to_dict()), result.video_id,
             now, self._clock()),
        )

    def retry_later(self, job_id: str, lock_token: str, delay: float) -> bool:
        """Return an ACTIVE job to WAITING, due after `delay` seconds."""
        return self._update_locked(
            job_id, lock_token,
            """state = ?, progress = 0, available_at = ?,
               lock_token = NULL, lock_expires_at = NULL""",
            (JobState.WAITING, self._clock() + delay),
        )

    def fail(self, job_id: str, lock_token: str, kind: str, message: str) -> bool:
        now = self._now()
        return self._update_locked(
            job_id, lock_token,
            """state = ?, failure_kind = ?, failure_message = ?,
               lock_token = NULL, lock_expires_at = NULL,
               finished_at = ?, finished_ts = ?""",
            (JobState.FAILED, kind, message[:2000], now, self._clock()),
        )

    # ── Maintenance ───────────────────────────────────────────────────

    def requeue_stalled(self, max_stalled_count: int) -> tuple[int, int]:
        """
        Requeue ACTIVE jobs whose lock expired without renewal.
        The crashed attempt is not counted against max_attempts. A job that
        stalls more than max_stalled_count times is failed instead.
        Returns (requeued, failed).
        """
        now = self._clock()
        stamp = self._now()
        requeued = failed = 0
        with self._transaction() as conn:
            rows = conn.execute(
                """SELECT id, stalled_count FROM jobs
                   WHERE state = ? AND lock_expires_at IS NOT NULL
                     AND lock_expires_at < ?""",
                (JobState.ACTIVE, now),
            ).fetchall()
            for row in rows:
                stalled = row["stalled_count"] + 1
                if stalled > max_stalled_count:
                    conn.execute(
                        """UPDATE jobs
                           SET state = ?, stalled_count = ?, failure_kind = ?,
                               failure_message = ?, lock_token = NULL,
                               lock_expires_at = NULL, finished_at = ?,
                               finished_ts = ?, updated_at = ?
                           WHERE id = ?""",
                        (JobState.FAILED, stalled, ErrorKind.JOB_STALLED,
                         "Job stalled too many times (worker stopped renewing its lock)",
                         stamp, now, stamp, row["id"]),
                    )
                    failed += 1
                else:
                    conn.execute(
                        """UPDATE jobs
                           SET state = ?, stalled_count = ?,
                               attempts = MAX(attempts - 1, 0), progress = 0,
                               available_at = ?, lock_token = NULL,
                               lock_expires_at = NULL, updated_at = ?
                           WHERE id = ?""",
                        (JobState.WAITING, stalled, now, stamp, row["id"]),
                    )
                    requeued += 1
        if requeued or failed:
            logger.warning("Stalled jobs: %d requeued, %d failed", requeued, failed)
        return requeued, failed

    def purge_completed(self, older_than_sec: float) -> int:
        """Delete COMPLETED jobs finished more than older_than_sec ago."""
        cutoff = self._clock() - older_than_sec
        with self._transaction() as conn:
            cur = conn.execute(
                "DELETE FROM jobs WHERE state = ? AND finished_ts < ?",
                (JobState.COMPLETED, cutoff),
            )
            return cur.rowcount

    def requeue_failed(self, job_id: str) -> bool:
        """Manually reset a FAILED job to WAITING with a fresh attempt budget."""
        with self._transaction() as conn:
            cur = conn.execute(
                """UPDATE jobs
                   SET state = ?, attempts = 0, progress = 0, stalled_count = 0,
                       failure_kind = NULL, failure_message = NULL,
                       finished_at = NULL, finished_ts = NULL,
                       available_at = ?, updated_at = ?
                   WHERE id = ? AND state = ?""",
                (JobState.WAITING, self._clock(), self._now(), job_id, JobState.FAILED),
            )
            return cur.rowcount == 1

    def delete_job(self, job_id: str) -> bool:
        with self._transaction() as conn:
            cur = conn.execute(
                "DELETE FROM jobs WHERE id = ? AND state != ?",
                (job_id, JobState.ACTIVE),
            )
            return cur.rowcount == 1
