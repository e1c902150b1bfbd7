"""
Job Queue Manager and Worker Pool.
A fixed number of worker threads claim jobs from the durable store and run
them through the tiered executor, one job per worker at a time.
"""

import logging
import threading
import uuid

from tubescribe.core.cookies import CredentialStore, CredentialSnapshot
from tubescribe.core.db_sqlite import Database
from tubescribe.core.error_codes import JobError, ErrorKind
from tubescribe.core.executor import TieredExecutor
from tubescribe.core.models_sqlite import Job

logger = logging.getLogger(__name__)


def backoff_delay(base_sec: float, attempts: int) -> float:
    """Exponential backoff after the given number of attempts (1 -> base)."""
    return base_sec * (2 ** max(0, attempts - 1))


class _LockRenewer:
    """Background thread that keeps an ACTIVE job's lock alive."""

    def __init__(self, db: Database, job_id: str, lock_token: str,
                 duration: float, interval: float):
        self.db = db
        self.job_id = job_id
        self.lock_token = lock_token
        self.duration = duration
        self.interval = interval
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._run, daemon=True,
                                        name=f"lock-renew-{job_id[:8]}")

    def __enter__(self):
        self._thread.start()
        return self

    def __exit__(self, *exc):
        self._stop.set()
        self._thread.join()
        return False

    def _run(self):
        while not self._stop.wait(self.interval):
            try:
                if not self.db.renew_lock(self.job_id, self.lock_token, self.duration):
                    logger.warning("Lost lock on job %s; another worker may take it over",
                                   self.job_id)
                    return
            except Exception as e:
                logger.error("Lock renewal error for job %s: %s", self.job_id, e)


class JobQueueManager:
    """
    Manages the job queue and the worker pool.
    Status is read by polling: get_job / get_queue_counts.
    """

    def __init__(self, db: Database, executor: TieredExecutor,
                 config=None, credentials: CredentialStore | None = None):
        self.db = db
        self.executor = executor
        self.config = config if config is not None else {}
        self.credentials = credentials or CredentialStore()
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []
        self._running = False

    # ── Config helpers ────────────────────────────────────────────────

    def _cfg(self, key: str, default):
        value = self.config.get(key)
        return default if value is None else value

    @property
    def concurrency(self) -> int:
        return int(self._cfg('concurrency', 1))

    @property
    def max_attempts(self) -> int:
        return int(self._cfg('max_attempts', 2))

    @property
    def backoff_base_sec(self) -> float:
        return float(self._cfg('backoff_base_sec', 2.0))

    @property
    def lock_duration_sec(self) -> float:
        return float(self._cfg('lock_duration_sec', 30.0))

    @property
    def lock_renew_sec(self) -> float:
        return float(self._cfg('lock_renew_sec', 15.0))

    @property
    def max_stalled_count(self) -> int:
        return int(self._cfg('max_stalled_count', 2))

    @property
    def completed_retention_sec(self) -> float:
        return float(self._cfg('completed_retention_sec', 3600.0))

    @property
    def poll_interval_sec(self) -> float:
        return float(self._cfg('poll_interval_sec', 1.0))

    # ── Public API ────────────────────────────────────────────────────

    def submit_job(self, url: str, force_fallback_tier: bool = False) -> Job:
        job = self.db.enqueue(url, force_fallback_tier=force_fallback_tier,
                              max_attempts=self.max_attempts)
        logger.info("Job %s queued (force_fallback_tier=%s)", job.id, force_fallback_tier)
        return job

    def get_job(self, job_id: str) -> Job | None:
        return self.db.get_job(job_id)

    def get_queue_counts(self) -> dict:
        return self.db.get_counts()

    def credential_snapshot(self) -> CredentialSnapshot:
        return self.credentials.snapshot()

    def retry_job(self, job_id: str) -> bool:
        """Reset a FAILED job to WAITING with a fresh attempt budget."""
        ok = self.db.requeue_failed(job_id)
        if ok:
            logger.info("Job %s manually requeued", job_id)
        return ok

    def remove_job(self, job_id: str) -> bool:
        """Remove a job that is not currently running."""
        return self.db.delete_job(job_id)

    # ── Pool lifecycle ────────────────────────────────────────────────

    def start(self):
        """Start the worker threads and the maintenance thread."""
        if self._running:
            return
        self._stop_event.clear()
        self._running = True
        self._threads = [
            threading.Thread(target=self._worker_loop, args=(f"worker-{i + 1}",),
                             daemon=True, name=f"worker-{i + 1}")
            for i in range(self.concurrency)
        ]
        self._threads.append(threading.Thread(target=self._maintenance_loop,
                                              daemon=True, name="maintenance"))
        for t in self._threads:
            t.start()
        logger.info("Worker pool started (concurrency=%d)", self.concurrency)

    def stop(self, wait: bool = True, timeout: float | None = None):
        """Stop claiming new jobs. Running jobs finish unless the process exits."""
        self._stop_event.set()
        if wait:
            for t in self._threads:
                t.join(timeout)
        self._threads = []
        self._running = False

    def is_running(self) -> bool:
        return self._running

    # ── Worker loop ───────────────────────────────────────────────────

    def _worker_loop(self, worker_name: str):
        while not self._stop_event.is_set():
            try:
                processed = self.process_next(worker_name)
            except Exception as e:
                # Store errors (e.g. database locked): back off and keep going
                logger.error("%s loop error: %s", worker_name, e, exc_info=True)
                processed = False
            if not processed:
                self._stop_event.wait(self.poll_interval_sec)

    def _maintenance_loop(self):
        while not self._stop_event.wait(self.lock_renew_sec):
            self.run_maintenance()

    def run_maintenance(self):
        """Requeue stalled jobs and purge expired completed jobs."""
        try:
            self.db.requeue_stalled(self.max_stalled_count)
            purged = self.db.purge_completed(self.completed_retention_sec)
            if purged:
                logger.info("Purged %d completed jobs", purged)
        except Exception as e:
            logger.error("Maintenance error: %s", e, exc_info=True)

    def process_next(self, worker_name: str = "worker") -> bool:
        """Claim and run one job. Returns False if nothing was due."""
        lock_token = f"{worker_name}:{uuid.uuid4()}"
        job = self.db.claim(lock_token, self.lock_duration_sec)
        if job is None:
            return False

        logger.info("%s claimed job %s (attempt %d/%d)",
                    worker_name, job.id, job.attempts, job.max_attempts)
        with _LockRenewer(self.db, job.id, lock_token,
                          self.lock_duration_sec, self.lock_renew_sec):
            self._run_job(job, lock_token)
        return True

    # ── Job processing ────────────────────────────────────────────────

    def _run_job(self, job: Job, lock_token: str):
        def report_progress(pct: int):
            self.db.set_progress(job.id, lock_token, pct)

        def record_video_id(video_id: str):
            self.db.set_video_id(job.id, lock_token, video_id)

        try:
            result = self.executor.execute(job, report_progress, record_video_id)
        except JobError as e:
            self._handle_job_error(job, lock_token, e)
            return
        except Exception as e:
            logger.error("Unexpected error processing job %s: %s", job.id, e, exc_info=True)
            self._handle_job_error(job, lock_token, JobError(
                ErrorKind.UNKNOWN, "Unexpected internal error",
                detail=f"{type(e).__name__}: {e}"))
            return

        if self.db.complete(job.id, lock_token, result):
            logger.info("Job %s completed (tier %d, %s)", job.id, result.tier, result.source)
        else:
            logger.warning("Job %s finished after its lock was lost; result not recorded",
                           job.id)

    def _handle_job_error(self, job: Job, lock_token: str, error: JobError):
        """Handle a JobError: retry with backoff or fail."""
        if error.detail:
            logger.debug("Job %s error detail: %s", job.id, error.detail)

        if error.retryable and job.attempts < job.max_attempts:
            delay = backoff_delay(self.backoff_base_sec, job.attempts)
            if self.db.retry_later(job.id, lock_token, delay):
                logger.warning("Job %s attempt %d/%d failed [%s] %s; retrying in %.1fs",
                               job.id, job.attempts, job.max_attempts,
                               error.kind, error.message, delay)
            return

        if self.db.fail(job.id, lock_token, error.kind, error.message):
            logger.error("Job %s failed after %d/%d attempts [%s] %s",
                         job.id, job.attempts, job.max_attempts,
                         error.kind, error.message)
