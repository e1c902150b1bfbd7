#!/usr/bin/env python3
"""
tubescribe v1.0.0: main entry point.

Usage:
    python main.py submit URL [URL ...] [--force-fallback] [--file urls.txt]
    python main.py status JOB_ID
    python main.py counts
    python main.py worker
    python main.py diagnostics
"""

import argparse
import json
import logging
import shutil
import signal
import sys
import threading
from datetime import datetime
from pathlib import Path

# ── Determine project root ────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from tubescribe.core.config import AppConfig
from tubescribe.core.constants import APP_NAME, APP_VERSION, LOG_DIR
from tubescribe.core.cookies import CredentialStore
from tubescribe.core.db_sqlite import Database
from tubescribe.core.diagnostics import get_diagnostics, missing_tools
from tubescribe.core.executor import TieredExecutor
from tubescribe.core.job_queue import JobQueueManager
from tubescribe.core.output_writer import ResultMaterializer
from tubescribe.core.security_utils import ToolInvoker
from tubescribe.core.storage import build_artifact_store
from tubescribe.core.url_parse import parse_txt_file

logger = logging.getLogger(APP_NAME)


def setup_logging(verbose: bool = False):
    """Log to ~/.local/share/tubescribe/logs/app.log and stderr."""
    LOG_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.FileHandler(LOG_DIR / "app.log", encoding="utf-8"),
            logging.StreamHandler(sys.stderr),
        ],
    )


def build_backend(config: AppConfig) -> JobQueueManager:
    """Wire config, store, invoker, executor and worker pool together."""
    credentials = CredentialStore(config.cookies_path)
    invoker = ToolInvoker(credentials)
    materializer = ResultMaterializer(build_artifact_store(config))
    executor = TieredExecutor(invoker, materializer, config)
    db = Database(config.db_path)
    return JobQueueManager(db, executor, config, credentials)


def check_prerequisites():
    """Check that yt-dlp and ffmpeg are available before starting workers."""
    missing = missing_tools()
    if missing:
        logger.error("Missing required tools: %s", ", ".join(missing))
        sys.exit(1)
    logger.info("yt-dlp found at: %s", shutil.which("yt-dlp"))
    logger.info("ffmpeg found at: %s", shutil.which("ffmpeg"))


def _print_json(data):
    print(json.dumps(data, indent=2, ensure_ascii=False))


def cmd_submit(manager: JobQueueManager, args) -> int:
    urls = list(args.urls)
    if args.file:
        urls.extend(parse_txt_file(args.file))
    if not urls:
        print("No URLs given", file=sys.stderr)
        return 2
    for url in urls:
        job = manager.submit_job(url, force_fallback_tier=args.force_fallback)
        print(job.id)
    return 0


def cmd_status(manager: JobQueueManager, args) -> int:
    job = manager.get_job(args.job_id)
    if job is None:
        print(f"Job not found: {args.job_id}", file=sys.stderr)
        return 1
    _print_json(job.to_status_dict())
    return 0


def cmd_worker(manager: JobQueueManager, args) -> int:
    check_prerequisites()
    snapshot = manager.credential_snapshot()
    logger.info("Cookie jar status: %s", snapshot.status)

    done = threading.Event()
    signal.signal(signal.SIGTERM, lambda *_: done.set())
    manager.start()
    try:
        while not done.wait(1.0):
            pass
    except KeyboardInterrupt:
        pass
    logger.info("Shutting down worker pool...")
    manager.stop(wait=True)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog=APP_NAME, description="Video transcription queue")
    parser.add_argument("-v", "--verbose", action="store_true")
    parser.add_argument("--config", type=Path, default=None, help="Path to config.json")
    sub = parser.add_subparsers(dest="command", required=True)

    p_submit = sub.add_parser("submit", help="Queue one or more URLs")
    p_submit.add_argument("urls", nargs="*")
    p_submit.add_argument("--file", help="Text file with one URL per line")
    p_submit.add_argument("--force-fallback", action="store_true",
                          help="Skip native captions and use the local speech model")

    p_status = sub.add_parser("status", help="Show a job's status")
    p_status.add_argument("job_id")

    sub.add_parser("counts", help="Show queue counts")
    sub.add_parser("worker", help="Run the worker pool until interrupted")
    sub.add_parser("diagnostics", help="Show tool versions and cookie health")

    args = parser.parse_args(argv)
    setup_logging(args.verbose)
    logger.info("%s v%s starting at %s (%s)", APP_NAME, APP_VERSION,
                datetime.now().isoformat(), args.command)

    config = AppConfig(args.config)
    manager = build_backend(config)
    try:
        if args.command == "submit":
            return cmd_submit(manager, args)
        if args.command == "status":
            return cmd_status(manager, args)
        if args.command == "counts":
            _print_json(manager.get_queue_counts())
            return 0
        if args.command == "worker":
            return cmd_worker(manager, args)
        if args.command == "diagnostics":
            _print_json(get_diagnostics(manager.credentials, manager))
            return 0
    finally:
        manager.db.close()
    return 2


if __name__ == "__main__":
    sys.exit(main())
