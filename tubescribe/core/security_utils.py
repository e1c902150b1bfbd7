"""
Security utilities for tubescribe.
- Safe subprocess execution (argument arrays only, never a shell)
- Cookie-jar injection with path redaction in logs
- Wall-clock timeouts and output size caps
"""

import logging
import os
import signal
import subprocess
import tempfile
import time
from dataclasses import dataclass
from typing import IO, Sequence

from tubescribe.core.constants import CredentialStatus
from tubescribe.core.cookies import CredentialStore
from tubescribe.core.error_codes import JobError, ErrorKind, ToolFailed

logger = logging.getLogger(__name__)

REDACTED_COOKIES = "[COOKIES_PATH]"


@dataclass(frozen=True)
class ToolOutput:
    stdout: str
    stderr: str


def redact(text: str, secret: str | None) -> str:
    if not secret:
        return text
    return text.replace(secret, REDACTED_COOKIES)


_POLL_INTERVAL = 0.05


def _spooled_size(*streams: IO[bytes]) -> int:
    return sum(os.fstat(s.fileno()).st_size for s in streams)


def _read_spooled(stream: IO[bytes]) -> bytes:
    stream.seek(0)
    return stream.read()


def _kill_process_group(proc: subprocess.Popen):
    """Kill the child and everything it spawned (yt-dlp runs ffmpeg)."""
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    proc.wait()


class ToolInvoker:
    """
    Runs external tools as child processes.

    Arguments always travel as a list with shell=False, so URLs containing
    spaces, quotes or shell metacharacters are passed through verbatim.
    """

    def __init__(self, credentials: CredentialStore | None = None):
        self.credentials = credentials

    def _cookie_args(self) -> tuple[list[str], str | None]:
        if self.credentials is None:
            return [], None
        snapshot = self.credentials.snapshot()
        if snapshot.status == CredentialStatus.MISSING:
            return [], None
        if snapshot.status != CredentialStatus.FRESH:
            logger.warning("Using cookie jar with status %s: %s",
                           snapshot.status, snapshot.warning)
        path = str(self.credentials.path)
        return ["--cookies", path], path

    def build_args(self, tool_args: Sequence[str],
                   use_credentials: bool = True) -> tuple[list[str], str | None]:
        """Final argument list plus the cookie path to redact (if any)."""
        if isinstance(tool_args, (str, bytes)) or not isinstance(tool_args, (list, tuple)):
            raise TypeError("Subprocess args must be a list/tuple, not a string")
        if not tool_args:
            raise ValueError("Subprocess args must not be empty")

        args = [str(a) for a in tool_args]
        secret = None
        if use_credentials:
            cookie_args, secret = self._cookie_args()
            args = args[:1] + cookie_args + args[1:]
        return args, secret

    def invoke(self, tool_args: Sequence[str], timeout: float,
               max_output_bytes: int, use_credentials: bool = True) -> ToolOutput:
        args, secret = self.build_args(tool_args, use_credentials)
        tool = args[0]
        logger.debug("Running subprocess: %s (timeout=%ss)",
                     redact(' '.join(args), secret), timeout)

        with tempfile.TemporaryFile() as out, tempfile.TemporaryFile() as err:
            try:
                # own process group so a kill also reaches grandchildren
                proc = subprocess.Popen(args, shell=False, stdin=subprocess.DEVNULL,
                                        stdout=out, stderr=err, start_new_session=True)
            except FileNotFoundError:
                raise JobError(ErrorKind.UNKNOWN, f"Required tool is not installed: {tool}")

            deadline = time.monotonic() + timeout
            while True:
                try:
                    returncode = proc.wait(timeout=_POLL_INTERVAL)
                    break
                except subprocess.TimeoutExpired:
                    pass
                if _spooled_size(out, err) > max_output_bytes:
                    _kill_process_group(proc)
                    logger.warning("%s killed after exceeding %d bytes of output",
                                   tool, max_output_bytes)
                    raise JobError(ErrorKind.OUTPUT_TOO_LARGE,
                                   f"{tool} produced more than {max_output_bytes} bytes of output")
                if time.monotonic() >= deadline:
                    _kill_process_group(proc)
                    logger.warning("%s killed after %ss timeout", tool, timeout)
                    raise JobError(ErrorKind.TIMEOUT, f"{tool} timed out after {timeout:g}s")

            if _spooled_size(out, err) > max_output_bytes:
                raise JobError(ErrorKind.OUTPUT_TOO_LARGE,
                               f"{tool} produced more than {max_output_bytes} bytes of output")
            stdout = _read_spooled(out)
            stderr = _read_spooled(err)

        stdout_text = stdout.decode('utf-8', errors='replace')
        stderr_text = redact(stderr.decode('utf-8', errors='replace'), secret)

        if returncode != 0:
            raise ToolFailed(tool, returncode, stderr_text)

        return ToolOutput(stdout=stdout_text, stderr=stderr_text)
