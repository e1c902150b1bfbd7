"""
Standardised error handling for tubescribe.

Every failure that can end a job attempt is a JobError carrying one kind
from the closed ErrorKind set. `message` is safe to show to API callers;
`detail` holds technical text (stderr excerpts) and only ever goes to logs.
"""


class ErrorKind:
    # Non-retryable
    INVALID_INPUT = "INVALID_INPUT"
    OUTPUT_TOO_LARGE = "OUTPUT_TOO_LARGE"
    NOT_FOUND = "NOT_FOUND"
    TIER_UNAVAILABLE = "TIER_UNAVAILABLE"
    JOB_STALLED = "JOB_STALLED"

    # Retry treatment depends on the pipeline step that raised them
    PLATFORM_BLOCKED = "PLATFORM_BLOCKED"
    SESSION_EXPIRED = "SESSION_EXPIRED"

    # Retryable
    TIMEOUT = "TIMEOUT"
    METADATA_UNAVAILABLE = "METADATA_UNAVAILABLE"
    STORAGE_WRITE_FAILED = "STORAGE_WRITE_FAILED"
    UNKNOWN = "UNKNOWN"


ALL_KINDS = frozenset({
    ErrorKind.INVALID_INPUT,
    ErrorKind.OUTPUT_TOO_LARGE,
    ErrorKind.NOT_FOUND,
    ErrorKind.TIER_UNAVAILABLE,
    ErrorKind.JOB_STALLED,
    ErrorKind.PLATFORM_BLOCKED,
    ErrorKind.SESSION_EXPIRED,
    ErrorKind.TIMEOUT,
    ErrorKind.METADATA_UNAVAILABLE,
    ErrorKind.STORAGE_WRITE_FAILED,
    ErrorKind.UNKNOWN,
})

RETRYABLE_KINDS = frozenset({
    ErrorKind.PLATFORM_BLOCKED,
    ErrorKind.SESSION_EXPIRED,
    ErrorKind.TIMEOUT,
    ErrorKind.METADATA_UNAVAILABLE,
    ErrorKind.STORAGE_WRITE_FAILED,
    ErrorKind.UNKNOWN,
})


class JobError(Exception):
    """Raised when a job attempt hits a known error condition."""

    def __init__(self, kind: str, message: str, detail: str | None = None,
                 retryable: bool | None = None):
        if kind not in ALL_KINDS:
            raise ValueError(f"Unknown error kind: {kind}")
        self.kind = kind
        self.message = message
        self.detail = detail
        # auto-detect retryable from kind if not explicitly set
        self.retryable = retryable if retryable is not None else (kind in RETRYABLE_KINDS)
        super().__init__(f"[{kind}] {message}")


class ToolFailed(JobError):
    """An external tool exited non-zero. stderr is kept for classification."""

    def __init__(self, tool: str, returncode: int, stderr: str):
        self.tool = tool
        self.returncode = returncode
        self.stderr = stderr
        super().__init__(
            ErrorKind.UNKNOWN,
            f"{tool} exited with status {returncode}",
            detail=stderr[-2000:],
        )


def is_retryable(kind: str) -> bool:
    return kind in RETRYABLE_KINDS
