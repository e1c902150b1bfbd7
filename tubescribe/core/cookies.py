"""
Cookie-jar health tracking.

The jar is exported from a logged-in browser session by an external process
and dropped at a fixed path. This module only observes it: presence, age and
a structural entry count. Absence is a normal condition, not an error.
"""

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from tubescribe.core.constants import (
    CredentialStatus, DEFAULT_COOKIES_PATH,
    COOKIES_MIN_ENTRIES, COOKIES_STALE_HOURS, COOKIES_CRITICAL_HOURS,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CredentialSnapshot:
    present: bool
    age_hours: Optional[float]
    entry_count: int
    status: str
    warning: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "present": self.present,
            "age_hours": None if self.age_hours is None else round(self.age_hours, 2),
            "entry_count": self.entry_count,
            "status": self.status,
            "warning": self.warning,
        }


def count_cookie_entries(content: str) -> int:
    """Count non-empty, non-comment, tab-delimited lines."""
    count = 0
    for line in content.splitlines():
        if not line.strip() or line.startswith('#'):
            continue
        if '\t' in line:
            count += 1
    return count


def classify_snapshot(age_hours: float, entry_count: int) -> str:
    """Status for a jar that exists and was readable."""
    if entry_count < COOKIES_MIN_ENTRIES:
        return CredentialStatus.INVALID
    if age_hours >= COOKIES_CRITICAL_HOURS:
        return CredentialStatus.CRITICAL
    if age_hours > COOKIES_STALE_HOURS:
        return CredentialStatus.STALE
    return CredentialStatus.FRESH


class CredentialStore:
    """Read-only view over the cookie jar file."""

    def __init__(self, path: Path | None = None,
                 clock: Callable[[], float] = time.time):
        self.path = Path(path) if path else DEFAULT_COOKIES_PATH
        self._clock = clock

    def snapshot(self) -> CredentialSnapshot:
        if not self.path.exists():
            return CredentialSnapshot(
                present=False, age_hours=None, entry_count=0,
                status=CredentialStatus.MISSING,
                warning="Cookie jar not found; running without authentication",
            )

        try:
            mtime = self.path.stat().st_mtime
            content = self.path.read_text(encoding='utf-8', errors='replace')
        except OSError as e:
            logger.error("Failed to read cookie jar: %s", type(e).__name__)
            return CredentialSnapshot(
                present=True, age_hours=None, entry_count=0,
                status=CredentialStatus.ERROR,
                warning=f"Failed to read cookie jar ({type(e).__name__})",
            )

        age_hours = max(0.0, (self._clock() - mtime) / 3600.0)
        entry_count = count_cookie_entries(content)
        status = classify_snapshot(age_hours, entry_count)

        warning = None
        if status == CredentialStatus.INVALID:
            warning = (f"Cookie jar has only {entry_count} entries "
                       f"(need at least {COOKIES_MIN_ENTRIES})")
        elif status == CredentialStatus.CRITICAL:
            warning = f"Cookies are {age_hours:.0f}h old; likely expired"
        elif status == CredentialStatus.STALE:
            warning = f"Cookies are {age_hours:.0f}h old; refresh soon"

        return CredentialSnapshot(
            present=True, age_hours=age_hours, entry_count=entry_count,
            status=status, warning=warning,
        )

    def health(self) -> dict:
        """Snapshot plus thresholds, for a diagnostics endpoint."""
        info = self.snapshot().to_dict()
        info.update({
            "min_entries": COOKIES_MIN_ENTRIES,
            "stale_hours": COOKIES_STALE_HOURS,
            "critical_hours": COOKIES_CRITICAL_HOURS,
        })
        return info
