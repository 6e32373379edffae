"""iCloud sync detection for the Notes database.

Notes.app keeps its data in ``NoteStore.sqlite``. Two signals there indicate
that iCloud is mutating notes in the background:

1. Rows in ``ZICCLOUDSTATE`` whose local version is ahead of the last version
   synced to the cloud (pending uploads).
2. A recently modified write-ahead log (``NoteStore.sqlite-wal``).

The monitor caches its reading for a short TTL so that rapid successive
operations do not hammer the database, and can bracket an operation with a
before/after reading to flag results that may have been affected by sync.
"""

import asyncio
import inspect
import logging
import math
import sqlite3
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Generic, List, Optional, TypeVar, Union

from notes_automation.config.config_loader import DEFAULT_DATABASE_PATH, AutomationConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_CACHE_TTL_MS = 2000
DEFAULT_RECENT_ACTIVITY_THRESHOLD_SECONDS = 5.0
DEFAULT_VERIFICATION_DELAY_MS = 500
QUERY_TIMEOUT_SECONDS = 5.0

DATABASE_NOT_FOUND = "Notes database not found"

PENDING_UPLOAD_QUERY = (
    "SELECT COUNT(*) FROM ZICCLOUDSTATE "
    "WHERE ZCURRENTLOCALVERSION > ZLATESTVERSIONSYNCEDTOCLOUD "
    "AND ZLATESTVERSIONSYNCEDTOCLOUD IS NOT NULL"
)


@dataclass(frozen=True)
class SyncStatus:
    """Snapshot of background sync activity.

    Attributes:
        activity_detected: Pending uploads exist or the database changed recently
        pending_count: Number of items waiting to be uploaded
        seconds_since_last_change: Age of the last database write (inf if unknown)
        recent_activity: Whether the last write is younger than the threshold
        warning: Human-readable description when activity is detected
        probe_error: Why the probe could not complete, if it failed
    """

    activity_detected: bool = False
    pending_count: int = 0
    seconds_since_last_change: float = math.inf
    recent_activity: bool = False
    warning: Optional[str] = None
    probe_error: Optional[str] = None


@dataclass
class BracketResult(Generic[T]):
    """Result of an operation run between two sync readings."""

    result: T
    before: SyncStatus
    after: SyncStatus
    interference: bool
    note: Optional[str] = None


class SyncMonitor:
    """Reads and caches iCloud sync activity for Notes.app."""

    def __init__(
        self,
        database_path: Union[str, Path] = DEFAULT_DATABASE_PATH,
        cache_ttl_ms: int = DEFAULT_CACHE_TTL_MS,
        recent_activity_threshold_seconds: float = DEFAULT_RECENT_ACTIVITY_THRESHOLD_SECONDS,
        verification_delay_ms: int = DEFAULT_VERIFICATION_DELAY_MS,
        clock: Callable[[], float] = time.monotonic,
        wall_clock: Callable[[], float] = time.time,
    ) -> None:
        """Initialize the monitor.

        Args:
            database_path: Path to NoteStore.sqlite
            cache_ttl_ms: How long a reading is served from cache
            recent_activity_threshold_seconds: Write age below which activity is "recent"
            verification_delay_ms: Settle time before the after-reading in bracket_async
            clock: Monotonic clock for cache ageing, in seconds
            wall_clock: Wall clock compared against file modification times
        """
        self.database_path = Path(database_path).expanduser()
        self.cache_ttl_ms = cache_ttl_ms
        self.recent_activity_threshold_seconds = recent_activity_threshold_seconds
        self.verification_delay_ms = verification_delay_ms
        self._clock = clock
        self._wall_clock = wall_clock
        self._lock = threading.Lock()
        self._cached_status: Optional[SyncStatus] = None
        self._cache_timestamp = 0.0

    @classmethod
    def from_config(cls, config: AutomationConfig) -> "SyncMonitor":
        """Create a monitor from loaded configuration."""
        return cls(
            database_path=config.database_path,
            cache_ttl_ms=config.sync_cache_ttl_ms,
            recent_activity_threshold_seconds=config.recent_activity_threshold_seconds,
            verification_delay_ms=config.verification_delay_ms,
        )

    @property
    def wal_path(self) -> Path:
        return self.database_path.with_name(self.database_path.name + "-wal")

    def clear(self) -> None:
        """Drop the cached reading so the next call probes again."""
        with self._lock:
            self._cached_status = None
            self._cache_timestamp = 0.0

    def get_status(self, use_cache: bool = True) -> SyncStatus:
        """Get the current sync status.

        Args:
            use_cache: Serve a reading younger than the TTL without probing

        Returns:
            SyncStatus; probe failures are reported in ``probe_error``
        """
        if use_cache:
            cached = self._get_cached()
            if cached is not None:
                return cached

        status = self._probe()

        with self._lock:
            self._cached_status = status
            self._cache_timestamp = self._clock()
        return status

    def is_active(self) -> bool:
        """Whether sync activity is currently detected."""
        return self.get_status().activity_detected

    def summary(self) -> str:
        """One-line summary of the current sync state."""
        status = self.get_status()

        if status.probe_error:
            return f"Sync status unknown: {status.probe_error}"

        if not status.activity_detected:
            return "iCloud sync: Idle"

        parts = ["iCloud sync: Active"]
        if status.pending_count > 0:
            parts.append(f"{status.pending_count} pending upload(s)")
        if status.recent_activity:
            parts.append(f"last activity {status.seconds_since_last_change}s ago")
        return " - ".join(parts)

    def log_warning(self, status: SyncStatus, label: str) -> None:
        """Log the status warning, if any, for an operation.

        Args:
            status: Reading to report
            label: Name of the operation being performed
        """
        if status.warning:
            logger.warning(f"⚠️  [Sync Warning] {label}: {status.warning}")

    def bracket(self, label: str, op: Callable[[], T]) -> BracketResult[T]:
        """Run an operation between a cached and a fresh sync reading.

        Args:
            label: Name of the operation (for logging)
            op: The operation to execute

        Returns:
            BracketResult with the operation result and both readings
        """
        before = self._read_before(label)
        result = op()
        after = self.get_status(use_cache=False)
        return self._build_bracket_result(label, result, before, after)

    async def bracket_async(
        self, label: str, op: Callable[[], Union[Awaitable[T], T]]
    ) -> BracketResult[T]:
        """Awaitable variant of :meth:`bracket`.

        ``op`` may return an awaitable or a plain value. The after-reading is
        taken once ``verification_delay_ms`` has passed so that sync activity
        triggered by the operation has a chance to show up.

        Args:
            label: Name of the operation (for logging)
            op: The operation to execute

        Returns:
            BracketResult with the operation result and both readings
        """
        before = self._read_before(label)
        result = op()
        if inspect.isawaitable(result):
            result = await result
        if self.verification_delay_ms > 0:
            await asyncio.sleep(self.verification_delay_ms / 1000)
        after = self.get_status(use_cache=False)
        return self._build_bracket_result(label, result, before, after)

    def _read_before(self, label: str) -> SyncStatus:
        before = self.get_status()
        if before.activity_detected:
            self.log_warning(before, label)
        return before

    def _build_bracket_result(
        self, label: str, result: Any, before: SyncStatus, after: SyncStatus
    ) -> BracketResult:
        pending_changed = before.pending_count != after.pending_count
        interference = (before.activity_detected and pending_changed) or (
            before.recent_activity and after.recent_activity
        )

        note = None
        if interference:
            note = (
                f'iCloud sync activity detected during "{label}". '
                f"Pending items: {before.pending_count} → {after.pending_count}. "
                "Results may have been affected by sync."
            )
            logger.warning(f"⚠️  [Sync Interference] {note}")

        return BracketResult(
            result=result,
            before=before,
            after=after,
            interference=interference,
            note=note,
        )

    def _get_cached(self) -> Optional[SyncStatus]:
        with self._lock:
            if self._cached_status is None:
                return None
            age_ms = (self._clock() - self._cache_timestamp) * 1000
            if age_ms < self.cache_ttl_ms:
                return self._cached_status
            return None

    def _probe(self) -> SyncStatus:
        """Query the database for sync signals.

        Returns:
            Fresh SyncStatus
        """
        seconds_since_last_change = math.inf
        recent_activity = False

        try:
            if not self.database_path.exists():
                return SyncStatus(probe_error=DATABASE_NOT_FOUND)

            seconds_ago = self._read_seconds_since_last_change()
            if seconds_ago is not None:
                seconds_since_last_change = round(seconds_ago, 1)
                recent_activity = seconds_ago < self.recent_activity_threshold_seconds

            pending_count = self._query_pending_count()
        except (OSError, sqlite3.Error) as e:
            logger.debug(f"Sync probe failed: {e}")
            return SyncStatus(
                seconds_since_last_change=seconds_since_last_change,
                recent_activity=recent_activity,
                probe_error=str(e) or "Failed to check sync status",
            )

        activity_detected = pending_count > 0 or recent_activity
        return SyncStatus(
            activity_detected=activity_detected,
            pending_count=pending_count,
            seconds_since_last_change=seconds_since_last_change,
            recent_activity=recent_activity,
            warning=self._compose_warning(
                activity_detected, pending_count, recent_activity, seconds_since_last_change
            ),
        )

    def _read_seconds_since_last_change(self) -> Optional[float]:
        """Age of the write-ahead log in seconds, or None if there is none."""
        if not self.wal_path.exists():
            return None
        modified_at = self.wal_path.stat().st_mtime
        return max(0.0, self._wall_clock() - modified_at)

    def _query_pending_count(self) -> int:
        """Count items waiting for upload using a read-only connection."""
        uri = f"{self.database_path.absolute().as_uri()}?mode=ro"
        connection = sqlite3.connect(uri, uri=True, timeout=QUERY_TIMEOUT_SECONDS)
        try:
            row = connection.execute(PENDING_UPLOAD_QUERY).fetchone()
        finally:
            connection.close()
        return int(row[0]) if row and row[0] else 0

    def _compose_warning(
        self,
        activity_detected: bool,
        pending_count: int,
        recent_activity: bool,
        seconds_since_last_change: float,
    ) -> Optional[str]:
        if not activity_detected:
            return None

        reasons: List[str] = []
        if pending_count > 0:
            reasons.append(f"{pending_count} item(s) pending upload")
        if recent_activity:
            reasons.append(f"database modified {seconds_since_last_change}s ago")
        return (
            f"iCloud sync in progress: {', '.join(reasons)}. "
            "Results may be incomplete or change shortly."
        )
