"""
Audit event log store.

Records every audit attempt (start and completion) and answers range queries for the
statistics layer. Two backends sit behind one interface:

- FileEventStore (durable): one JSON Lines file per UTC day and category under LOG_DIR.
- MemoryEventStore (ephemeral): no file writes; queries see only this process's history.

Both mirror every audit event into a bounded in-memory buffer that serves "recent
activity" without touching the file system.

Writes never raise to the caller. A failed write is reported through the diagnostic
logger and returned as a failed LogResult.
"""
import logging
import re
import shutil
import threading
import time
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Union

from pydantic import BaseModel, ValidationError

from contract_auditor.core.config import Settings, EVENT_STORE_DURABLE, EVENT_STORE_EPHEMERAL
from contract_auditor.schemas.events import AuditEvent, ErrorEvent, EventCategory, EventType
from contract_auditor.schemas.findings import SeverityBreakdown
from contract_auditor.schemas.statistics import AuditStatistics
from contract_auditor.services.statistics_service import compute_event_statistics

logger = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 1000
DEFAULT_RETENTION_DAYS = 30
ARCHIVE_DIR_NAME = "archive"

_PARTITION_DATE_RE = re.compile(r"(\d{4}-\d{2}-\d{2})")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_event_id() -> str:
    """Unique id for event records: '<epoch-ms>-<random>'."""
    return f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def generate_request_id() -> str:
    """Correlation id shared by the start and complete events of one audit."""
    return f"req_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


@dataclass(frozen=True)
class LogResult:
    """
    Outcome of an event write.

    The event id is always set so callers can correlate the completion event even when
    the start event could not be persisted.
    """
    ok: bool
    event_id: str
    error: Optional[str] = None


class EventBuffer:
    """
    Bounded, thread-safe buffer of the most recent events.

    Appends and overflow eviction happen under one lock; readers get a snapshot copy.
    """

    def __init__(self, capacity: int = DEFAULT_BUFFER_SIZE):
        if capacity < 1:
            raise ValueError("Buffer capacity must be at least 1")
        self._capacity = capacity
        self._items = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._capacity

    def append(self, event: AuditEvent) -> None:
        with self._lock:
            self._items.append(event)

    def snapshot(self) -> List[AuditEvent]:
        """All buffered events, oldest first."""
        with self._lock:
            return list(self._items)

    def recent(self, limit: int) -> List[AuditEvent]:
        """Up to `limit` events, most recent first."""
        if limit <= 0:
            return []
        items = self.snapshot()
        return list(reversed(items[-limit:]))

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class EventStore(ABC):
    """
    Append-only audit event storage with a bounded in-memory mirror.

    Subclasses decide where events are persisted and where range queries are read from.
    """

    mode: str = ""

    def __init__(
        self,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._buffer = EventBuffer(buffer_size)
        self.retention_days = retention_days
        self._clock = clock

    @property
    def buffer(self) -> EventBuffer:
        return self._buffer

    def today(self) -> date:
        return self._clock().astimezone(timezone.utc).date()

    # Write side

    def append_start(
        self,
        user_email: str,
        contract_name: Optional[str],
        contract_size: int,
        request_id: str,
    ) -> LogResult:
        """Record the start of an audit. Never raises."""
        event = AuditEvent(
            id=generate_event_id(),
            timestamp=self._clock(),
            user_email=user_email,
            contract_name=contract_name,
            contract_size=contract_size,
            credits_consumed=0,
            request_id=request_id,
            type=EventType.AUDIT_START,
        )
        return self._record_audit_event(event)

    def append_complete(
        self,
        event_id: str,
        user_email: str,
        contract_name: Optional[str],
        contract_size: int,
        success: bool,
        audit_duration: Optional[int],
        vulnerabilities_found: Optional[int] = None,
        severity_breakdown: Optional[SeverityBreakdown] = None,
        error_message: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> LogResult:
        """
        Record the completion (successful or failed) of an audit. Never raises.

        A credit is consumed only on success.
        """
        event = AuditEvent(
            id=event_id,
            timestamp=self._clock(),
            user_email=user_email,
            contract_name=contract_name,
            contract_size=contract_size,
            credits_consumed=1 if success else 0,
            success=success,
            audit_duration=audit_duration,
            vulnerabilities_found=vulnerabilities_found,
            severity_breakdown=severity_breakdown,
            error_message=error_message,
            request_id=request_id,
            type=EventType.AUDIT_COMPLETE,
        )
        return self._record_audit_event(event)

    def log_error(
        self,
        error_type: str,
        error_message: str,
        user_email: Optional[str] = None,
        stack_trace: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> LogResult:
        """Record a diagnostic error event. Never raises."""
        event = ErrorEvent(
            id=generate_event_id(),
            timestamp=self._clock(),
            user_email=user_email,
            error_type=error_type,
            error_message=error_message,
            stack_trace=stack_trace,
            request_id=request_id,
        )
        try:
            self._persist(EventCategory.ERROR, event)
        except Exception as e:
            logger.error(f"Failed to write error event {event.id} ({error_type}): {e}")
            return LogResult(ok=False, event_id=event.id, error=str(e))
        return LogResult(ok=True, event_id=event.id)

    def _record_audit_event(self, event: AuditEvent) -> LogResult:
        self._buffer.append(event)
        try:
            self._persist(EventCategory.AUDIT, event)
        except Exception as e:
            logger.error(f"Failed to write {event.type.value} event {event.id}: {e}")
            logger.debug(f"Lost event: {event.model_dump_json()}")
            return LogResult(ok=False, event_id=event.id, error=str(e))
        return LogResult(ok=True, event_id=event.id)

    @abstractmethod
    def _persist(self, category: EventCategory, event: BaseModel) -> None:
        """Persist one event. May raise; callers translate failures into LogResult."""

    # Read side

    def query(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        user_email: Optional[str] = None,
    ) -> List[AuditEvent]:
        """Completion events in the range, optionally for one user, oldest first."""
        return [
            event
            for event in self._load(start_date, end_date)
            if event.is_completion and (not user_email or event.user_email == user_email)
        ]

    @abstractmethod
    def _load(self, start_date: Optional[date], end_date: Optional[date]) -> Iterator[AuditEvent]:
        """All audit events available for the range, oldest first."""

    def recent(self, limit: int = 50) -> List[AuditEvent]:
        """Most recent completion events from the in-memory buffer, newest first."""
        if limit <= 0:
            return []
        completed = [event for event in self._buffer.snapshot() if event.is_completion]
        return list(reversed(completed[-limit:]))

    def generate_statistics(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
    ) -> AuditStatistics:
        return compute_event_statistics(self.query(start_date, end_date))

    @property
    def is_partial(self) -> bool:
        """True when query results only reflect this process's lifetime."""
        return False

    # Retention

    def cleanup_old_logs(self, retention_days: Optional[int] = None) -> int:
        """Archive partitions older than the retention window. Returns files moved."""
        return 0


class MemoryEventStore(EventStore):
    """
    Ephemeral event store for serverless deployments.

    Nothing is written to disk. Range queries ignore the dates and read the buffer,
    so results cover only the current process.
    """

    mode = EVENT_STORE_EPHEMERAL

    def _persist(self, category: EventCategory, event: BaseModel) -> None:
        if category == EventCategory.ERROR:
            logger.warning(f"AUDIT_ERROR: {event.model_dump_json()}")
        else:
            logger.info(f"AUDIT_EVENT: {event.model_dump_json()}")

    def _load(self, start_date: Optional[date], end_date: Optional[date]) -> Iterator[AuditEvent]:
        return iter(self._buffer.snapshot())

    @property
    def is_partial(self) -> bool:
        return True


class FileEventStore(EventStore):
    """
    Durable event store writing JSON Lines partitions.

    Files are named '<category>-<YYYY-MM-DD>.jsonl'. Appends to one file are serialized;
    different files are written independently.
    """

    mode = EVENT_STORE_DURABLE

    def __init__(
        self,
        log_dir: Union[str, Path],
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        retention_days: int = DEFAULT_RETENTION_DAYS,
        clock: Callable[[], datetime] = utcnow,
    ):
        super().__init__(buffer_size=buffer_size, retention_days=retention_days, clock=clock)
        self.log_dir = Path(log_dir)
        self.archive_dir = self.log_dir / ARCHIVE_DIR_NAME
        self._file_locks: Dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._dirs_ready = False

    def partition_path(self, category: EventCategory, day: date) -> Path:
        return self.log_dir / f"{category.value}-{day.isoformat()}.jsonl"

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._locks_guard:
            lock = self._file_locks.get(path)
            if lock is None:
                lock = threading.Lock()
                self._file_locks[path] = lock
            return lock

    def _ensure_directories(self) -> None:
        if self._dirs_ready:
            return
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.archive_dir.mkdir(parents=True, exist_ok=True)
        self._dirs_ready = True

    def _persist(self, category: EventCategory, event: BaseModel) -> None:
        self._ensure_directories()
        day = event.timestamp.astimezone(timezone.utc).date()
        path = self.partition_path(category, day)
        line = event.model_dump_json(exclude_none=True) + "\n"
        with self._lock_for(path):
            with open(path, "a", encoding="utf-8") as fh:
                fh.write(line)

    def _read_partition(self, path: Path) -> List[AuditEvent]:
        if not path.exists():
            return []

        events = []
        try:
            with self._lock_for(path):
                with open(path, "rb") as fh:
                    lines = fh.readlines()
        except OSError as e:
            logger.warning(f"Could not read event file {path}: {e}")
            return []

        for line_no, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                events.append(AuditEvent.model_validate_json(line.decode("utf-8")))
            except (UnicodeDecodeError, ValidationError):
                logger.warning(f"Skipping malformed event record at {path.name}:{line_no}")
        return events

    def _load(self, start_date: Optional[date], end_date: Optional[date]) -> Iterator[AuditEvent]:
        start = start_date or self.today()
        end = end_date or self.today()
        day = start
        while day <= end:
            yield from self._read_partition(self.partition_path(EventCategory.AUDIT, day))
            day += timedelta(days=1)

    def cleanup_old_logs(self, retention_days: Optional[int] = None) -> int:
        """
        Move daily files older than the retention window into the archive directory.

        Failures are logged, never raised.
        """
        retention = retention_days if retention_days is not None else self.retention_days
        cutoff = self.today() - timedelta(days=retention)
        archived = 0

        try:
            if not self.log_dir.exists():
                return 0
            self.archive_dir.mkdir(parents=True, exist_ok=True)
            for path in sorted(self.log_dir.glob("*.jsonl")):
                match = _PARTITION_DATE_RE.search(path.name)
                if not match:
                    continue
                try:
                    file_date = date.fromisoformat(match.group(1))
                except ValueError:
                    continue
                if file_date < cutoff:
                    with self._lock_for(path):
                        shutil.move(str(path), str(self.archive_dir / path.name))
                    archived += 1
        except OSError as e:
            logger.error(f"Failed to clean up old event logs: {e}", exc_info=True)

        if archived:
            logger.info(f"Archived {archived} event log file(s) older than {retention} days")
        return archived


def create_event_store(settings: Settings) -> EventStore:
    """Build the process-wide event store for the configured deployment mode."""
    if settings.event_store_mode == EVENT_STORE_EPHEMERAL:
        logger.info(f"Event store: ephemeral (in-memory, capacity={settings.EVENT_BUFFER_SIZE})")
        return MemoryEventStore(
            buffer_size=settings.EVENT_BUFFER_SIZE,
            retention_days=settings.LOG_RETENTION_DAYS,
        )

    logger.info(f"Event store: durable (dir={settings.LOG_DIR}, capacity={settings.EVENT_BUFFER_SIZE})")
    return FileEventStore(
        log_dir=settings.LOG_DIR,
        buffer_size=settings.EVENT_BUFFER_SIZE,
        retention_days=settings.LOG_RETENTION_DAYS,
    )
