"""
Query/mutation facade for the run record store.

RecordStore is the single API surface callers use: create-or-append, replace,
lookup, list, delete, stats and manual cleanup. It validates input before any
storage access and owns the retention timer for its table.
"""

import json
import uuid
from typing import Any, Callable, Optional, Tuple, Union
from datetime import datetime

from util.logging import logger

from .config import StoreConfig, validate_config
from .db import RecordTable
from .errors import ConstraintViolation, InvalidInput
from .retention import RetentionScheduler, run_cleanup
from .schema import (
    CleanupReport,
    ListFilters,
    PaginatedResult,
    Record,
    StoreStats,
    parse_time_filter,
    utc_now,
)


def unwrap_context(payload: Any) -> Any:
    """Keep only the `context` field of an object payload; anything else passes through."""
    if isinstance(payload, dict) and "context" in payload:
        return payload["context"]
    return payload


def _require_run_key(run_key: Any) -> str:
    if not isinstance(run_key, str) or not run_key.strip():
        raise InvalidInput("run_key is required and must be a non-empty string")
    return run_key


def _require_serializable(payload: Any):
    try:
        json.dumps(payload, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise InvalidInput(f"payload is not JSON-serializable: {e}") from e


class RecordStore:
    """Record store handle shared by request handlers and the retention timer."""

    def __init__(self, config: StoreConfig, table: Optional[RecordTable] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.config = config
        self.table = table or RecordTable(config.db_path)
        self.clock = clock or utc_now
        self.scheduler: Optional[RetentionScheduler] = None
        self.last_report: Optional[CleanupReport] = None
        self._closed = False

    # Lifecycle

    def open(self, start_timer: bool = True) -> "RecordStore":
        """Ensure the schema, clear any retention backlog, then start the timer."""
        issues = validate_config(self.config)
        if issues:
            raise InvalidInput(f"Store configuration invalid: {issues}")

        self.table.init_schema()
        self.run_cleanup_now(trigger="startup")

        if start_timer:
            self.scheduler = RetentionScheduler(
                lambda: self.run_cleanup_now(trigger="timer"),
                self.config.cleanup_interval_sec,
            )
            self.scheduler.start()
        return self

    def shutdown(self):
        """Stop the retention timer, then close the table. Idempotent."""
        if self._closed:
            return
        self._closed = True

        # The timer must be gone before the table closes
        if self.scheduler is not None:
            self.scheduler.stop()
            self.scheduler = None
        self.table.close()
        logger.info(f"Record store at {self.config.db_path} shut down")

    @property
    def closed(self) -> bool:
        return self._closed

    # Mutations

    def create_or_append(self, run_key: str, payload: Any) -> Tuple[Optional[Record], bool]:
        """
        Append a payload under run_key, creating the record on first use.

        Object payloads carrying a `context` field are reduced to that field's
        value before storage. The stored payload is a list of submissions in
        order. Returns the re-read record and whether it was newly created.

        The append itself reads and rewrites the payload in one transaction,
        so overlapping appends to the same run_key all land. If the record is
        deleted between the existence check and the append (a retention sweep
        racing this call), nothing is written and (None, False) is returned.
        """
        _require_run_key(run_key)
        element = unwrap_context(payload)
        _require_serializable(element)

        existing = self.table.get_by_key(run_key)
        now = self.clock()

        if existing is None:
            record = Record(
                id=str(uuid.uuid4()),
                run_key=run_key,
                payload=[element],
                created_at=now,
                updated_at=now,
            )
            try:
                self.table.insert(record)
            except ConstraintViolation:
                # Another caller created run_key first; append to theirs
                if self.table.get_by_key(run_key) is None:
                    raise
            else:
                logger.log_record_operation("create", run_key, element)
                return self.table.get_by_id(record.id), True

        updated = self.table.append(run_key, element, now)
        if updated is None:
            logger.log_record_operation("append", run_key, status="vanished")
            return None, False

        logger.log_record_operation("append", run_key, element)
        return updated, False

    def replace(self, run_key: str, payload: Any) -> Optional[Record]:
        """Overwrite the stored payload wholesale. Returns None when run_key is unknown."""
        _require_run_key(run_key)
        _require_serializable(payload)

        if not self.table.update_payload(run_key, payload, self.clock()):
            return None

        logger.log_record_operation("replace", run_key, payload)
        return self.table.get_by_key(run_key)

    def remove(self, run_key: str) -> bool:
        _require_run_key(run_key)
        deleted = self.table.delete(run_key)
        if deleted:
            logger.log_record_operation("delete", run_key)
        return deleted

    # Queries

    def get(self, run_key: str) -> Optional[Record]:
        _require_run_key(run_key)
        return self.table.get_by_key(run_key)

    def list(self, run_key: Optional[str] = None,
             start: Union[str, datetime, None] = None,
             end: Union[str, datetime, None] = None,
             limit: Optional[int] = None,
             offset: Optional[int] = None) -> PaginatedResult:
        """List records newest first. Filters are combined with AND."""
        filters = ListFilters(
            run_key=run_key or None,
            start=parse_time_filter(start),
            end=parse_time_filter(end),
        )

        if not limit or limit <= 0:
            limit = self.config.default_limit
        limit = min(limit, self.config.max_limit)
        offset = max(offset or 0, 0)

        rows, total = self.table.list(filters, limit, offset)
        return PaginatedResult(data=rows, total=total, limit=limit, offset=offset)

    def stats(self) -> StoreStats:
        return StoreStats(
            total_records=self.table.count(),
            oldest_record=self.table.oldest_created_at(),
            newest_record=self.table.newest_created_at(),
        )

    # Retention

    def run_cleanup_now(self, trigger: str = "manual") -> CleanupReport:
        """Run one retention pass against the current clock and log the outcome."""
        report = run_cleanup(
            self.table,
            max_age_minutes=self.config.max_age_minutes,
            max_records=self.config.max_records,
            now=self.clock(),
        )
        logger.log_cleanup(report, trigger)
        self.last_report = report
        return report

    def health_check(self) -> bool:
        return not self._closed and self.table.health_check()


def init_store(config: StoreConfig, clock: Optional[Callable[[], datetime]] = None,
               start_timer: bool = True) -> RecordStore:
    """Open a record store: create storage, run one retention pass, start the timer."""
    store = RecordStore(config, clock=clock)
    try:
        return store.open(start_timer=start_timer)
    except Exception:
        store.shutdown()
        raise


def shutdown_store(store: Optional[RecordStore]):
    """Stop the store's timer and close its storage. Safe to call more than once."""
    if store is not None:
        store.shutdown()
