"""
Typed results for the run record store.
Records, list filters, paginated results, cleanup reports and stats.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from .errors import InvalidInput

TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def to_timestamp(value: datetime) -> str:
    """Render a datetime in the fixed-width UTC form stored in the database.

    Naive datetimes are taken to be UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def from_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into an aware UTC datetime."""
    return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)


def parse_time_filter(value: Union[str, datetime, None]) -> Optional[str]:
    """Normalize a caller-supplied time bound to the stored timestamp form."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_timestamp(value)
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"Invalid time filter: {value!r}")
    try:
        parsed = datetime.fromisoformat(value.strip().replace('Z', '+00:00'))
    except ValueError:
        raise InvalidInput(f"Invalid ISO-8601 timestamp: {value!r}")
    return to_timestamp(parsed)


@dataclass
class Record:
    id: str
    run_key: str
    payload: Any
    created_at: datetime
    updated_at: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "run_key": self.run_key,
            "payload": self.payload,
            "created_at": to_timestamp(self.created_at),
            "updated_at": to_timestamp(self.updated_at),
        }


@dataclass
class ListFilters:
    """Conjunctive filters for listing records. Bounds are inclusive."""
    run_key: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None


@dataclass
class PaginatedResult:
    data: List[Record]
    total: int
    limit: int
    offset: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "data": [record.to_dict() for record in self.data],
            "total": self.total,
            "limit": self.limit,
            "offset": self.offset,
        }


@dataclass
class CleanupReport:
    """Outcome of one retention pass."""
    deleted_by_age: int = 0
    deleted_by_count: int = 0
    remaining_records: int = 0
    started_at: datetime = field(default_factory=utc_now)

    @property
    def total_deleted(self) -> int:
        return self.deleted_by_age + self.deleted_by_count

    def to_dict(self) -> Dict[str, Any]:
        """Convert report to dictionary for serialization."""
        return {
            "deletedByAge": self.deleted_by_age,
            "deletedByCount": self.deleted_by_count,
            "totalDeleted": self.total_deleted,
            "remainingRecords": self.remaining_records,
        }


@dataclass
class StoreStats:
    total_records: int
    oldest_record: Optional[datetime] = None
    newest_record: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalRecords": self.total_records,
            "oldestRecord": to_timestamp(self.oldest_record) if self.oldest_record else None,
            "newestRecord": to_timestamp(self.newest_record) if self.newest_record else None,
        }
