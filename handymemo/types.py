"""
Data types for memo indexing.

Memo identifiers are the local wall-clock creation time formatted as
``yyyyMMddHHmmss``. The identifier is also the file's base name, so the
creation time is always re-derived from the name rather than stored with
a zone offset.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone, tzinfo
from enum import Enum
from pathlib import Path
from typing import Optional


MEMO_ID_FORMAT = "%Y%m%d%H%M%S"
MEMO_EXTENSION = ".md"
MEMOS_DIR = "memos"
IMAGES_DIR = "images"
VIDEOS_DIR = "videos"

# Exactly 14 digits; strptime alone would accept unpadded fields
_MEMO_ID_RE = re.compile(r"^\d{14}$")


def localize(naive: datetime, zone: Optional[tzinfo] = None) -> datetime:
    """Attach a zone to a naive wall-clock time.

    Without ``zone`` the system's local rules apply (DST included).
    """
    if zone is None:
        return naive.astimezone()
    return naive.replace(tzinfo=zone)


def format_memo_id(dt: datetime) -> str:
    """Format a timestamp as a memo identifier (wall-clock digits only)."""
    return (
        f"{dt.year:04d}{dt.month:02d}{dt.day:02d}"
        f"{dt.hour:02d}{dt.minute:02d}{dt.second:02d}"
    )


def parse_memo_id(memo_id: str, zone: Optional[tzinfo] = None) -> datetime:
    """Parse a memo identifier into an aware datetime.

    The digits are interpreted as local time in ``zone`` (default: the
    current device zone).

    Raises:
        ValueError: If the identifier is not 14 digits forming a valid time
    """
    if not _MEMO_ID_RE.match(memo_id):
        raise ValueError(f"Not a memo timestamp: {memo_id!r}")
    naive = datetime.strptime(memo_id, MEMO_ID_FORMAT)
    return localize(naive, zone)


def to_epoch_ms(dt: datetime) -> int:
    """Milliseconds since the epoch for an aware datetime."""
    return round(dt.timestamp() * 1000)


def from_epoch_ms(ms: int, zone: Optional[tzinfo] = None) -> datetime:
    dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
    return dt.astimezone(zone) if zone is not None else dt.astimezone()


# -----------------------------------------------------------------------------
# Tree and attachment types
# -----------------------------------------------------------------------------

@dataclass(frozen=True)
class TreeNode:
    """
    A location inside the user-granted document tree.

    ``location`` is opaque to callers; two nodes with the same location
    refer to the same file or directory.
    """
    location: str
    name: str
    is_file: bool = False
    is_dir: bool = False


@dataclass
class AttachmentDescriptor:
    """A media reference resolved against the tree."""
    location: TreeNode
    is_video: bool
    thumbnail: Optional[Path] = None


# -----------------------------------------------------------------------------
# Memo records
# -----------------------------------------------------------------------------

@dataclass
class MemoRecord:
    """
    A fully parsed memo.

    Built on every read and never persisted; the cache keeps only
    MemoCacheEntry.
    """
    id: str
    time: datetime
    tags: list[str] = field(default_factory=list)
    body_text: str = ""
    attachments: list[AttachmentDescriptor] = field(default_factory=list)


@dataclass(frozen=True)
class MemoCacheEntry:
    """Persisted index row for one memo file."""
    path: str
    display_name: str
    created_at_ms: int
    full_text: str

    def to_list_item(self) -> "MemoListItem":
        return MemoListItem(self.path, self.display_name, self.created_at_ms)


@dataclass(frozen=True)
class MemoListItem:
    """Lightweight projection used by list views (no full text)."""
    path: str
    display_name: str
    created_at_ms: int

    def to_dict(self) -> dict:
        return {
            "path": self.path,
            "display_name": self.display_name,
            "created_at_ms": self.created_at_ms,
        }


# -----------------------------------------------------------------------------
# Year/month filter value
# -----------------------------------------------------------------------------

@dataclass(frozen=True, order=True)
class YearMonth:
    """A calendar month, used to bound month-filtered queries."""
    year: int
    month: int

    def __post_init__(self):
        if self.year < 1:
            raise ValueError("Year must be positive")
        if not 1 <= self.month <= 12:
            raise ValueError("Month must be between 1 and 12")

    def to_next_month(self) -> "YearMonth":
        if self.month == 12:
            return YearMonth(self.year + 1, 1)
        return YearMonth(self.year, self.month + 1)

    def to_previous_month(self) -> "YearMonth":
        if self.month == 1:
            return YearMonth(self.year - 1, 12)
        return YearMonth(self.year, self.month - 1)

    def start_timestamp(self, zone: Optional[tzinfo] = None) -> int:
        """First millisecond of the month in ``zone``."""
        start = localize(datetime(self.year, self.month, 1), zone)
        return to_epoch_ms(start)

    def end_timestamp(self, zone: Optional[tzinfo] = None) -> int:
        """First millisecond of the following month (exclusive bound)."""
        return self.to_next_month().start_timestamp(zone)

    def is_after(self, other: "YearMonth") -> bool:
        return (self.year, self.month) > (other.year, other.month)

    def is_before(self, other: "YearMonth") -> bool:
        return (self.year, self.month) < (other.year, other.month)

    def is_same(self, other: "YearMonth") -> bool:
        return self.year == other.year and self.month == other.month

    @classmethod
    def from_current(cls, zone: Optional[tzinfo] = None) -> "YearMonth":
        now = datetime.now(zone) if zone is not None else datetime.now()
        return cls(now.year, now.month)

    @classmethod
    def from_timestamp(cls, ms: int, zone: Optional[tzinfo] = None) -> "YearMonth":
        dt = from_epoch_ms(ms, zone)
        return cls(dt.year, dt.month)

    @classmethod
    def parse(cls, value: str) -> "YearMonth":
        """Parse ``YYYY-MM`` (also accepts ``YYYY/MM``)."""
        match = re.match(r"^\s*(\d{1,4})[-/](\d{1,2})\s*$", value)
        if not match:
            raise ValueError(f"Invalid month: {value!r}. Use YYYY-MM")
        return cls(int(match.group(1)), int(match.group(2)))

    def __str__(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"


# -----------------------------------------------------------------------------
# Indexing outcomes
# -----------------------------------------------------------------------------

class IndexingStatus(str, Enum):
    """Indexing state as shown to the user."""
    IDLE = "idle"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class Outcome(str, Enum):
    SUCCESS = "success"
    RETRY = "retry"
    FAILURE = "failure"


@dataclass
class IndexResult:
    """Result of one indexing pass."""
    outcome: Outcome
    indexed_count: int = 0
    error_count: int = 0
    errors: list[str] = field(default_factory=list)
    message: Optional[str] = None
    skipped: bool = False

    @classmethod
    def noop(cls) -> "IndexResult":
        return cls(Outcome.SUCCESS, skipped=True)

    @property
    def succeeded(self) -> bool:
        return self.outcome is Outcome.SUCCESS

    def to_dict(self) -> dict:
        d = {
            "outcome": self.outcome.value,
            "indexed_count": self.indexed_count,
            "error_count": self.error_count,
            "skipped": self.skipped,
        }
        if self.message:
            d["message"] = self.message
        return d
