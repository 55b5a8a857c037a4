"""
Memo cache using SQLite.

The cache is a derived index of the memo tree: one row per memo file,
keyed by the file's tree location. It exists so that lists and searches
never have to walk the tree. The tree stays the source of truth; the whole
table can be dropped and rebuilt by an indexing pass at any time.

Writes are either a full replace (indexing pass) or a single insert
(memo created interactively). A full replace runs in one IMMEDIATE
transaction, so readers on this connection or any other see either the
old snapshot or the new one, never a mix.
"""

import logging
import sqlite3
import threading
from pathlib import Path
from typing import Callable, Iterable, Iterator, Optional

from .types import MemoCacheEntry, MemoListItem

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 20

# Rows fetched per round trip when streaming the full list
_STREAM_BATCH = 200

_LIST_COLUMNS = "path, display_name, created_at_ms"


# -----------------------------------------------------------------------------
# Search query construction
# -----------------------------------------------------------------------------

def split_keywords(query: str) -> list[str]:
    """Split a search string on whitespace into non-blank keywords."""
    return [k for k in query.split() if k.strip()]


def escape_like(keyword: str) -> str:
    """Escape LIKE wildcards so a keyword only ever matches literally."""
    return keyword.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def build_search_query(query: str) -> tuple[str, list[str]]:
    """
    Build the SQL for a multi-keyword AND search.

    Each keyword must appear (case-insensitively) in the display name or
    the full text. Keywords are bound as parameters, never spliced into
    the SQL. A blank query selects everything.

    Returns:
        Tuple of (sql, params); callers append LIMIT/OFFSET params
    """
    keywords = split_keywords(query)
    if not keywords:
        sql = f"""
            SELECT {_LIST_COLUMNS} FROM memo_cache
            ORDER BY created_at_ms DESC
            LIMIT ? OFFSET ?
        """
        return sql, []

    conditions = " AND ".join(
        "(casefold(display_name) LIKE ? ESCAPE '\\' OR casefold(full_text) LIKE ? ESCAPE '\\')"
        for _ in keywords
    )
    params: list[str] = []
    for keyword in keywords:
        pattern = f"%{escape_like(keyword.casefold())}%"
        params.extend([pattern, pattern])

    sql = f"""
        SELECT {_LIST_COLUMNS} FROM memo_cache
        WHERE {conditions}
        ORDER BY created_at_ms DESC
        LIMIT ? OFFSET ?
    """
    return sql, params


def _casefold(value: Optional[str]) -> Optional[str]:
    return value.casefold() if value is not None else None


# -----------------------------------------------------------------------------
# Paging
# -----------------------------------------------------------------------------

class Pager:
    """
    A lazily paged view over one cache query.

    Pages are fetched on demand with LIMIT/OFFSET. Once invalidated (the
    view's inputs changed, or the cache was rebuilt) the owner is expected
    to build a new Pager; an invalidated pager still answers, but may be
    stale.
    """

    def __init__(
        self,
        fetch: Callable[[int, int], list[MemoListItem]],
        page_size: int = DEFAULT_PAGE_SIZE,
        description: str = "",
    ):
        if page_size < 1:
            raise ValueError("page_size must be positive")
        self._fetch = fetch
        self.page_size = page_size
        self.description = description
        self._invalidated = False

    @property
    def invalidated(self) -> bool:
        return self._invalidated

    def invalidate(self) -> None:
        self._invalidated = True

    def load_page(self, index: int) -> list[MemoListItem]:
        """Items of page ``index`` (0-based); empty past the end."""
        if index < 0:
            raise ValueError("page index must be non-negative")
        return self._fetch(self.page_size, index * self.page_size)

    def take(self, count: int) -> list[MemoListItem]:
        """The first ``count`` items, fetched page by page."""
        items: list[MemoListItem] = []
        for item in self:
            if len(items) >= count:
                break
            items.append(item)
        return items

    def __iter__(self) -> Iterator[MemoListItem]:
        index = 0
        while True:
            page = self.load_page(index)
            yield from page
            if len(page) < self.page_size:
                return
            index += 1

    def __repr__(self) -> str:
        state = " invalidated" if self._invalidated else ""
        return f"<Pager {self.description} page_size={self.page_size}{state}>"


# -----------------------------------------------------------------------------
# Store
# -----------------------------------------------------------------------------

class CacheStore:
    """
    SQLite-backed memo cache.

    One instance per process, constructed by the application and passed to
    every consumer. Safe to share between threads: all statements go
    through a single connection guarded by a lock.
    """

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.RLock()
        self._init_db()

    @property
    def db_path(self) -> Path:
        return self._db_path

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        # isolation_level=None gives us manual transaction control
        # so replace_all can use BEGIN IMMEDIATE
        self._conn = sqlite3.connect(
            str(self._db_path), check_same_thread=False,
            isolation_level=None,
        )
        self._conn.row_factory = sqlite3.Row
        self._conn.create_function("casefold", 1, _casefold, deterministic=True)

        # WAL lets readers in other connections keep the old snapshot
        # while a replace is being written
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS memo_cache (
                path TEXT PRIMARY KEY,
                display_name TEXT NOT NULL,
                created_at_ms INTEGER NOT NULL,
                full_text TEXT NOT NULL
            )
        """)
        self._conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_memo_created_at
            ON memo_cache(created_at_ms)
        """)

    @staticmethod
    def _row_values(entry: MemoCacheEntry) -> tuple:
        return (entry.path, entry.display_name, entry.created_at_ms, entry.full_text)

    @staticmethod
    def _to_item(row) -> MemoListItem:
        return MemoListItem(
            path=row["path"],
            display_name=row["display_name"],
            created_at_ms=row["created_at_ms"],
        )

    # -------------------------------------------------------------------------
    # Write Operations
    # -------------------------------------------------------------------------

    def replace_all(self, entries: Iterable[MemoCacheEntry]) -> int:
        """
        Atomically replace the whole cache with ``entries``.

        Delete and insert run in one transaction; on any error the previous
        contents stay in place and the error propagates.

        Returns:
            Number of rows written
        """
        rows = [self._row_values(e) for e in entries]
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                self._conn.execute("DELETE FROM memo_cache")
                self._conn.executemany("""
                    INSERT OR REPLACE INTO memo_cache
                    (path, display_name, created_at_ms, full_text)
                    VALUES (?, ?, ?, ?)
                """, rows)
                self._conn.execute("COMMIT")
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise
        logger.debug("Replaced memo cache with %d entries", len(rows))
        return len(rows)

    def insert(self, entry: MemoCacheEntry) -> None:
        """Insert one entry, replacing any row with the same path."""
        self.insert_all([entry])

    def insert_all(self, entries: Iterable[MemoCacheEntry]) -> None:
        """Insert entries in one transaction, replacing rows with the same path."""
        rows = [self._row_values(e) for e in entries]
        if not rows:
            return
        with self._lock:
            self._conn.execute("BEGIN IMMEDIATE")
            try:
                self._conn.executemany("""
                    INSERT OR REPLACE INTO memo_cache
                    (path, display_name, created_at_ms, full_text)
                    VALUES (?, ?, ?, ?)
                """, rows)
                self._conn.execute("COMMIT")
            except BaseException:
                self._conn.execute("ROLLBACK")
                raise

    def clear(self) -> int:
        """
        Delete every entry.

        Returns:
            Number of rows deleted
        """
        with self._lock:
            cursor = self._conn.execute("DELETE FROM memo_cache")
            return cursor.rowcount

    # -------------------------------------------------------------------------
    # Read Operations
    # -------------------------------------------------------------------------

    def get(self, path: str) -> Optional[MemoCacheEntry]:
        """
        Get the full entry for a memo file.

        Args:
            path: Tree location of the memo file

        Returns:
            MemoCacheEntry if cached, None otherwise
        """
        with self._lock:
            row = self._conn.execute("""
                SELECT path, display_name, created_at_ms, full_text
                FROM memo_cache
                WHERE path = ?
            """, (path,)).fetchone()
        if row is None:
            return None
        return MemoCacheEntry(
            path=row["path"],
            display_name=row["display_name"],
            created_at_ms=row["created_at_ms"],
            full_text=row["full_text"],
        )

    def list_page(self, limit: int, offset: int = 0) -> list[MemoListItem]:
        """Newest-first projection rows, one page."""
        with self._lock:
            cursor = self._conn.execute(f"""
                SELECT {_LIST_COLUMNS} FROM memo_cache
                ORDER BY created_at_ms DESC
                LIMIT ? OFFSET ?
            """, (limit, offset))
            return [self._to_item(row) for row in cursor]

    def list_items(self) -> Iterator[MemoListItem]:
        """All memos newest first, streamed in batches (no full text)."""
        offset = 0
        while True:
            batch = self.list_page(_STREAM_BATCH, offset)
            yield from batch
            if len(batch) < _STREAM_BATCH:
                return
            offset += len(batch)

    def list_by_month(
        self,
        start_ms: int,
        end_ms: int,
        limit: int,
        offset: int = 0,
    ) -> list[MemoListItem]:
        """
        Memos created in ``[start_ms, end_ms)``, newest first.

        Args:
            start_ms: Inclusive lower bound (epoch ms)
            end_ms: Exclusive upper bound (epoch ms)
            limit: Page size
            offset: Rows to skip
        """
        with self._lock:
            cursor = self._conn.execute(f"""
                SELECT {_LIST_COLUMNS} FROM memo_cache
                WHERE created_at_ms >= ? AND created_at_ms < ?
                ORDER BY created_at_ms DESC
                LIMIT ? OFFSET ?
            """, (start_ms, end_ms, limit, offset))
            return [self._to_item(row) for row in cursor]

    def search(self, query: str, limit: int, offset: int = 0) -> list[MemoListItem]:
        """
        Multi-keyword AND search over display name and full text.

        Args:
            query: Whitespace-separated keywords; blank matches everything
            limit: Page size
            offset: Rows to skip
        """
        sql, params = build_search_query(query)
        with self._lock:
            cursor = self._conn.execute(sql, (*params, limit, offset))
            return [self._to_item(row) for row in cursor]

    def paged_all(self, page_size: int = DEFAULT_PAGE_SIZE) -> Pager:
        return Pager(self.list_page, page_size, description="all")

    def paged_by_month(
        self,
        start_ms: int,
        end_ms: int,
        page_size: int = DEFAULT_PAGE_SIZE,
    ) -> Pager:
        return Pager(
            lambda limit, offset: self.list_by_month(start_ms, end_ms, limit, offset),
            page_size,
            description=f"month[{start_ms},{end_ms})",
        )

    def paged_search(self, query: str, page_size: int = DEFAULT_PAGE_SIZE) -> Pager:
        return Pager(
            lambda limit, offset: self.search(query, limit, offset),
            page_size,
            description=f"search {query!r}",
        )

    def oldest_created_at(self) -> Optional[int]:
        """Creation time (epoch ms) of the oldest cached memo, None if empty."""
        with self._lock:
            row = self._conn.execute("SELECT MIN(created_at_ms) FROM memo_cache").fetchone()
        return row[0]

    def count(self) -> int:
        """Count cached memos."""
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM memo_cache").fetchone()[0]

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close the database connection."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __del__(self):
        try:
            self.close()
        except Exception:
            pass
