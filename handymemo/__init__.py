"""
Handy Memo

Markdown memos written into a folder you choose, indexed into a local
SQLite cache for month-by-month listing and keyword search.

Quick Start:
    import asyncio
    from handymemo import MemoApp

    with MemoApp() as app:
        app.settings.save_root_tree_location("/path/to/memos-folder")
        asyncio.run(app.service.create_memo("Bought milk"))
        result = asyncio.run(app.index_now())

CLI Usage:
    memo config --root /path/to/memos-folder
    memo new "Bought milk"
    memo list --search milk

Environment Variables:
    HANDYMEMO_HOME     - Override the home directory (default ~/.handymemo)
    HANDYMEMO_VERBOSE  - Set to 1 for debug logging to stderr
"""

from .api import MemoApp
from .cache_store import CacheStore, Pager
from .indexer import MemoIndexer
from .types import IndexingStatus, IndexResult, MemoCacheEntry, MemoListItem, MemoRecord, YearMonth

__all__ = [
    "MemoApp",
    "CacheStore",
    "Pager",
    "MemoIndexer",
    "IndexingStatus",
    "IndexResult",
    "MemoCacheEntry",
    "MemoListItem",
    "MemoRecord",
    "YearMonth",
]
