"""
Indexing passes: rebuild the memo cache from the tree.

A pass walks ``memos/`` under the configured root, parses every ``.md``
file it finds and installs the whole result set with one atomic
``replace_all``. Files that fail to parse are logged and left out; they
never abort the pass.

Outcomes:
- success: cache replaced (or nothing to do)
- retry: the tree was read but the cache commit failed
- failure: the tree could not be opened or walked
"""

import asyncio
import logging
from datetime import tzinfo
from typing import Callable, Optional

from .errors import CacheCommitError
from .parser import build_cache_entry, is_memo_file_name
from .protocol import CacheStoreProtocol, LifecycleStateProvider, TreeAccessor
from .tree import open_tree
from .types import MEMOS_DIR, IndexResult, MemoCacheEntry, Outcome, TreeNode

logger = logging.getLogger(__name__)

DEFAULT_PARSE_CONCURRENCY = 4


class MemoIndexer:
    """
    Runs indexing passes against one cache store.

    Args:
        settings: Anything with a ``root_tree_location`` attribute
            (normally a SettingsRepository); read at the start of each pass
        store: Cache to replace
        lifecycle: Foreground state; automatic passes yield to the user
        tree_factory: Opens a tree for a root location
        parse_concurrency: Files parsed at once within one directory
        zone: Zone for interpreting memo names (default: device zone)
    """

    def __init__(
        self,
        settings,
        store: CacheStoreProtocol,
        lifecycle: LifecycleStateProvider,
        tree_factory: Callable[[str], TreeAccessor] = open_tree,
        parse_concurrency: int = DEFAULT_PARSE_CONCURRENCY,
        zone: Optional[tzinfo] = None,
    ):
        if parse_concurrency < 1:
            raise ValueError("parse_concurrency must be at least 1")
        self._settings = settings
        self._store = store
        self._lifecycle = lifecycle
        self._tree_factory = tree_factory
        self._parse_concurrency = parse_concurrency
        self._zone = zone

    async def run_index_pass(self, is_manual: bool = False) -> IndexResult:
        """
        Run one full pass.

        Args:
            is_manual: User-requested; bypasses the foreground guard

        Returns:
            IndexResult describing the outcome
        """
        if not is_manual and self._lifecycle.is_foreground:
            logger.info("Skipping indexing pass: application is in the foreground")
            return IndexResult.noop()

        location = self._settings.root_tree_location
        if not location:
            logger.info("Skipping indexing pass: no root tree configured")
            return IndexResult.noop()

        logger.info("Indexing pass started (manual=%s): %s", is_manual, location)
        entries: list[MemoCacheEntry] = []
        errors: list[str] = []
        try:
            tree = self._tree_factory(location)
            root = await tree.root()
            memos = await tree.find_child(root, MEMOS_DIR)
            if memos is None or not memos.is_dir:
                logger.info("Skipping indexing pass: no %s directory yet", MEMOS_DIR)
                return IndexResult.noop()
            await self._collect(tree, memos, entries, errors)
        except Exception as e:
            logger.error("Indexing pass failed: %s", e)
            return IndexResult(
                Outcome.FAILURE,
                error_count=len(errors),
                errors=errors,
                message=str(e),
            )

        try:
            indexed = await self._commit(entries)
        except CacheCommitError as e:
            logger.warning("%s; pass will be retried", e)
            return IndexResult(
                Outcome.RETRY,
                error_count=len(errors),
                errors=errors,
                message=str(e),
            )

        logger.info(
            "Indexing pass complete: %d indexed, %d errors",
            indexed, len(errors),
        )
        return IndexResult(
            Outcome.SUCCESS,
            indexed_count=indexed,
            error_count=len(errors),
            errors=errors,
        )

    async def _commit(self, entries: list[MemoCacheEntry]) -> int:
        try:
            return await asyncio.to_thread(self._store.replace_all, entries)
        except Exception as e:
            raise CacheCommitError(f"Failed to replace memo cache: {e}") from e

    async def _collect(
        self,
        tree: TreeAccessor,
        directory: TreeNode,
        entries: list[MemoCacheEntry],
        errors: list[str],
    ) -> None:
        """Depth-first walk: parse this directory's memos, then recurse."""
        children = await tree.list_children(directory)
        memo_files = [c for c in children if c.is_file and is_memo_file_name(c.name)]

        for start in range(0, len(memo_files), self._parse_concurrency):
            chunk = memo_files[start:start + self._parse_concurrency]
            results = await asyncio.gather(
                *(self._parse_one(tree, node) for node in chunk),
                return_exceptions=True,
            )
            for node, result in zip(chunk, results):
                if isinstance(result, Exception):
                    errors.append(f"{node.name}: {result}")
                    logger.warning("Failed to parse %s: %s", node.location, result)
                elif isinstance(result, BaseException):
                    raise result
                else:
                    entries.append(result)

        for child in children:
            if child.is_dir:
                await self._collect(tree, child, entries, errors)

    async def _parse_one(self, tree: TreeAccessor, node: TreeNode) -> MemoCacheEntry:
        text = await tree.read_text(node)
        return build_cache_entry(node.location, node.name, text, self._zone)
