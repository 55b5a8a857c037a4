"""
Interactive memo operations.

Everything the editor and the detail screen need: write a new memo,
copy media into the tree and produce the links to insert, and load one
memo with its attachments resolved. Writes go to the tree first; the
cache is only touched after the file is safely written.
"""

import asyncio
import logging
import sqlite3
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from .attachments import ThumbnailCache, resolve_attachments
from .errors import MemoParseError
from .parser import parse_memo_file
from .protocol import CacheStoreProtocol, TreeAccessor
from .scheduler import WorkScheduler, trigger_manual_indexing
from .tree import extension_for_media_type, guess_media_type, open_tree
from .types import (
    IMAGES_DIR,
    MEMO_EXTENSION,
    MEMOS_DIR,
    VIDEOS_DIR,
    MemoCacheEntry,
    MemoListItem,
    MemoRecord,
    TreeNode,
    format_memo_id,
    localize,
    to_epoch_ms,
)

logger = logging.getLogger(__name__)

MEMO_MIME_TYPE = "text/markdown"


def unknown_type_message(mime_type: Optional[str]) -> str:
    return (
        "Failed to getExtensionFromMimeType() and attach images "
        f"due to unknown file type {mime_type}"
    )


def links_block(links: list[str]) -> str:
    """Text inserted into the editor for a batch of attachment links."""
    if not links:
        return ""
    return "\n" + "\n\n".join(links) + "\n"


class MemoService:
    """
    Foreground reads and writes against the memo tree.

    Args:
        settings: Anything with a ``root_tree_location`` attribute
        store: Cache receiving newly created memos
        tree_factory: Opens a tree for a root location
        thumbnails: Video thumbnail cache for detail views
        scheduler: Scheduler for manual indexing requests
        indexer: Indexer run by manual indexing requests
        zone: Zone for memo timestamps (default: device zone)
    """

    def __init__(
        self,
        settings,
        store: CacheStoreProtocol,
        tree_factory: Callable[[str], TreeAccessor] = open_tree,
        thumbnails: Optional[ThumbnailCache] = None,
        scheduler: Optional[WorkScheduler] = None,
        indexer=None,
        zone: Optional[tzinfo] = None,
    ):
        self._settings = settings
        self._store = store
        self._tree_factory = tree_factory
        self._thumbnails = thumbnails
        self._scheduler = scheduler
        self._indexer = indexer
        self._zone = zone

    def _now(self, now: Optional[datetime]) -> datetime:
        if now is None:
            return datetime.now(self._zone) if self._zone else datetime.now().astimezone()
        if now.tzinfo is None:
            return localize(now, self._zone)
        return now

    def _open_tree(self) -> Optional[TreeAccessor]:
        location = self._settings.root_tree_location
        if not location:
            return None
        return self._tree_factory(location)

    @staticmethod
    async def _month_directory(tree: TreeAccessor, top: str, when: datetime) -> TreeNode:
        """``<top>/<yyyy>/<MM>`` under the root, created as needed."""
        directory = await tree.root()
        for name in (top, f"{when.year}", f"{when.month:02d}"):
            directory = await tree.find_or_create_directory(directory, name)
        return directory

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    async def create_memo(
        self,
        content: str,
        now: Optional[datetime] = None,
    ) -> Optional[MemoCacheEntry]:
        """
        Write a new memo file and add it to the cache.

        Returns:
            The new cache entry, or None if no root is configured, the
            file could not be written (nothing is left behind), or the
            cache insert failed (the file stays for the next pass)
        """
        if not self._settings.root_tree_location:
            logger.error("Tried to create new memo, but no root tree is configured")
            return None

        now = self._now(now)
        memo_id = format_memo_id(now)
        try:
            tree = self._open_tree()
            directory = await self._month_directory(tree, MEMOS_DIR, now)
            node = await tree.create_file(directory, MEMO_MIME_TYPE, f"{memo_id}{MEMO_EXTENSION}")
        except (OSError, ValueError) as e:
            logger.error("Failed to create memo file %s: %s", memo_id, e)
            return None

        try:
            await tree.write_text(node, content)
        except (OSError, ValueError) as e:
            logger.error("Failed to write memo file %s: %s", node.location, e)
            await self._discard(tree, node)
            return None

        entry = MemoCacheEntry(
            path=node.location,
            display_name=memo_id,
            created_at_ms=to_epoch_ms(now),
            full_text=content,
        )
        try:
            await asyncio.to_thread(self._store.insert, entry)
        except sqlite3.Error as e:
            # The file is written; the next indexing pass caches it
            logger.error("Failed to cache memo %s: %s", node.location, e)
            return None
        logger.info("Created memo %s", node.location)
        return entry

    @staticmethod
    async def _discard(tree: TreeAccessor, node: TreeNode) -> None:
        """Remove a half-written file so it is neither indexed nor blocks a retry."""
        try:
            await tree.delete(node)
        except OSError as e:
            logger.warning("Failed to remove incomplete file %s: %s", node.location, e)

    async def attach_media(
        self,
        sources: Iterable[Union[str, Path]],
        now: Optional[datetime] = None,
    ) -> str:
        """
        Copy media files into the tree.

        Each file lands in ``images/`` or ``videos/`` as ``<id>-<index>.<ext>``.
        A file whose type has no known extension stops the batch; the
        returned text then starts with an error message.

        Returns:
            Text to insert into the editor: the links block, possibly
            preceded by the error message; "" if nothing was attached
        """
        if not self._settings.root_tree_location:
            logger.error("Tried to attach media, but no root tree is configured")
            return ""

        now = self._now(now)
        memo_id = format_memo_id(now)
        year, month = f"{now.year}", f"{now.month:02d}"
        try:
            tree = self._open_tree()
        except OSError as e:
            logger.error("Failed to attach media: %s", e)
            return ""

        links: list[str] = []
        message = ""
        for index, source in enumerate(sources):
            source = Path(source)
            mime_type = guess_media_type(source.name)
            is_video = bool(mime_type and mime_type.startswith("video"))
            extension = extension_for_media_type(mime_type)
            if extension is None:
                logger.error("Cannot attach %s: unknown media type %s", source, mime_type)
                message = unknown_type_message(mime_type)
                break

            top = VIDEOS_DIR if is_video else IMAGES_DIR
            file_name = f"{memo_id}-{index}.{extension}"
            try:
                data = await asyncio.to_thread(source.read_bytes)
                directory = await self._month_directory(tree, top, now)
                node = await tree.create_file(directory, mime_type, file_name)
                await tree.write_bytes(node, data)
            except (OSError, ValueError) as e:
                logger.error("Failed to copy media from %s: %s", source, e)
                continue

            alt_text = "Video" if is_video else "Image"
            links.append(f"![{alt_text}](../../../{top}/{year}/{month}/{file_name})")
            logger.info("Attached %s as %s", source.name, node.location)

        return message + links_block(links)

    # -------------------------------------------------------------------------
    # Read
    # -------------------------------------------------------------------------

    async def get_memo_detail(self, item: Union[MemoListItem, str]) -> Optional[MemoRecord]:
        """
        Load one cached memo with attachments resolved against the tree.

        Returns:
            MemoRecord, or None if the memo is not cached, no root is
            configured, or the tree cannot be read
        """
        path = item.path if isinstance(item, MemoListItem) else item
        try:
            entry = await asyncio.to_thread(self._store.get, path)
        except sqlite3.Error as e:
            logger.error("Failed to read memo %s from cache: %s", path, e)
            return None
        if entry is None:
            return None

        try:
            tree = self._open_tree()
            if tree is None:
                return None
            record = parse_memo_file(entry.display_name, entry.full_text, self._zone)
            record.attachments = await resolve_attachments(
                entry.full_text, tree, self._thumbnails,
            )
        except (OSError, MemoParseError) as e:
            logger.error("Failed to get memo detail: %s: %s", path, e)
            return None
        return record

    # -------------------------------------------------------------------------
    # Indexing
    # -------------------------------------------------------------------------

    def trigger_manual_indexing(self) -> bool:
        """Queue a manual indexing pass; requires a scheduler and indexer."""
        if self._scheduler is None or self._indexer is None:
            raise RuntimeError("Manual indexing needs a scheduler and an indexer")
        logger.info("Manual indexing requested")
        return trigger_manual_indexing(self._scheduler, self._indexer)
