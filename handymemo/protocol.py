"""
Protocol definitions for the collaborators handymemo depends on.

Defines interface contracts for:
- TreeAccessor: the permissioned document tree (local filesystem here,
  a platform document provider elsewhere)
- CacheStoreProtocol: the derived memo index
- LifecycleStateProvider: whether the user is interacting with the app
"""

from typing import Iterable, Iterator, Optional, Protocol, runtime_checkable

from .types import MemoCacheEntry, MemoListItem, TreeNode


@runtime_checkable
class TreeAccessor(Protocol):
    """
    Access to a user-granted directory tree.

    Nodes are addressed by opaque locations, never by raw paths. Every
    operation may touch slow or removable storage, so all are coroutines.
    """

    async def root(self) -> TreeNode: ...

    async def exists(self, node: TreeNode) -> bool: ...

    async def list_children(self, node: TreeNode) -> list[TreeNode]: ...

    async def find_child(self, node: TreeNode, name: str) -> Optional[TreeNode]: ...

    async def create_directory(self, node: TreeNode, name: str) -> TreeNode: ...

    async def create_file(self, node: TreeNode, mime_type: str, name: str) -> TreeNode: ...

    async def find_or_create_directory(self, node: TreeNode, name: str) -> TreeNode: ...

    async def read_text(self, node: TreeNode) -> str: ...

    async def read_bytes(self, node: TreeNode) -> bytes: ...

    async def write_text(self, node: TreeNode, text: str) -> None: ...

    async def write_bytes(self, node: TreeNode, data: bytes) -> None: ...

    async def media_type(self, node: TreeNode) -> Optional[str]: ...

    async def delete(self, node: TreeNode) -> None: ...


@runtime_checkable
class CacheStoreProtocol(Protocol):
    """
    The derived memo index.

    Implemented by:
    - CacheStore (local SQLite)
    """

    def replace_all(self, entries: Iterable[MemoCacheEntry]) -> int: ...

    def insert(self, entry: MemoCacheEntry) -> None: ...

    def get(self, path: str) -> Optional[MemoCacheEntry]: ...

    def list_items(self) -> Iterator[MemoListItem]: ...

    def list_by_month(
        self, start_ms: int, end_ms: int, limit: int, offset: int = 0,
    ) -> list[MemoListItem]: ...

    def search(self, query: str, limit: int, offset: int = 0) -> list[MemoListItem]: ...

    def oldest_created_at(self) -> Optional[int]: ...

    def count(self) -> int: ...


@runtime_checkable
class LifecycleStateProvider(Protocol):
    """Reports whether the application is in the foreground. Never blocks."""

    @property
    def is_foreground(self) -> bool: ...
