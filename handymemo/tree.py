"""
Document tree access over the local filesystem.

The rest of handymemo only sees TreeNode locations; this module is the one
place that knows they are POSIX paths relative to the chosen root folder.
Blocking filesystem calls run in worker threads so callers can await them
from the event loop.
"""

import asyncio
import logging
import mimetypes
from pathlib import Path
from typing import Optional

from .errors import TreeUnavailableError
from .types import TreeNode

logger = logging.getLogger(__name__)

# Types mimetypes does not know everywhere
EXTENSION_TYPES = {
    ".md": "text/markdown",
    ".markdown": "text/markdown",
    ".txt": "text/plain",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".heic": "image/heic",
    ".heif": "image/heif",
    ".mp4": "video/mp4",
    ".m4v": "video/x-m4v",
    ".mov": "video/quicktime",
    ".webm": "video/webm",
    ".mkv": "video/x-matroska",
    ".3gp": "video/3gpp",
}

# Preferred extension per media type when copying attachments in
MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/heic": "heic",
    "image/heif": "heif",
    "video/mp4": "mp4",
    "video/quicktime": "mov",
    "video/webm": "webm",
    "video/x-matroska": "mkv",
    "video/3gpp": "3gp",
}


def guess_media_type(name: str) -> Optional[str]:
    """Declared media type for a file name, or None if unknown."""
    suffix = Path(name).suffix.lower()
    if suffix in EXTENSION_TYPES:
        return EXTENSION_TYPES[suffix]
    mime_type, _ = mimetypes.guess_type(name)
    return mime_type


def extension_for_media_type(mime_type: Optional[str]) -> Optional[str]:
    """File extension (without dot) for a media type, or None if unknown."""
    if not mime_type:
        return None
    if mime_type in MIME_EXTENSIONS:
        return MIME_EXTENSIONS[mime_type]
    ext = mimetypes.guess_extension(mime_type)
    return ext.lstrip(".") if ext else None


def _valid_child_name(name: str) -> bool:
    return bool(name) and name not in (".", "..") and "/" not in name and "\\" not in name


class LocalTreeAccessor:
    """
    TreeAccessor over a directory on the local filesystem.

    Locations are POSIX paths relative to the root; the root itself is "".
    Symlinks are not followed when listing, so a link cycle cannot trap a
    recursive walk.
    """

    def __init__(self, root_path: Path):
        self._root_path = Path(root_path).expanduser().resolve()

    @property
    def root_path(self) -> Path:
        return self._root_path

    # -------------------------------------------------------------------------
    # Location mapping
    # -------------------------------------------------------------------------

    def local_path(self, node: TreeNode) -> Path:
        """Filesystem path for a node. Rejects locations outside the root."""
        path = (self._root_path / node.location).resolve() if node.location else self._root_path
        if not path.is_relative_to(self._root_path):
            raise IOError(f"Path traversal blocked: {node.location} is outside the tree root")
        return path

    def _node(self, path: Path) -> TreeNode:
        relative = path.relative_to(self._root_path).as_posix()
        if relative == ".":
            relative = ""
        return TreeNode(
            location=relative,
            name=path.name,
            is_file=path.is_file(),
            is_dir=path.is_dir(),
        )

    # -------------------------------------------------------------------------
    # Blocking implementations
    # -------------------------------------------------------------------------

    def _list_children(self, node: TreeNode) -> list[TreeNode]:
        directory = self.local_path(node)
        if not directory.is_dir():
            return []
        children = []
        for entry in sorted(directory.iterdir()):
            if entry.is_symlink():
                continue
            children.append(self._node(entry))
        return children

    def _find_child(self, node: TreeNode, name: str) -> Optional[TreeNode]:
        if not _valid_child_name(name):
            return None
        path = self.local_path(node) / name
        if not path.exists() or path.is_symlink():
            return None
        return self._node(path)

    def _create_directory(self, node: TreeNode, name: str) -> TreeNode:
        if not _valid_child_name(name):
            raise ValueError(f"Invalid directory name: {name!r}")
        path = self.local_path(node) / name
        path.mkdir(exist_ok=True)
        return self._node(path)

    def _create_file(self, node: TreeNode, mime_type: str, name: str) -> TreeNode:
        if not _valid_child_name(name):
            raise ValueError(f"Invalid file name: {name!r}")
        parent = self.local_path(node)
        if not parent.is_dir():
            raise IOError(f"Not a directory: {node.location or '/'}")
        path = parent / name
        # Exclusive create: never clobber an existing memo or attachment
        with open(path, "xb"):
            pass
        logger.debug("Created %s (%s)", path, mime_type)
        return self._node(path)

    def _read_bytes(self, node: TreeNode) -> bytes:
        path = self.local_path(node)
        if not path.is_file():
            raise IOError(f"Not a file: {node.location}")
        return path.read_bytes()

    def _write_bytes(self, node: TreeNode, data: bytes) -> None:
        path = self.local_path(node)
        if path.is_dir():
            raise IOError(f"Not a file: {node.location}")
        path.write_bytes(data)

    def _delete(self, node: TreeNode) -> None:
        path = self.local_path(node)
        if not path.is_file():
            raise IOError(f"Not a file: {node.location}")
        path.unlink()
        logger.debug("Deleted %s", path)

    def _media_type(self, node: TreeNode) -> Optional[str]:
        path = self.local_path(node)
        if path.is_dir():
            return None
        return guess_media_type(path.name)

    # -------------------------------------------------------------------------
    # TreeAccessor
    # -------------------------------------------------------------------------

    async def root(self) -> TreeNode:
        return TreeNode(location="", name=self._root_path.name, is_dir=True)

    async def exists(self, node: TreeNode) -> bool:
        return await asyncio.to_thread(lambda: self.local_path(node).exists())

    async def list_children(self, node: TreeNode) -> list[TreeNode]:
        return await asyncio.to_thread(self._list_children, node)

    async def find_child(self, node: TreeNode, name: str) -> Optional[TreeNode]:
        return await asyncio.to_thread(self._find_child, node, name)

    async def create_directory(self, node: TreeNode, name: str) -> TreeNode:
        return await asyncio.to_thread(self._create_directory, node, name)

    async def create_file(self, node: TreeNode, mime_type: str, name: str) -> TreeNode:
        return await asyncio.to_thread(self._create_file, node, mime_type, name)

    async def find_or_create_directory(self, node: TreeNode, name: str) -> TreeNode:
        child = await self.find_child(node, name)
        if child is not None and child.is_dir:
            return child
        return await self.create_directory(node, name)

    async def read_text(self, node: TreeNode) -> str:
        data = await self.read_bytes(node)
        return data.decode("utf-8")

    async def read_bytes(self, node: TreeNode) -> bytes:
        return await asyncio.to_thread(self._read_bytes, node)

    async def write_text(self, node: TreeNode, text: str) -> None:
        await self.write_bytes(node, text.encode("utf-8"))

    async def write_bytes(self, node: TreeNode, data: bytes) -> None:
        await asyncio.to_thread(self._write_bytes, node, data)

    async def media_type(self, node: TreeNode) -> Optional[str]:
        return await asyncio.to_thread(self._media_type, node)

    async def delete(self, node: TreeNode) -> None:
        """Remove a file. Directories are never removed."""
        await asyncio.to_thread(self._delete, node)


def open_tree(location: str) -> LocalTreeAccessor:
    """
    Open the tree for a configured root location.

    Accepts a bare path or a file:// URI.

    Raises:
        TreeUnavailableError: If the root does not exist or is not a directory
    """
    path_str = location.removeprefix("file://")
    path = Path(path_str).expanduser()
    if not path.is_dir():
        raise TreeUnavailableError(f"Root directory not found: {location}")
    return LocalTreeAccessor(path)
