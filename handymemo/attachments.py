"""
Attachment references in memo bodies.

Memos embed media with image-style Markdown links whose targets are
relative to the memo file, e.g. ``![Image](../../../images/2024/05/x-0.jpg)``.
Because memos always live three levels below the root, dropping the ``..``
segments and walking from the root finds the target.

Broken links are dropped silently. Video attachments get a JPEG thumbnail
cached on local scratch storage; thumbnail failures only lose the
thumbnail.
"""

import asyncio
import hashlib
import io
import logging
import os
import re
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Optional

from .protocol import TreeAccessor
from .types import AttachmentDescriptor, TreeNode

logger = logging.getLogger(__name__)

ATTACHMENT_PATTERN = re.compile(r"!\[(.*?)\]\((.*?)\)")

MEDIA_PLACEHOLDER = "[Media Inserted]"

THUMBNAIL_QUALITY = 80
THUMBNAIL_FRAME_SECONDS = 1.0
FFMPEG_TIMEOUT = 30

# Checked in order when ffmpeg is not on PATH
_FFMPEG_PATHS = (
    "/opt/homebrew/bin/ffmpeg",
    "/usr/local/bin/ffmpeg",
    "/usr/bin/ffmpeg",
)


def find_attachment_paths(text: str) -> list[str]:
    """Relative paths of all embedded media links, in order of appearance."""
    return [m.group(2) for m in ATTACHMENT_PATTERN.finditer(text)]


def strip_attachment_markup(text: str) -> str:
    """Replace every media link with the placeholder and trim."""
    return ATTACHMENT_PATTERN.sub(MEDIA_PLACEHOLDER, text).strip()


def path_segments(relative_path: str) -> list[str]:
    """Segments to walk from the root: blanks and '..' removed."""
    return [s for s in relative_path.split("/") if s.strip() and s != ".."]


async def resolve_relative(
    tree: TreeAccessor,
    root: TreeNode,
    relative_path: str,
) -> Optional[TreeNode]:
    """
    Walk from the root by the link's path segments.

    Returns None when a segment is missing, the target is not a regular
    file, or the walk ends on the root itself.
    """
    current = root
    try:
        for segment in path_segments(relative_path):
            child = await tree.find_child(current, segment)
            if child is None:
                return None
            current = child
    except OSError as e:
        logger.debug("Cannot resolve %r: %s", relative_path, e)
        return None

    if current.location == root.location or not current.is_file:
        return None
    return current


async def resolve_attachments(
    text: str,
    tree: TreeAccessor,
    thumbnails: Optional["ThumbnailCache"] = None,
) -> list[AttachmentDescriptor]:
    """
    Resolve every media link in ``text`` against the tree.

    Order follows the text. Unresolvable links are skipped.
    """
    root = await tree.root()
    attachments: list[AttachmentDescriptor] = []
    for relative_path in find_attachment_paths(text):
        node = await resolve_relative(tree, root, relative_path)
        if node is None:
            logger.debug("Dropping broken attachment link: %s", relative_path)
            continue

        mime_type = await tree.media_type(node)
        is_video = bool(mime_type and mime_type.startswith("video/"))
        thumbnail = None
        if is_video and thumbnails is not None:
            thumbnail = await thumbnails.get_or_create(tree, node)
        attachments.append(AttachmentDescriptor(node, is_video, thumbnail))
    return attachments


# -----------------------------------------------------------------------------
# Video thumbnails
# -----------------------------------------------------------------------------

def find_ffmpeg() -> Optional[str]:
    """Locate the ffmpeg binary, or None if not installed."""
    found = shutil.which("ffmpeg")
    if found:
        return found
    for candidate in _FFMPEG_PATHS:
        if Path(candidate).exists():
            return candidate
    return None


def extract_frame(video_path: Path, seconds: float = THUMBNAIL_FRAME_SECONDS) -> bytes:
    """
    Decode one frame near ``seconds`` into PNG bytes using ffmpeg.

    Falls back to the first frame for clips shorter than ``seconds``.

    Raises:
        FileNotFoundError: If ffmpeg is not installed
        IOError: If no frame could be decoded
    """
    ffmpeg = find_ffmpeg()
    if ffmpeg is None:
        raise FileNotFoundError("ffmpeg not found. Install ffmpeg for video thumbnails.")

    for offset in (seconds, 0.0):
        result = subprocess.run(
            [
                ffmpeg,
                "-v", "error",
                "-ss", f"{offset:.3f}",
                "-i", str(video_path),
                "-frames:v", "1",
                "-f", "image2pipe",
                "-vcodec", "png",
                "-",
            ],
            capture_output=True,
            timeout=FFMPEG_TIMEOUT,
        )
        if result.returncode == 0 and result.stdout:
            return result.stdout
    stderr = result.stderr.decode(errors="replace").strip()
    raise IOError(f"No frame decoded from {video_path.name}: {stderr or 'empty output'}")


class ThumbnailCache:
    """
    JPEG thumbnails for video attachments, cached by location hash.

    A thumbnail is generated once per location and reused afterwards;
    deleting the cache directory only costs regeneration.
    """

    def __init__(self, cache_dir: Path, namespace: str = ""):
        self._cache_dir = Path(cache_dir)
        self._namespace = namespace

    @property
    def cache_dir(self) -> Path:
        return self._cache_dir

    def cache_key(self, node: TreeNode) -> str:
        digest = hashlib.sha256(f"{self._namespace}:{node.location}".encode("utf-8"))
        return digest.hexdigest()[:32]

    def thumbnail_path(self, node: TreeNode) -> Path:
        return self._cache_dir / f"thumb_{self.cache_key(node)}.jpg"

    async def get_or_create(self, tree: TreeAccessor, node: TreeNode) -> Optional[Path]:
        """Cached thumbnail path, generating it on first use; None on failure."""
        target = self.thumbnail_path(node)
        if target.exists():
            return target
        try:
            local_path = getattr(tree, "local_path", None)
            if local_path is not None:
                source = local_path(node)
                await asyncio.to_thread(self._render, source, target)
            else:
                data = await tree.read_bytes(node)
                await asyncio.to_thread(self._render_from_bytes, data, node.name, target)
        except Exception as e:
            # Non-fatal: the attachment is still shown, just without a preview
            logger.warning("Failed to generate thumbnail for %s: %s", node.location, e)
            return None
        return target

    def _render_from_bytes(self, data: bytes, name: str, target: Path) -> None:
        suffix = Path(name).suffix or ".bin"
        with tempfile.TemporaryDirectory() as tmp_dir:
            source = Path(tmp_dir) / f"source{suffix}"
            source.write_bytes(data)
            self._render(source, target)

    def _render(self, source: Path, target: Path) -> None:
        from PIL import Image

        frame = extract_frame(source)
        self._cache_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self._cache_dir, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as out:
                with Image.open(io.BytesIO(frame)) as img:
                    img.convert("RGB").save(out, "JPEG", quality=THUMBNAIL_QUALITY)
            os.replace(tmp_name, target)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise
