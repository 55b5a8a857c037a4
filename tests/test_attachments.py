"""Tests for attachment link resolution and video thumbnails."""

import io
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from handymemo.attachments import (
    MEDIA_PLACEHOLDER,
    ThumbnailCache,
    find_attachment_paths,
    path_segments,
    resolve_attachments,
    resolve_relative,
    strip_attachment_markup,
)
from handymemo.tree import LocalTreeAccessor
from handymemo.types import TreeNode


def _png_bytes() -> bytes:
    from PIL import Image
    buf = io.BytesIO()
    Image.new("RGB", (8, 6), (200, 10, 10)).save(buf, "PNG")
    return buf.getvalue()


class TestLinkText:
    """Pure text handling of media links."""

    def test_finds_links_in_order(self):
        text = "a ![Image](x/1.jpg) b ![Video](y/2.mp4) c ![](z/3.png)"
        assert find_attachment_paths(text) == ["x/1.jpg", "y/2.mp4", "z/3.png"]

    def test_ignores_plain_links(self):
        assert find_attachment_paths("[not media](x.jpg) and text") == []

    def test_strip_replaces_every_link_and_trims(self):
        text = "\n![Image](a.jpg)\n\nHello ![Video](b.mp4)  \n"
        assert strip_attachment_markup(text) == f"{MEDIA_PLACEHOLDER}\n\nHello {MEDIA_PLACEHOLDER}"

    def test_segments_drop_parents_and_blanks(self):
        assert path_segments("../../../images/2024/05/x-0.jpg") == ["images", "2024", "05", "x-0.jpg"]
        assert path_segments("//images//x.jpg/") == ["images", "x.jpg"]
        assert path_segments("../..") == []


class TestResolve:
    """Resolving links against the tree."""

    @pytest.mark.asyncio
    async def test_missing_target_yields_nothing(self, tmp_path):
        text = "Note ![Image](../../../images/2024/05/x-0.jpg)"
        tree = LocalTreeAccessor(tmp_path)
        attachments = await resolve_attachments(text, tree)
        assert attachments == []
        assert strip_attachment_markup(text) == "Note [Media Inserted]"

    @pytest.mark.asyncio
    async def test_existing_image(self, memo_root):
        tree = LocalTreeAccessor(memo_root)
        text = "![Image](../../../images/2024/05/20240515120000-0.jpg)"
        attachments = await resolve_attachments(text, tree)
        assert len(attachments) == 1
        assert attachments[0].location.location == "images/2024/05/20240515120000-0.jpg"
        assert not attachments[0].is_video
        assert attachments[0].thumbnail is None

    @pytest.mark.asyncio
    async def test_link_to_root_or_directory_is_dropped(self, memo_root):
        tree = LocalTreeAccessor(memo_root)
        root = await tree.root()
        assert await resolve_relative(tree, root, "../../..") is None
        assert await resolve_relative(tree, root, "../../../images/2024") is None

    @pytest.mark.asyncio
    async def test_order_preserved_and_broken_links_skipped(self, tmp_path):
        (tmp_path / "images").mkdir()
        (tmp_path / "images" / "b.png").write_bytes(b"png")
        (tmp_path / "images" / "a.jpg").write_bytes(b"jpg")
        text = "![Image](images/b.png) ![Image](images/gone.png) ![Image](images/a.jpg)"
        attachments = await resolve_attachments(text, LocalTreeAccessor(tmp_path))
        assert [a.location.name for a in attachments] == ["b.png", "a.jpg"]

    @pytest.mark.asyncio
    async def test_video_gets_thumbnail(self, tmp_path):
        (tmp_path / "videos").mkdir()
        (tmp_path / "videos" / "clip.mp4").write_bytes(b"not really a video")
        thumbs = MagicMock()
        thumbs.get_or_create = AsyncMock(return_value=tmp_path / "thumb.jpg")

        attachments = await resolve_attachments(
            "![Video](../videos/clip.mp4)", LocalTreeAccessor(tmp_path), thumbs,
        )
        assert len(attachments) == 1
        assert attachments[0].is_video
        assert attachments[0].thumbnail == tmp_path / "thumb.jpg"
        thumbs.get_or_create.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unknown_type_is_not_video(self, tmp_path):
        (tmp_path / "notes.bin").write_bytes(b"\x00")
        attachments = await resolve_attachments("![x](notes.bin)", LocalTreeAccessor(tmp_path))
        assert len(attachments) == 1
        assert not attachments[0].is_video


class TestThumbnailCache:
    """Video thumbnails, generated once and reused."""

    def test_key_is_deterministic_per_location(self, tmp_path):
        cache = ThumbnailCache(tmp_path)
        a = TreeNode("videos/2024/05/a.mp4", "a.mp4", is_file=True)
        b = TreeNode("videos/2024/05/b.mp4", "b.mp4", is_file=True)
        assert cache.thumbnail_path(a) == cache.thumbnail_path(a)
        assert cache.thumbnail_path(a) != cache.thumbnail_path(b)
        assert cache.thumbnail_path(a).name.startswith("thumb_")
        assert cache.thumbnail_path(a).suffix == ".jpg"

    @pytest.mark.asyncio
    async def test_existing_thumbnail_reused(self, tmp_path):
        (tmp_path / "clip.mp4").write_bytes(b"v")
        tree = LocalTreeAccessor(tmp_path)
        node = await tree.find_child(await tree.root(), "clip.mp4")
        cache = ThumbnailCache(tmp_path / "thumbs")
        target = cache.thumbnail_path(node)
        target.parent.mkdir(parents=True)
        target.write_bytes(b"cached")

        with patch("handymemo.attachments.extract_frame") as extract:
            assert await cache.get_or_create(tree, node) == target
            extract.assert_not_called()

    @pytest.mark.asyncio
    async def test_generates_jpeg(self, tmp_path):
        from PIL import Image

        (tmp_path / "clip.mp4").write_bytes(b"v")
        tree = LocalTreeAccessor(tmp_path)
        node = await tree.find_child(await tree.root(), "clip.mp4")
        cache = ThumbnailCache(tmp_path / "thumbs")

        with patch("handymemo.attachments.extract_frame", return_value=_png_bytes()) as extract:
            path = await cache.get_or_create(tree, node)

        assert path == cache.thumbnail_path(node)
        extract.assert_called_once_with(tmp_path.resolve() / "clip.mp4")
        with Image.open(path) as img:
            assert img.format == "JPEG"
            assert img.size == (8, 6)
        assert list(Path(cache.cache_dir).glob("*.tmp")) == []

    @pytest.mark.asyncio
    async def test_failure_yields_none(self, tmp_path):
        (tmp_path / "clip.mp4").write_bytes(b"v")
        tree = LocalTreeAccessor(tmp_path)
        node = await tree.find_child(await tree.root(), "clip.mp4")
        cache = ThumbnailCache(tmp_path / "thumbs")

        with patch("handymemo.attachments.extract_frame", side_effect=IOError("no frame")):
            assert await cache.get_or_create(tree, node) is None
        assert not cache.thumbnail_path(node).exists()

    @pytest.mark.asyncio
    async def test_tree_without_local_paths(self, tmp_path):
        """Trees that only expose bytes are copied to a temp file first."""
        node = TreeNode("videos/clip.mp4", "clip.mp4", is_file=True)
        tree = MagicMock(spec=["read_bytes"])
        tree.read_bytes = AsyncMock(return_value=b"video-bytes")
        cache = ThumbnailCache(tmp_path / "thumbs")
        seen = {}

        def fake_extract(source):
            seen["suffix"] = source.suffix
            seen["data"] = source.read_bytes()
            return _png_bytes()

        with patch("handymemo.attachments.extract_frame", side_effect=fake_extract):
            path = await cache.get_or_create(tree, node)

        assert path is not None and path.exists()
        assert seen == {"suffix": ".mp4", "data": b"video-bytes"}
