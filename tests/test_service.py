"""Tests for creating memos, attaching media and loading memo details."""

import sqlite3
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from handymemo.scheduler import WORK_NAME_ONETIME, WorkScheduler
from handymemo.service import MemoService, links_block, unknown_type_message
from handymemo.tree import LocalTreeAccessor
from handymemo.types import IndexingStatus, IndexResult, MemoListItem, Outcome, to_epoch_ms

from conftest import SCENARIO_MEMO_ID, SCENARIO_TEXT, make_entry

JUNE_FIRST = datetime(2024, 6, 1, 9, 30, 5)


def _service(settings, store, **kwargs) -> MemoService:
    kwargs.setdefault("zone", timezone.utc)
    return MemoService(settings, store, **kwargs)


class TestCreateMemo:

    @pytest.mark.asyncio
    async def test_writes_file_and_caches_it(self, settings, store, memo_root):
        entry = await _service(settings, store).create_memo("Buy milk", now=JUNE_FIRST)

        assert entry.path == "memos/2024/06/20240601093005.md"
        assert entry.display_name == "20240601093005"
        assert entry.created_at_ms == to_epoch_ms(JUNE_FIRST.replace(tzinfo=timezone.utc))
        assert (memo_root / entry.path).read_text(encoding="utf-8") == "Buy milk"
        assert store.get(entry.path) == entry

    @pytest.mark.asyncio
    async def test_no_root(self, store):
        service = _service(SimpleNamespace(root_tree_location=None), store)
        assert await service.create_memo("text") is None
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_existing_file_is_not_overwritten(self, settings, store, memo_root):
        """A second memo in the same second fails and leaves the cache alone."""
        existing = memo_root / "memos" / "2024" / "05" / f"{SCENARIO_MEMO_ID}.md"
        now = datetime(2024, 5, 15, 12, 0, 0)

        assert await _service(settings, store).create_memo("clobber", now=now) is None
        assert existing.read_text(encoding="utf-8") == SCENARIO_TEXT
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_missing_root_directory(self, tmp_path, store):
        settings = SimpleNamespace(root_tree_location=str(tmp_path / "gone"))
        assert await _service(settings, store).create_memo("text") is None

    @pytest.mark.asyncio
    async def test_failed_write_removes_file(self, settings, store, memo_root):
        """A write error leaves no empty memo behind, so a retry succeeds."""
        service = _service(settings, store)
        with patch.object(LocalTreeAccessor, "write_text", side_effect=OSError("No space left on device")):
            assert await service.create_memo("lost", now=JUNE_FIRST) is None

        assert not (memo_root / "memos/2024/06/20240601093005.md").exists()
        assert store.count() == 0
        entry = await service.create_memo("saved", now=JUNE_FIRST)
        assert entry.path == "memos/2024/06/20240601093005.md"

    @pytest.mark.asyncio
    async def test_cache_failure_returns_none(self, settings, store, memo_root):
        """The file is kept for the next indexing pass when caching fails."""
        failing = MagicMock(wraps=store)
        failing.insert.side_effect = sqlite3.OperationalError("disk I/O error")

        assert await _service(settings, failing).create_memo("x", now=JUNE_FIRST) is None
        assert (memo_root / "memos/2024/06/20240601093005.md").read_text(encoding="utf-8") == "x"
        assert store.count() == 0

    @pytest.mark.asyncio
    async def test_aware_time_used_as_is(self, settings, store):
        now = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
        entry = await _service(settings, store, zone=None).create_memo("x", now=now)
        assert entry.display_name == "20240102030405"


class TestAttachMedia:

    @pytest.mark.asyncio
    async def test_image_and_video(self, settings, store, memo_root, tmp_path):
        photo = tmp_path / "photo.png"
        photo.write_bytes(b"png-bytes")
        clip = tmp_path / "clip.mp4"
        clip.write_bytes(b"mp4-bytes")

        text = await _service(settings, store).attach_media([photo, clip], now=JUNE_FIRST)

        assert text == (
            "\n![Image](../../../images/2024/06/20240601093005-0.png)"
            "\n\n![Video](../../../videos/2024/06/20240601093005-1.mp4)\n"
        )
        assert (memo_root / "images/2024/06/20240601093005-0.png").read_bytes() == b"png-bytes"
        assert (memo_root / "videos/2024/06/20240601093005-1.mp4").read_bytes() == b"mp4-bytes"

    @pytest.mark.asyncio
    async def test_unknown_type_stops_batch(self, settings, store, memo_root, tmp_path):
        photo = tmp_path / "photo.jpg"
        photo.write_bytes(b"jpg")
        odd = tmp_path / "blob.unknownext"
        odd.write_bytes(b"?")
        later = tmp_path / "later.jpg"
        later.write_bytes(b"jpg")

        text = await _service(settings, store).attach_media([photo, odd, later], now=JUNE_FIRST)

        assert text == unknown_type_message(None) + links_block([
            "![Image](../../../images/2024/06/20240601093005-0.jpg)",
        ])
        assert not (memo_root / "images/2024/06/20240601093005-2.jpg").exists()

    @pytest.mark.asyncio
    async def test_unreadable_source_skipped(self, settings, store, tmp_path):
        photo = tmp_path / "photo.jpg"
        photo.write_bytes(b"jpg")

        text = await _service(settings, store).attach_media(
            [tmp_path / "missing.jpg", photo], now=JUNE_FIRST,
        )

        assert text == "\n![Image](../../../images/2024/06/20240601093005-1.jpg)\n"

    @pytest.mark.asyncio
    async def test_nothing_attached(self, settings, store):
        assert await _service(settings, store).attach_media([]) == ""
        no_root = _service(SimpleNamespace(root_tree_location=None), store)
        assert await no_root.attach_media(["a.jpg"]) == ""

    def test_links_block(self):
        assert links_block([]) == ""
        assert links_block(["a"]) == "\na\n"
        assert links_block(["a", "b"]) == "\na\n\nb\n"


class TestMemoDetail:

    @pytest.mark.asyncio
    async def test_scenario_detail(self, settings, store, memo_root):
        entry = make_entry(SCENARIO_MEMO_ID, 0, SCENARIO_TEXT)
        store.insert(entry)

        record = await _service(settings, store).get_memo_detail(
            MemoListItem(entry.path, entry.display_name, entry.created_at_ms),
        )

        assert record.id == SCENARIO_MEMO_ID
        assert record.time == datetime(2024, 5, 15, 12, tzinfo=timezone.utc)
        assert record.body_text == "Hello [Media Inserted]"
        assert len(record.attachments) == 1
        assert record.attachments[0].location.location == f"images/2024/05/{SCENARIO_MEMO_ID}-0.jpg"
        assert not record.attachments[0].is_video

    @pytest.mark.asyncio
    async def test_by_path(self, settings, store):
        store.insert(make_entry(SCENARIO_MEMO_ID, 0, "plain"))
        record = await _service(settings, store).get_memo_detail(f"memos/2024/05/{SCENARIO_MEMO_ID}.md")
        assert record.body_text == "plain"
        assert record.attachments == []

    @pytest.mark.asyncio
    async def test_not_cached(self, settings, store):
        assert await _service(settings, store).get_memo_detail("memos/nope.md") is None

    @pytest.mark.asyncio
    async def test_cache_read_failure(self, settings, store):
        failing = MagicMock(wraps=store)
        failing.get.side_effect = sqlite3.OperationalError("database is locked")
        assert await _service(settings, failing).get_memo_detail(
            f"memos/2024/05/{SCENARIO_MEMO_ID}.md",
        ) is None

    @pytest.mark.asyncio
    async def test_bad_cached_name(self, settings, store):
        store.insert(make_entry("draft", 0, "x", path="memos/draft.md"))
        assert await _service(settings, store).get_memo_detail("memos/draft.md") is None

    @pytest.mark.asyncio
    async def test_tree_gone(self, tmp_path, store):
        store.insert(make_entry(SCENARIO_MEMO_ID, 0, SCENARIO_TEXT))
        settings = SimpleNamespace(root_tree_location=str(tmp_path / "gone"))
        assert await _service(settings, store).get_memo_detail(
            f"memos/2024/05/{SCENARIO_MEMO_ID}.md",
        ) is None


class TestManualIndexing:

    @pytest.mark.asyncio
    async def test_queues_manual_pass(self, settings, store):
        scheduler = WorkScheduler()
        indexer = MagicMock()

        async def run_index_pass(is_manual=False):
            assert is_manual
            return IndexResult(Outcome.SUCCESS)

        indexer.run_index_pass = run_index_pass
        service = _service(settings, store, scheduler=scheduler, indexer=indexer)

        assert service.trigger_manual_indexing()
        await scheduler.wait_idle(WORK_NAME_ONETIME, timeout=2)
        assert scheduler.status() is IndexingStatus.SUCCEEDED
        await scheduler.shutdown()

    def test_requires_scheduler(self, settings, store):
        with pytest.raises(RuntimeError):
            _service(settings, store).trigger_manual_indexing()
