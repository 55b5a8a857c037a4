"""Tests for the memo list view state."""

import asyncio
from datetime import datetime, timezone

import pytest

from handymemo.scheduler import WorkScheduler
from handymemo.types import IndexingStatus, IndexResult, Outcome, YearMonth, to_epoch_ms
from handymemo.views import MemoListView

from conftest import make_entry

MAY = YearMonth(2024, 5)


def _ms(*args) -> int:
    return to_epoch_ms(datetime(*args, tzinfo=timezone.utc))


def _names(pager, n=50) -> list[str]:
    return [i.display_name for i in pager.take(n)]


@pytest.fixture
def filled(store):
    store.replace_all([
        make_entry("20240310080000", _ms(2024, 3, 10, 8), "march groceries"),
        make_entry("20240502090000", _ms(2024, 5, 2, 9), "may groceries"),
        make_entry("20240515120000", _ms(2024, 5, 15, 12), "may notes"),
    ])
    return store


def _view(store, **kwargs) -> MemoListView:
    kwargs.setdefault("zone", timezone.utc)
    kwargs.setdefault("current_month", lambda: MAY)
    return MemoListView(store, **kwargs)


class TestFiltering:

    def test_starts_on_current_month(self, filled):
        view = _view(filled)
        assert view.display_month == MAY
        assert not view.is_searching
        assert _names(view.pager) == ["20240515120000", "20240502090000"]

    def test_search_spans_all_months(self, filled):
        view = _view(filled)
        view.set_search_text("groceries", immediate=True)
        assert view.is_searching
        assert _names(view.pager) == ["20240502090000", "20240310080000"]

    def test_clearing_search_restores_month(self, filled):
        view = _view(filled)
        view.set_search_text("groceries", immediate=True)
        view.set_search_text("  ", immediate=True)
        assert not view.is_searching
        assert _names(view.pager) == ["20240515120000", "20240502090000"]

    def test_changes_invalidate_previous_pager(self, filled):
        view = _view(filled)
        first = view.pager
        view.display_month = YearMonth(2024, 3)
        assert first.invalidated
        assert not view.pager.invalidated
        assert _names(view.pager) == ["20240310080000"]

    def test_setting_same_month_is_noop(self, filled):
        view = _view(filled)
        pager = view.pager
        view.display_month = MAY
        assert view.pager is pager

    def test_subscribe(self, filled):
        view = _view(filled)
        received = []
        unsubscribe = view.subscribe(received.append)
        assert received == [view.pager]

        view.refresh()
        assert len(received) == 2
        assert view.refresh_count == 1

        unsubscribe()
        view.refresh()
        assert len(received) == 2


class TestDebounce:

    @pytest.mark.asyncio
    async def test_rapid_typing_applies_once(self, filled):
        view = _view(filled, debounce_seconds=0.05)
        received = []
        view.subscribe(received.append)

        for partial in ("g", "gr", "gro", "groceries"):
            view.set_search_text(partial)
            await asyncio.sleep(0.005)
        assert view.applied_search == ""
        assert view.search_text == "groceries"

        await asyncio.sleep(0.1)
        assert view.applied_search == "groceries"
        assert len(received) == 2

    @pytest.mark.asyncio
    async def test_flush_search(self, filled):
        view = _view(filled, debounce_seconds=10)
        view.set_search_text("notes")
        view.flush_search()
        assert _names(view.pager) == ["20240515120000"]
        view.close()

    @pytest.mark.asyncio
    async def test_same_text_does_not_rebuild(self, filled):
        view = _view(filled, debounce_seconds=0.01)
        view.set_search_text("may", immediate=True)
        pager = view.pager
        view.set_search_text("may")
        await asyncio.sleep(0.05)
        assert view.pager is pager

    def test_debounce_needs_loop(self, filled):
        view = _view(filled)
        with pytest.raises(RuntimeError):
            view.set_search_text("x")

    def test_zero_debounce_applies_immediately(self, filled):
        view = _view(filled, debounce_seconds=0)
        view.set_search_text("notes")
        assert view.applied_search == "notes"


class TestMonthNavigation:

    def test_next_month_stops_at_current(self, filled):
        view = _view(filled)
        assert not view.move_to_next_month()
        assert view.display_month == MAY

    def test_next_month_from_past(self, filled):
        view = _view(filled)
        view.display_month = YearMonth(2024, 3)
        assert view.move_to_next_month()
        assert view.display_month == YearMonth(2024, 4)

    @pytest.mark.asyncio
    async def test_previous_month_stops_at_oldest(self, filled):
        view = _view(filled)
        assert await view.move_to_previous_month()
        assert await view.move_to_previous_month()
        assert view.display_month == YearMonth(2024, 3)
        assert not await view.move_to_previous_month()
        assert view.display_month == YearMonth(2024, 3)

    @pytest.mark.asyncio
    async def test_previous_month_with_empty_cache(self, store):
        view = _view(store)
        assert not await view.move_to_previous_month()
        assert view.display_month == MAY

    def test_reset_to_current_month(self, filled):
        view = _view(filled)
        view.display_month = YearMonth(2023, 1)
        view.reset_to_current_month()
        assert view.display_month == MAY


class TestIndexingStatus:

    def test_success_refreshes_once(self, filled):
        view = _view(filled)
        view.on_indexing_status(IndexingStatus.RUNNING)
        assert view.refresh_count == 0
        view.on_indexing_status(IndexingStatus.SUCCEEDED)
        assert view.refresh_count == 1
        view.on_indexing_status(IndexingStatus.SUCCEEDED)
        assert view.refresh_count == 1
        assert view.indexing_status is IndexingStatus.SUCCEEDED

    def test_failure_does_not_refresh(self, filled):
        view = _view(filled)
        view.on_indexing_status(IndexingStatus.FAILED)
        assert view.refresh_count == 0

    @pytest.mark.asyncio
    async def test_bound_to_scheduler(self, store):
        view = _view(store)
        scheduler = WorkScheduler()
        view.bind_status(scheduler, "job")

        async def index() -> IndexResult:
            store.insert(make_entry("20240520000000", _ms(2024, 5, 20)))
            return IndexResult(Outcome.SUCCESS, indexed_count=1)

        scheduler.enqueue_unique("job", index)
        await scheduler.wait_idle("job", timeout=2)

        assert view.indexing_status is IndexingStatus.SUCCEEDED
        assert view.refresh_count == 1
        assert _names(view.pager) == ["20240520000000"]

        view.close()
        scheduler.enqueue_unique("job", index)
        await scheduler.wait_idle("job", timeout=2)
        assert view.refresh_count == 1
        await scheduler.shutdown()
