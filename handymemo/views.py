"""
Memo list view state.

The list shows either one calendar month or the results of a search over
the whole cache. Three inputs drive it: the search text (debounced), the
displayed month and a refresh counter. Any change rebuilds the pager and
hands it to subscribers; the previous pager is invalidated.
"""

import asyncio
import logging
from datetime import tzinfo
from typing import Callable, Optional

from .cache_store import DEFAULT_PAGE_SIZE, CacheStore, Pager
from .scheduler import WORK_NAME_ONETIME, WorkScheduler, WorkState
from .types import IndexingStatus, IndexResult, YearMonth

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE_SECONDS = 0.3

Subscriber = Callable[[Pager], None]


class MemoListView:
    """
    Reactive list state over the memo cache.

    Search text changes are debounced on the running event loop; month and
    refresh changes apply immediately. Subscribers are called with each new
    pager, and once with the current pager when they subscribe.
    """

    def __init__(
        self,
        store: CacheStore,
        page_size: int = DEFAULT_PAGE_SIZE,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        zone: Optional[tzinfo] = None,
        current_month: Optional[Callable[[], YearMonth]] = None,
    ):
        self._store = store
        self._page_size = page_size
        self._debounce_seconds = debounce_seconds
        self._zone = zone
        self._current_month = current_month or (lambda: YearMonth.from_current(zone))

        self._search_text = ""
        self._applied_search = ""
        self._display_month = self._current_month()
        self._refresh_count = 0
        self._indexing_status = IndexingStatus.IDLE

        self._subscribers: list[Subscriber] = []
        self._debounce_handle: Optional[asyncio.TimerHandle] = None
        self._unbind: Optional[Callable[[], None]] = None
        self._pager = self._build_pager()

    # -------------------------------------------------------------------------
    # Inputs
    # -------------------------------------------------------------------------

    @property
    def search_text(self) -> str:
        """Text as typed; may not be applied yet."""
        return self._search_text

    @property
    def applied_search(self) -> str:
        """Search text the current pager was built from."""
        return self._applied_search

    def set_search_text(self, text: str, *, immediate: bool = False) -> None:
        """
        Update the search text.

        Applied after ``debounce_seconds`` of no further changes, or at once
        with ``immediate=True``. Debouncing needs a running event loop.
        """
        self._search_text = text
        self._cancel_debounce()
        if immediate or self._debounce_seconds <= 0:
            self._apply_search(text)
            return
        loop = asyncio.get_running_loop()
        self._debounce_handle = loop.call_later(
            self._debounce_seconds, self._apply_search, text,
        )

    def flush_search(self) -> None:
        """Apply a debounced search change now."""
        if self._debounce_handle is not None:
            self._cancel_debounce()
            self._apply_search(self._search_text)

    def _cancel_debounce(self) -> None:
        if self._debounce_handle is not None:
            self._debounce_handle.cancel()
            self._debounce_handle = None

    def _apply_search(self, text: str) -> None:
        self._debounce_handle = None
        if text == self._applied_search:
            return
        self._applied_search = text
        self._recompute()

    @property
    def display_month(self) -> YearMonth:
        return self._display_month

    @display_month.setter
    def display_month(self, month: YearMonth) -> None:
        if month == self._display_month:
            return
        self._display_month = month
        self._recompute()

    @property
    def refresh_count(self) -> int:
        return self._refresh_count

    def refresh(self) -> None:
        """Rebuild the pager with unchanged inputs."""
        self._refresh_count += 1
        self._recompute()

    # -------------------------------------------------------------------------
    # Output
    # -------------------------------------------------------------------------

    @property
    def pager(self) -> Pager:
        return self._pager

    @property
    def is_searching(self) -> bool:
        return bool(self._applied_search.strip())

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """
        Receive every new pager.

        Returns:
            Function that unsubscribes
        """
        self._subscribers.append(subscriber)
        subscriber(self._pager)

        def unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)
        return unsubscribe

    def _build_pager(self) -> Pager:
        if self.is_searching:
            return self._store.paged_search(self._applied_search, self._page_size)
        return self._store.paged_by_month(
            self._display_month.start_timestamp(self._zone),
            self._display_month.end_timestamp(self._zone),
            self._page_size,
        )

    def _recompute(self) -> None:
        self._pager.invalidate()
        self._pager = self._build_pager()
        logger.debug("List view now showing %s", self._pager.description)
        for subscriber in list(self._subscribers):
            subscriber(self._pager)

    # -------------------------------------------------------------------------
    # Indexing status
    # -------------------------------------------------------------------------

    @property
    def indexing_status(self) -> IndexingStatus:
        return self._indexing_status

    def on_indexing_status(self, status: IndexingStatus) -> None:
        """Track indexing status; a newly succeeded pass refreshes the list."""
        if status == self._indexing_status:
            return
        self._indexing_status = status
        if status is IndexingStatus.SUCCEEDED:
            self.refresh()

    def bind_status(self, scheduler: WorkScheduler, name: str = WORK_NAME_ONETIME) -> None:
        """Follow the state of one named work."""
        if self._unbind is not None:
            self._unbind()

        def listener(work_name: str, state: WorkState, result: Optional[IndexResult]) -> None:
            if work_name == name:
                self.on_indexing_status(state.to_status())

        self._unbind = scheduler.add_listener(listener)
        self.on_indexing_status(scheduler.status(name))

    # -------------------------------------------------------------------------
    # Month navigation
    # -------------------------------------------------------------------------

    def move_to_next_month(self) -> bool:
        """
        Advance one month unless that passes the real current month.

        Returns:
            True if the displayed month changed
        """
        next_month = self._display_month.to_next_month()
        if next_month.is_after(self._current_month()):
            return False
        self.display_month = next_month
        return True

    async def move_to_previous_month(self) -> bool:
        """
        Go back one month unless that precedes the oldest cached memo.

        Returns:
            True if the displayed month changed
        """
        oldest = await asyncio.to_thread(self._store.oldest_created_at)
        if oldest is None:
            return False
        oldest_month = YearMonth.from_timestamp(oldest, self._zone)
        previous = self._display_month.to_previous_month()
        if previous.is_before(oldest_month):
            return False
        self.display_month = previous
        return True

    def reset_to_current_month(self) -> None:
        self.display_month = self._current_month()

    def close(self) -> None:
        self._cancel_debounce()
        if self._unbind is not None:
            self._unbind()
            self._unbind = None
        self._subscribers.clear()
        self._pager.invalidate()
