"""
Application object wiring handymemo together.

MemoApp owns exactly one cache store per process and hands it to every
consumer; nothing else opens the database.
"""

import logging
from datetime import tzinfo
from pathlib import Path
from typing import Callable, Optional

from .attachments import ThumbnailCache
from .cache_store import CacheStore
from .config import AppConfig, SettingsRepository, get_config_dir, load_or_create_config
from .indexer import MemoIndexer
from .intents import EditorRequests
from .lifecycle import AppLifecycle
from .logging_config import configure_ops_log, remove_ops_log
from .protocol import LifecycleStateProvider, TreeAccessor
from .scheduler import WORK_NAME_ONETIME, WorkScheduler, initialize_work
from .service import MemoService
from .tree import open_tree
from .types import IndexingStatus, IndexResult
from .views import MemoListView

logger = logging.getLogger(__name__)


class MemoApp:
    """
    Handy memo application core.

    Example:
        with MemoApp() as app:
            entry = asyncio.run(app.service.create_memo("Hello"))
            items = app.store.list_by_month(start, end, limit=20)
    """

    def __init__(
        self,
        home: Optional[str | Path] = None,
        *,
        config: Optional[AppConfig] = None,
        store: Optional[CacheStore] = None,
        lifecycle: Optional[LifecycleStateProvider] = None,
        tree_factory: Callable[[str], TreeAccessor] = open_tree,
        zone: Optional[tzinfo] = None,
    ) -> None:
        """
        Open (or create) the handymemo home directory.

        Args:
            home: Home directory; resolved via get_config_dir() if not given
            config: Pre-loaded config (skips filesystem config discovery)
            store: Injected cache store (tests); closed by its owner
            lifecycle: Injected foreground state provider
            tree_factory: Opens a tree for a root location
            zone: Zone for memo timestamps (default: device zone)
        """
        if config is not None:
            self._config = config
        else:
            self._config = load_or_create_config(get_config_dir(home))

        self._ops_log_handler = configure_ops_log(self._config.path)

        self.settings = SettingsRepository(self._config)
        self._owns_store = store is None
        self.store = store if store is not None else CacheStore(self._config.cache_db_path)
        self.lifecycle = lifecycle if lifecycle is not None else AppLifecycle()
        self.thumbnails = ThumbnailCache(self._config.thumbnail_dir)
        self.scheduler = WorkScheduler()
        self.indexer = MemoIndexer(
            self.settings,
            self.store,
            self.lifecycle,
            tree_factory=tree_factory,
            parse_concurrency=self._config.indexing.parse_concurrency,
            zone=zone,
        )
        self.service = MemoService(
            self.settings,
            self.store,
            tree_factory=tree_factory,
            thumbnails=self.thumbnails,
            scheduler=self.scheduler,
            indexer=self.indexer,
            zone=zone,
        )
        self.requests = EditorRequests(self.settings)
        self._zone = zone
        self._view: Optional[MemoListView] = None
        self._closed = False
        logger.debug("Opened handymemo home %s", self._config.path)

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def view(self) -> MemoListView:
        """The list view, created on first use."""
        if self._view is None:
            self._view = MemoListView(
                self.store,
                page_size=self._config.view.page_size,
                debounce_seconds=self._config.view.debounce_seconds,
                zone=self._zone,
            )
        return self._view

    def start(self) -> None:
        """
        Register background indexing and follow its status.

        Must be called from a running event loop.
        """
        initialize_work(self.scheduler, self.indexer, self._config.indexing)
        self.view.bind_status(self.scheduler)

    @property
    def indexing_status(self) -> IndexingStatus:
        return self.scheduler.status(WORK_NAME_ONETIME)

    async def index_now(self, is_manual: bool = True) -> IndexResult:
        """Run one pass directly, outside the scheduler."""
        result = await self.indexer.run_index_pass(is_manual=is_manual)
        if result.succeeded and self._view is not None:
            self._view.refresh()
        return result

    async def aclose(self) -> None:
        """Stop background work, then close resources."""
        await self.scheduler.shutdown()
        self.close()

    def close(self) -> None:
        """Close resources (view, store, log handler)."""
        if self._closed:
            return
        self._closed = True
        if self._view is not None:
            self._view.close()
        if self._owns_store:
            self.store.close()
        remove_ops_log(self._ops_log_handler)
        self._ops_log_handler = None

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit - close resources."""
        self.close()
        return False

    def __del__(self):
        """Cleanup on deletion."""
        try:
            self.close()
        except Exception:
            pass  # Suppress errors during garbage collection
