"""SearchService class integrating all search components.

This module provides the main orchestration service that wires together:
- ConversationStore: the documents being searched (JsonFileStore by default)
- DataIndexer: index building, persistence and scheduled rebuilds
- SearchEngine: ranked queries over the indexes
- SearchAPI: HTTP API endpoints
- StoreWatcher: incremental index updates as store files change
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from aiohttp import web

from conversation_search.indexer import DataIndexer
from conversation_search.search import SearchEngine
from conversation_search.server.api import SearchAPI
from conversation_search.server.config import AppConfig
from conversation_search.server.store_watcher import StoreWatcher
from conversation_search.store import ConversationStore, JsonFileStore

if TYPE_CHECKING:
    from aiohttp.web import AppRunner, TCPSite

logger = logging.getLogger(__name__)


@dataclass
class SearchService:
    """Main service orchestrating the search components.

    Handles lifecycle management (startup, shutdown). Every component can
    be injected for testing; missing ones are built from ``config``.
    """

    config: AppConfig = field(default_factory=AppConfig)

    # Injected components (for testability)
    store: ConversationStore | None = None
    indexer: DataIndexer | None = None
    search_engine: SearchEngine | None = None
    api: SearchAPI | None = None
    store_watcher: StoreWatcher | None = None

    # Internal state
    _runner: AppRunner | None = field(default=None, repr=False)
    _site: TCPSite | None = field(default=None, repr=False)
    _running: bool = field(default=False, repr=False)

    def __post_init__(self) -> None:
        """Initialize components if not injected."""
        if self.store is None:
            self.store = JsonFileStore(self.config.store.path)

        if self.indexer is None:
            self.indexer = DataIndexer(
                store=self.store,
                index_dir=self.config.index_dir,
                config=self.config.indexer,
            )

        if self.search_engine is None:
            self.search_engine = SearchEngine(self.indexer)

        if self.api is None:
            self.api = SearchAPI(
                indexer=self.indexer,
                search_engine=self.search_engine,
                search_config=self.config.search,
            )

        # File watching only applies to the on-disk store
        if (
            self.store_watcher is None
            and self.config.store.watch
            and isinstance(self.store, JsonFileStore)
        ):
            self.store_watcher = StoreWatcher(store=self.store, indexer=self.indexer)

    @property
    def is_running(self) -> bool:
        """Return whether the service is currently running."""
        return self._running

    @property
    def host(self) -> str:
        return self.config.server.host

    @property
    def port(self) -> int:
        return self.config.server.port

    async def start(self, serve_http: bool = True) -> None:
        """Start the search service.

        Startup sequence:
        1. Load the persisted index and start the rebuild schedule
        2. Start the store watcher
        3. Start the HTTP server

        Args:
            serve_http: Bind the HTTP server. Tests drive the API through
                create_app() instead.
        """
        if self._running:
            logger.warning("Service already running")
            return

        logger.info("Starting search service...")

        await self.indexer.initialize()
        stats = self.indexer.get_index_stats()
        logger.info(
            f"Search index ready: {stats.conversation_count} conversations, "
            f"{stats.message_count} messages"
        )

        if self.store_watcher is not None:
            await self.store_watcher.start()
            logger.info("Store watcher started")

        if serve_http:
            app = self.api.create_app()
            self._runner = web.AppRunner(app)
            await self._runner.setup()
            self._site = web.TCPSite(self._runner, self.host, self.port)
            await self._site.start()
            logger.info(f"HTTP server listening on http://{self.host}:{self.port}")

        self._running = True

    async def stop(self) -> None:
        """Stop the search service gracefully.

        Shutdown sequence:
        1. Stop accepting new HTTP connections
        2. Stop the store watcher
        3. Cancel the rebuild schedule and wait for a running build
        """
        if not self._running:
            return

        logger.info("Stopping search service...")

        if self._site:
            await self._site.stop()
            self._site = None

        if self._runner:
            await self._runner.cleanup()
            self._runner = None
            logger.info("HTTP server stopped")

        if self.store_watcher is not None:
            await self.store_watcher.stop()
            logger.info("Store watcher stopped")

        await self.indexer.stop()
        logger.info("Data indexer stopped")

        self._running = False
        logger.info("Search service stopped")
