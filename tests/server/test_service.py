"""Tests for the SearchService class."""

from __future__ import annotations

from pathlib import Path

import pytest
from aiohttp import test_utils

from conversation_search.indexer import DataIndexer, IndexerConfig
from conversation_search.server.config import AppConfig, ServerConfig, StoreConfig
from conversation_search.server.service import SearchService
from conversation_search.server.store_watcher import StoreWatcher
from conversation_search.store import JsonFileStore, MemoryStore


@pytest.fixture
def app_config(tmp_path: Path) -> AppConfig:
    """Config rooted in a temp directory, without scheduled builds."""
    return AppConfig(
        state_dir=tmp_path / "state",
        server=ServerConfig(host="127.0.0.1", port=8888),
        store=StoreConfig(path=tmp_path / "store"),
        indexer=IndexerConfig(schedule=False),
    )


@pytest.fixture
def memory_service(app_config: AppConfig, sample_store: MemoryStore) -> SearchService:
    return SearchService(config=app_config, store=sample_store)


def _client(service: SearchService) -> test_utils.TestClient:
    return test_utils.TestClient(test_utils.TestServer(service.api.create_app()))


# --- Tests for SearchService creation ---


class TestSearchServiceCreation:
    """Tests for SearchService initialization."""

    def test_creates_default_components(self, app_config: AppConfig) -> None:
        service = SearchService(config=app_config)

        assert isinstance(service.store, JsonFileStore)
        assert service.store.root == app_config.store.path
        assert isinstance(service.indexer, DataIndexer)
        assert service.search_engine.indexer is service.indexer
        assert service.api.indexer is service.indexer
        assert service.api.search_engine is service.search_engine
        assert service.api.search_config is app_config.search
        assert isinstance(service.store_watcher, StoreWatcher)

    def test_no_watcher_for_memory_store(self, memory_service: SearchService) -> None:
        assert memory_service.store_watcher is None

    def test_no_watcher_when_disabled(self, app_config: AppConfig) -> None:
        app_config.store.watch = False
        service = SearchService(config=app_config)
        assert service.store_watcher is None

    def test_accepts_injected_components(
        self, app_config: AppConfig, sample_store: MemoryStore, indexer: DataIndexer
    ) -> None:
        service = SearchService(config=app_config, store=sample_store, indexer=indexer)

        assert service.indexer is indexer
        assert service.search_engine.indexer is indexer

    def test_host_and_port(self, memory_service: SearchService) -> None:
        assert memory_service.host == "127.0.0.1"
        assert memory_service.port == 8888

    def test_is_running_initially_false(self, memory_service: SearchService) -> None:
        assert memory_service.is_running is False


# --- Tests for lifecycle ---


class TestSearchServiceLifecycle:
    """Tests for SearchService start/stop."""

    async def test_start_sets_running(self, memory_service: SearchService) -> None:
        try:
            await memory_service.start(serve_http=False)
            assert memory_service.is_running is True
        finally:
            await memory_service.stop()

        assert memory_service.is_running is False

    async def test_start_twice_is_noop(self, memory_service: SearchService) -> None:
        try:
            await memory_service.start(serve_http=False)
            await memory_service.start(serve_http=False)
            assert memory_service.is_running is True
        finally:
            await memory_service.stop()

    async def test_stop_twice_is_noop(self, memory_service: SearchService) -> None:
        await memory_service.start(serve_http=False)
        await memory_service.stop()
        await memory_service.stop()
        assert memory_service.is_running is False

    async def test_start_loads_persisted_index(
        self, app_config: AppConfig, sample_store: MemoryStore
    ) -> None:
        first = SearchService(config=app_config, store=sample_store)
        await first.indexer.build_index()

        second = SearchService(config=app_config, store=sample_store)
        try:
            await second.start(serve_http=False)
            assert second.indexer.get_index_stats().conversation_count == 2
        finally:
            await second.stop()

    async def test_start_runs_watcher(self, app_config: AppConfig) -> None:
        service = SearchService(config=app_config)
        try:
            await service.start(serve_http=False)
            assert service.store_watcher.is_running is True
        finally:
            await service.stop()

        assert service.store_watcher.is_running is False

    async def test_serves_http(self, app_config: AppConfig, sample_store: MemoryStore) -> None:
        app_config.server.port = 18765
        service = SearchService(config=app_config, store=sample_store)
        try:
            await service.start()
            assert service._runner is not None
            assert service._site is not None
        finally:
            await service.stop()

        assert service._runner is None


# --- End-to-end through the aiohttp app ---


class TestSearchServiceHttp:
    """Requests through the real aiohttp application."""

    async def test_rebuild_then_search(self, memory_service: SearchService) -> None:
        async with _client(memory_service) as client:
            resp = await client.post("/index/rebuild", json={"force": True})
            assert resp.status == 200
            assert (await resp.json())["status"] == "completed"

            resp = await client.get("/search/conversations", params={"q": "login"})
            data = await resp.json()
            assert [r["conversation"]["id"] for r in data["results"]] == ["c1"]

            resp = await client.get(
                "/search/messages", params={"q": "migration", "sender": "user"}
            )
            data = await resp.json()
            assert [r["message"]["id"] for r in data["results"]] == ["m3"]

    async def test_rebuild_without_body(self, memory_service: SearchService) -> None:
        async with _client(memory_service) as client:
            resp = await client.post("/index/rebuild")
            assert resp.status == 200
            assert (await resp.json())["result"]["forced"] is False

    async def test_incremental_update(
        self, memory_service: SearchService, sample_store: MemoryStore, make_conversation
    ) -> None:
        await memory_service.indexer.build_index()
        await sample_store.save_conversation(make_conversation(id="c3", title="Payment retries"))

        async with _client(memory_service) as client:
            resp = await client.post("/index/conversations/c3")
            assert resp.status == 200

            resp = await client.get("/search/conversations", params={"q": "payment"})
            data = await resp.json()
            assert [r["conversation"]["id"] for r in data["results"]] == ["c3"]

            resp = await client.delete("/index/conversations/c3")
            assert (await resp.json()) == {"removed": True, "id": "c3"}

    async def test_bad_parameter(self, memory_service: SearchService) -> None:
        async with _client(memory_service) as client:
            resp = await client.get("/search/conversations", params={"q": "x", "limit": "ten"})
            assert resp.status == 400
