"""HTTP search service for Conversation Search."""

from __future__ import annotations

from conversation_search.server.api import SearchAPI
from conversation_search.server.config import (
    AppConfig,
    ConfigError,
    ConfigManager,
    SearchConfig,
    ServerConfig,
    StoreConfig,
    apply_env_overrides,
    expand_paths,
)
from conversation_search.server.service import SearchService
from conversation_search.server.store_watcher import StoreWatcher

__all__ = [
    # Config
    "AppConfig",
    "ConfigError",
    "ConfigManager",
    "SearchConfig",
    "ServerConfig",
    "StoreConfig",
    "apply_env_overrides",
    "expand_paths",
    # Store watching
    "StoreWatcher",
    # API and Service
    "SearchAPI",
    "SearchService",
]
