"""Config manager for the search service."""

from __future__ import annotations

import os
import tempfile
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from conversation_search.indexer import IndexerConfig

DEFAULT_STATE_DIR = Path("~/.conversation-search")
DEFAULT_CONFIG_PATH = DEFAULT_STATE_DIR / "config.yaml"

ENV_PREFIX = "CONVERSATION_SEARCH_"


class ConfigError(Exception):
    """Raised when the configuration file holds invalid values."""


# ---------------------------------------------------------------------------
# Section dataclasses
# ---------------------------------------------------------------------------


def _number(
    section: str, key: str, value: object, cast: type, positive: bool = False
) -> float | int:
    if isinstance(value, bool):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
    try:
        result = cast(value)
    except (TypeError, ValueError) as e:
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}") from e
    if result < 0:
        raise ConfigError(f"{section}.{key} must not be negative, got {value!r}")
    if positive and result == 0:
        raise ConfigError(f"{section}.{key} must be greater than zero, got {value!r}")
    return result


def _flag(section: str, key: str, value: object) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"{section}.{key} must be true or false, got {value!r}")
    return value


def _indexer_to_dict(config: IndexerConfig) -> dict:
    return {
        "startup_delay": config.startup_delay,
        "rebuild_interval": config.rebuild_interval,
        "schedule": config.schedule,
        "persist": config.persist,
        "prune_missing": config.prune_missing,
    }


def _indexer_from_dict(data: dict) -> IndexerConfig:
    defaults = IndexerConfig()
    return IndexerConfig(
        startup_delay=_number(
            "indexer", "startup_delay", data.get("startup_delay", defaults.startup_delay), float
        ),
        rebuild_interval=_number(
            "indexer",
            "rebuild_interval",
            data.get("rebuild_interval", defaults.rebuild_interval),
            float,
            positive=True,
        ),
        schedule=_flag("indexer", "schedule", data.get("schedule", defaults.schedule)),
        persist=_flag("indexer", "persist", data.get("persist", defaults.persist)),
        prune_missing=_flag(
            "indexer", "prune_missing", data.get("prune_missing", defaults.prune_missing)
        ),
    )


@dataclass
class SearchConfig:
    """Defaults and caps applied to API queries."""

    conversation_limit: int = 50
    message_limit: int = 100
    max_limit: int = 100
    fuzzy: bool = True
    min_score: float = 0.0

    def to_dict(self) -> dict:
        """Serialize to dict for YAML storage."""
        return {
            "conversation_limit": self.conversation_limit,
            "message_limit": self.message_limit,
            "max_limit": self.max_limit,
            "fuzzy": self.fuzzy,
            "min_score": self.min_score,
        }

    @classmethod
    def from_dict(cls, data: dict) -> SearchConfig:
        """Deserialize from dict."""
        defaults = cls()
        config = cls(
            conversation_limit=_number(
                "search",
                "conversation_limit",
                data.get("conversation_limit", defaults.conversation_limit),
                int,
            ),
            message_limit=_number(
                "search", "message_limit", data.get("message_limit", defaults.message_limit), int
            ),
            max_limit=_number("search", "max_limit", data.get("max_limit", defaults.max_limit), int),
            fuzzy=_flag("search", "fuzzy", data.get("fuzzy", defaults.fuzzy)),
            min_score=_number("search", "min_score", data.get("min_score", defaults.min_score), float),
        )
        if config.min_score > 100:
            raise ConfigError(f"search.min_score must be at most 100, got {config.min_score}")
        return config


@dataclass
class ServerConfig:
    """HTTP server bind settings."""

    host: str = "127.0.0.1"
    port: int = 8080

    def to_dict(self) -> dict:
        """Serialize to dict for YAML storage."""
        return {"host": self.host, "port": self.port}

    @classmethod
    def from_dict(cls, data: dict) -> ServerConfig:
        """Deserialize from dict."""
        port = _number("server", "port", data.get("port", 8080), int)
        if not 0 < port < 65536:
            raise ConfigError(f"server.port out of range: {port}")
        return cls(host=str(data.get("host", "127.0.0.1")), port=port)


@dataclass
class StoreConfig:
    """Location of the JSON conversation store."""

    path: Path = field(default_factory=lambda: DEFAULT_STATE_DIR / "store")
    watch: bool = True

    def to_dict(self) -> dict:
        """Serialize to dict for YAML storage."""
        return {"path": str(self.path), "watch": self.watch}

    @classmethod
    def from_dict(cls, data: dict) -> StoreConfig:
        """Deserialize from dict."""
        defaults = cls()
        return cls(
            path=Path(data.get("path", defaults.path)),
            watch=_flag("store", "watch", data.get("watch", defaults.watch)),
        )


@dataclass
class AppConfig:
    """Complete service configuration."""

    state_dir: Path = DEFAULT_STATE_DIR
    server: ServerConfig = field(default_factory=ServerConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    indexer: IndexerConfig = field(default_factory=IndexerConfig)
    search: SearchConfig = field(default_factory=SearchConfig)

    @property
    def index_dir(self) -> Path:
        return self.state_dir / "index"

    def to_dict(self) -> dict:
        """Serialize to dict for YAML storage."""
        return {
            "state_dir": str(self.state_dir),
            "server": self.server.to_dict(),
            "store": self.store.to_dict(),
            "indexer": _indexer_to_dict(self.indexer),
            "search": self.search.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> AppConfig:
        """Deserialize from dict.

        Raises:
            ConfigError: If a section is not a mapping or holds invalid values.
        """
        sections = {}
        for name in ("server", "store", "indexer", "search"):
            section = data.get(name) or {}
            if not isinstance(section, dict):
                raise ConfigError(f"Config section '{name}' must be a mapping")
            sections[name] = section

        return cls(
            state_dir=Path(data.get("state_dir", DEFAULT_STATE_DIR)),
            server=ServerConfig.from_dict(sections["server"]),
            store=StoreConfig.from_dict(sections["store"]),
            indexer=_indexer_from_dict(sections["indexer"]),
            search=SearchConfig.from_dict(sections["search"]),
        )


def apply_env_overrides(config: AppConfig, environ: Mapping[str, str] | None = None) -> AppConfig:
    """Override config values from CONVERSATION_SEARCH_* environment variables.

    Args:
        config: Config to update in place.
        environ: Environment mapping. Uses os.environ if not provided.

    Returns:
        The same config, for chaining.

    Raises:
        ConfigError: If a numeric variable cannot be parsed.
    """
    env = os.environ if environ is None else environ

    if host := env.get(f"{ENV_PREFIX}HOST"):
        config.server.host = host
    if port := env.get(f"{ENV_PREFIX}PORT"):
        config.server.port = _number("env", f"{ENV_PREFIX}PORT", port, int)
    if state_dir := env.get(f"{ENV_PREFIX}STATE_DIR"):
        config.state_dir = Path(state_dir)
    if store_path := env.get(f"{ENV_PREFIX}STORE_PATH"):
        config.store.path = Path(store_path)
    if interval := env.get(f"{ENV_PREFIX}REBUILD_INTERVAL"):
        config.indexer.rebuild_interval = _number(
            "env", f"{ENV_PREFIX}REBUILD_INTERVAL", interval, float, positive=True
        )
    return config


def expand_paths(config: AppConfig) -> AppConfig:
    """Expand ``~`` in every configured path."""
    config.state_dir = config.state_dir.expanduser()
    config.store.path = config.store.path.expanduser()
    return config


# ---------------------------------------------------------------------------
# ConfigManager
# ---------------------------------------------------------------------------


class ConfigManager:
    """Loads and saves the service configuration as YAML.

    Writes are atomic (temp file + rename) to prevent corruption.
    """

    def __init__(self, config_path: Path) -> None:
        """Initialize with path to config.yaml file.

        Args:
            config_path: Path to the YAML configuration file.
        """
        self._config_path = config_path

    @property
    def config_path(self) -> Path:
        """Return the configuration file path."""
        return self._config_path

    def load(self) -> AppConfig:
        """Load the configuration.

        Returns:
            AppConfig from the file, or defaults if the file doesn't exist
            or is empty.

        Raises:
            ConfigError: If the file is not valid YAML or holds invalid values.
        """
        if not self._config_path.exists():
            return AppConfig()

        try:
            with open(self._config_path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {self._config_path}: {e}") from e

        if data is None:
            return AppConfig()
        if not isinstance(data, dict):
            raise ConfigError(f"Config file {self._config_path} must contain a mapping")

        return AppConfig.from_dict(data)

    def save(self, config: AppConfig) -> None:
        """Save the configuration to the YAML file.

        Args:
            config: Configuration to save.
        """
        self._config_path.parent.mkdir(parents=True, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(
            dir=self._config_path.parent,
            prefix=".config_",
            suffix=".yaml.tmp",
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                yaml.safe_dump(config.to_dict(), f, default_flow_style=False)
            os.replace(temp_path, self._config_path)
        except Exception:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise
