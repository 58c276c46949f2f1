"""CLI entry point for running the search service.

Usage:
    python -m conversation_search.server [options]

Options:
    --config PATH        Path to config.yaml (default: ~/.conversation-search/config.yaml)
    --host HOST          Host to bind to (overrides config)
    --port PORT          Port to bind to (overrides config)
    --state-dir PATH     Directory holding the persisted index (overrides config)
    --store PATH         Root of the JSON conversation store (overrides config)
    --log-level LEVEL    Log level (default: INFO)
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
from pathlib import Path

from conversation_search.server.config import (
    DEFAULT_CONFIG_PATH,
    AppConfig,
    ConfigError,
    ConfigManager,
    apply_env_overrides,
    expand_paths,
)
from conversation_search.server.service import SearchService


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Command line arguments (defaults to sys.argv[1:]).

    Returns:
        Parsed arguments namespace.
    """
    parser = argparse.ArgumentParser(
        description="Conversation Search - Search Service",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Start with defaults
    python -m conversation_search.server

    # Serve a specific store and keep the index elsewhere
    python -m conversation_search.server --store ~/chats --state-dir /var/lib/conversation-search

    # Bind to all interfaces on port 9000
    python -m conversation_search.server --host 0.0.0.0 --port 9000
""",
    )

    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG_PATH,
        help="Path to config.yaml (default: ~/.conversation-search/config.yaml)",
    )

    parser.add_argument("--host", type=str, default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")

    parser.add_argument(
        "--state-dir",
        type=Path,
        default=None,
        help="Directory holding the persisted index",
    )

    parser.add_argument(
        "--store",
        type=Path,
        default=None,
        help="Root of the JSON conversation store",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Log level (default: INFO)",
    )

    return parser.parse_args(args)


def setup_logging(level: str) -> None:
    """Configure logging.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    logging.basicConfig(
        level=getattr(logging, level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_config(parsed: argparse.Namespace) -> AppConfig:
    """Resolve the effective config: file, then environment, then flags.

    Raises:
        ConfigError: If the config file or an environment value is invalid.
    """
    config = ConfigManager(parsed.config.expanduser()).load()
    apply_env_overrides(config)

    if parsed.host is not None:
        config.server.host = parsed.host
    if parsed.port is not None:
        config.server.port = parsed.port
    if parsed.state_dir is not None:
        config.state_dir = parsed.state_dir
    if parsed.store is not None:
        config.store.path = parsed.store

    return expand_paths(config)


async def run_service(service: SearchService, shutdown_event: asyncio.Event) -> None:
    """Run the service until shutdown event is set.

    Args:
        service: The SearchService instance.
        shutdown_event: Event to signal shutdown.
    """
    await service.start()

    try:
        await shutdown_event.wait()
    finally:
        await service.stop()


def main(args: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        args: Command line arguments (defaults to sys.argv[1:]).

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    parsed = parse_args(args)
    setup_logging(parsed.log_level)

    logger = logging.getLogger(__name__)

    try:
        config = build_config(parsed)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    shutdown_event = asyncio.Event()
    service = SearchService(config=config)

    def signal_handler(signum: int, frame: object) -> None:
        sig_name = signal.Signals(signum).name
        logger.info(f"Received {sig_name}, initiating shutdown...")
        shutdown_event.set()

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    logger.info(f"Store: {config.store.path}")
    logger.info(f"State directory: {config.state_dir}")
    logger.info(f"Server will listen on http://{config.server.host}:{config.server.port}")

    try:
        asyncio.run(run_service(service, shutdown_event))
        return 0
    except Exception as e:
        logger.error(f"Service error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
