#!/usr/bin/env python3
"""CLI entry point for Conversation Search.

Index management and ad-hoc queries against a JSON conversation store,
without running the HTTP service.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import datetime, timezone
from pathlib import Path

from conversation_search.indexer import DataIndexer, IndexerConfig
from conversation_search.models import ConversationFilter, MessageFilter
from conversation_search.search import SearchEngine, SearchOptions
from conversation_search.server.config import AppConfig
from conversation_search.store import JsonFileStore


# ---------------------------------------------------------------------------
# Default Configuration
# ---------------------------------------------------------------------------

_DEFAULTS = AppConfig()
DEFAULT_STORE_PATH = _DEFAULTS.store.path.expanduser()
DEFAULT_STATE_DIR = _DEFAULTS.state_dir.expanduser()


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------


def _format_size(size_bytes: int) -> str:
    """Format byte size as human-readable string."""
    if size_bytes < 1024:
        return f"{size_bytes} B"
    elif size_bytes < 1024 * 1024:
        return f"{size_bytes / 1024:.1f} KB"
    else:
        return f"{size_bytes / 1024 / 1024:.1f} MB"


def _format_timestamp(timestamp_ms: int) -> str:
    """Format epoch milliseconds as a UTC date and time."""
    if not timestamp_ms:
        return "Never"
    dt = datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc)
    return dt.strftime("%Y-%m-%d %H:%M:%S")


def _truncate(text: str, width: int = 60) -> str:
    text = " ".join(text.split())
    if len(text) > width:
        return text[: width - 3] + "..."
    return text


def _make_indexer(store_path: Path, state_dir: Path) -> DataIndexer:
    return DataIndexer(
        store=JsonFileStore(store_path),
        index_dir=state_dir / "index",
        config=IndexerConfig(schedule=False),
    )


# ---------------------------------------------------------------------------
# Index Command Implementations
# ---------------------------------------------------------------------------


async def _rebuild(store_path: Path, state_dir: Path, force: bool) -> int:
    """Build the index; ``force`` recomputes it from scratch."""
    indexer = _make_indexer(store_path, state_dir)
    if not force:
        indexer.load_index()

    print("Rebuilding search index..." if force else "Updating search index...")
    result = await indexer.build_index(force_rebuild=force)
    if not result.ok:
        print(f"Error building index: {result.error}", file=sys.stderr)
        return 1

    print(
        f"Conversations indexed: {result.conversations_indexed}, "
        f"skipped: {result.conversations_skipped}"
    )
    print(f"Messages indexed: {result.messages_indexed}, skipped: {result.messages_skipped}")
    if result.documents_pruned:
        print(f"Pruned: {result.documents_pruned}")
    if result.store_errors:
        print(f"Store errors: {result.store_errors}", file=sys.stderr)
    print(f"Done in {result.duration_ms} ms")
    return 0


async def _stats(store_path: Path, state_dir: Path) -> int:
    """Show index statistics."""
    indexer = _make_indexer(store_path, state_dir)
    indexer.load_index()
    stats = indexer.get_index_stats()

    print("Search Index Statistics")
    print("=" * 50)
    print(f"Conversations indexed: {stats.conversation_count}")
    print(f"Messages indexed: {stats.message_count}")
    print(f"Terms: {stats.term_count}")
    print(f"Estimated size: {_format_size(stats.index_size)}")
    print(f"Last updated: {_format_timestamp(stats.last_updated)}")
    return 0


async def _search(
    query: str,
    status: str | None,
    tags: list[str],
    limit: int,
    fuzzy: bool,
    store_path: Path,
    state_dir: Path,
) -> int:
    """Search conversation titles."""
    indexer = _make_indexer(store_path, state_dir)
    indexer.load_index()
    engine = SearchEngine(indexer)

    filter = ConversationFilter(status=status, tags=tags)
    results = await engine.search_conversations(
        query, filter, SearchOptions(limit=limit, fuzzy=fuzzy, include_highlights=False)
    )

    if not results:
        print(f'No results found for "{query}"')
        return 0

    print(f'Search results for "{query}" ({len(results)} matches)')
    print()
    for i, result in enumerate(results, 1):
        conversation = result.conversation
        print(f"{i}. {_truncate(conversation.title)}")
        print(
            f"   {conversation.id} | {conversation.status} | "
            f"{_format_timestamp(conversation.timestamp)}"
        )
        print(f"   Score: {result.score:.1f}")
        print()
    return 0


async def _search_messages(
    query: str,
    conversation_id: str | None,
    sender: str | None,
    limit: int,
    fuzzy: bool,
    store_path: Path,
    state_dir: Path,
) -> int:
    """Search message content and code changes."""
    indexer = _make_indexer(store_path, state_dir)
    indexer.load_index()
    engine = SearchEngine(indexer)

    filter = MessageFilter(conversation_id=conversation_id, sender=sender)
    results = await engine.search_messages(
        query, filter, SearchOptions(limit=limit, fuzzy=fuzzy)
    )

    if not results:
        print(f'No results found for "{query}"')
        return 0

    print(f'Message results for "{query}" ({len(results)} matches)')
    print()
    for i, result in enumerate(results, 1):
        message = result.message
        print(f"{i}. [{message.sender}] {_truncate(message.content)}")
        print(f"   {message.conversation_id} / {message.id} | {_format_timestamp(message.timestamp)}")
        for match in result.matches[:3]:
            print(f"   {match.field}: {_truncate(match.text)}")
        print(f"   Score: {result.score:.1f}")
        print()
    return 0


# ---------------------------------------------------------------------------
# CLI Argument Parsing
# ---------------------------------------------------------------------------


def _create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="conversation-search",
        description="Search a conversation history store.",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    def add_common_options(p: argparse.ArgumentParser) -> None:
        p.add_argument(
            "--store",
            type=Path,
            default=None,
            help=f"Conversation store root (default: {DEFAULT_STORE_PATH})",
        )
        p.add_argument(
            "--state-dir",
            type=Path,
            default=None,
            help=f"State directory (default: {DEFAULT_STATE_DIR})",
        )

    def add_query_options(p: argparse.ArgumentParser, default_limit: int) -> None:
        p.add_argument("query", type=str, help="Search query")
        p.add_argument(
            "-l",
            "--limit",
            type=int,
            default=default_limit,
            help=f"Max results (default: {default_limit})",
        )
        p.add_argument(
            "--no-fuzzy",
            action="store_true",
            help="Only match exact terms",
        )

    # Index command group
    index_parser = subparsers.add_parser(
        "index",
        help="Manage the search index",
    )
    index_subparsers = index_parser.add_subparsers(dest="index_command", help="Index commands")

    # index rebuild
    rebuild_parser = index_subparsers.add_parser(
        "rebuild",
        help="Rebuild the search index from scratch",
    )
    add_common_options(rebuild_parser)

    # index update
    update_parser = index_subparsers.add_parser(
        "update",
        help="Index new documents and prune deleted ones",
    )
    add_common_options(update_parser)

    # index stats
    stats_parser = index_subparsers.add_parser(
        "stats",
        help="Show index statistics",
    )
    add_common_options(stats_parser)

    # index search
    search_parser = index_subparsers.add_parser(
        "search",
        help="Search conversation titles",
    )
    add_query_options(search_parser, default_limit=10)
    search_parser.add_argument(
        "-s",
        "--status",
        choices=["active", "archived", "all"],
        default=None,
        help="Filter by status",
    )
    search_parser.add_argument(
        "-t",
        "--tag",
        dest="tags",
        action="append",
        default=[],
        help="Filter by tag (repeatable, any may match)",
    )
    add_common_options(search_parser)

    # messages
    messages_parser = subparsers.add_parser(
        "messages",
        help="Search message content and code changes",
    )
    add_query_options(messages_parser, default_limit=20)
    messages_parser.add_argument(
        "-c",
        "--conversation",
        dest="conversation_id",
        type=str,
        default=None,
        help="Restrict to one conversation",
    )
    messages_parser.add_argument(
        "--sender",
        choices=["user", "ai", "all"],
        default=None,
        help="Filter by sender",
    )
    add_common_options(messages_parser)

    return parser


def _resolve_paths(args: argparse.Namespace) -> tuple[Path, Path]:
    store_path = getattr(args, "store", None) or DEFAULT_STORE_PATH
    state_dir = getattr(args, "state_dir", None) or DEFAULT_STATE_DIR
    return store_path.expanduser(), state_dir.expanduser()


def _handle_index_command(args: argparse.Namespace) -> int:
    """Handle index subcommands."""
    if not args.index_command:
        print("Usage: conversation-search index <command>", file=sys.stderr)
        print("Commands: rebuild, update, stats, search", file=sys.stderr)
        return 1

    store_path, state_dir = _resolve_paths(args)

    if args.index_command == "rebuild":
        return asyncio.run(_rebuild(store_path, state_dir, force=True))
    elif args.index_command == "update":
        return asyncio.run(_rebuild(store_path, state_dir, force=False))
    elif args.index_command == "stats":
        return asyncio.run(_stats(store_path, state_dir))
    elif args.index_command == "search":
        return asyncio.run(
            _search(
                args.query,
                args.status,
                args.tags,
                args.limit,
                not args.no_fuzzy,
                store_path,
                state_dir,
            )
        )
    else:
        print("Usage: conversation-search index <command>", file=sys.stderr)
        print("Commands: rebuild, update, stats, search", file=sys.stderr)
        return 1


# ---------------------------------------------------------------------------
# Main Entry Point
# ---------------------------------------------------------------------------


def main(argv: list[str] | None = None) -> None:
    """Run the Conversation Search CLI.

    Usage:
        conversation-search index <command>      # Index management
        conversation-search messages <query>     # Message search
    """
    parser = _create_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    if args.command == "index":
        sys.exit(_handle_index_command(args))
    elif args.command == "messages":
        store_path, state_dir = _resolve_paths(args)
        sys.exit(
            asyncio.run(
                _search_messages(
                    args.query,
                    args.conversation_id,
                    args.sender,
                    args.limit,
                    not args.no_fuzzy,
                    store_path,
                    state_dir,
                )
            )
        )
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
