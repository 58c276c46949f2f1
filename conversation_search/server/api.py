"""REST API for the conversation search service.

Provides search endpoints over conversations and messages plus index
management endpoints (stats, rebuild, incremental updates).
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from aiohttp import web

from conversation_search.models import ConversationFilter, DateRange, MessageFilter
from conversation_search.search import SearchOptions
from conversation_search.server.config import SearchConfig

if TYPE_CHECKING:
    from conversation_search.indexer import DataIndexer
    from conversation_search.search import SearchEngine

logger = logging.getLogger(__name__)

MAX_TIMESTAMP = 2**63 - 1

_TRUE = ("1", "true", "yes", "on")
_FALSE = ("0", "false", "no", "off")


class BadRequest(ValueError):
    """Raised for an invalid query parameter or request body."""


def _parse_date(value: str | None, name: str) -> int | None:
    """Parse an ISO date string or epoch milliseconds.

    Args:
        value: Raw parameter value or None.
        name: Parameter name for the error message.

    Returns:
        Epoch milliseconds, or None if the parameter is absent.

    Raises:
        BadRequest: If the value is neither form.
    """
    if not value:
        return None
    if value.lstrip("-").isdigit():
        return int(value)
    try:
        dt = datetime.fromisoformat(value)
    except ValueError as e:
        raise BadRequest(f"Invalid date for '{name}': {value}") from e
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _parse_bool(value: str | None, name: str) -> bool | None:
    if value is None or value == "":
        return None
    lowered = value.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    raise BadRequest(f"Invalid boolean for '{name}': {value}")


def _parse_date_range(query) -> DateRange | None:
    since = _parse_date(query.get("since"), "since")
    until = _parse_date(query.get("until"), "until")
    if since is None and until is None:
        return None
    date_range = DateRange(
        start=since if since is not None else 0,
        end=until if until is not None else MAX_TIMESTAMP,
    )
    if date_range.start > date_range.end:
        raise BadRequest("'since' must not be after 'until'")
    return date_range


@dataclass
class SearchAPI:
    """REST API handler for the search service.

    Wraps the DataIndexer and SearchEngine; both are injected by
    SearchService. Engine errors never escape a handler: bad parameters
    map to 400 and a missing indexer to 503.
    """

    indexer: DataIndexer | None = None
    search_engine: SearchEngine | None = None
    search_config: SearchConfig = field(default_factory=SearchConfig)

    _start_time: float = field(default_factory=time.time, repr=False)

    def _unavailable(self) -> web.Response:
        return web.json_response({"error": "Search not available"}, status=503)

    def _options(self, query, default_limit: int) -> SearchOptions:
        limit_str = query.get("limit")
        if limit_str:
            try:
                limit = int(limit_str)
            except ValueError as e:
                raise BadRequest(f"Invalid limit: {limit_str}") from e
            limit = max(1, min(self.search_config.max_limit, limit))
        else:
            limit = default_limit

        min_score_str = query.get("min_score")
        if min_score_str:
            try:
                min_score = float(min_score_str)
            except ValueError as e:
                raise BadRequest(f"Invalid min_score: {min_score_str}") from e
        else:
            min_score = self.search_config.min_score

        fuzzy = _parse_bool(query.get("fuzzy"), "fuzzy")
        highlights = _parse_bool(query.get("highlights"), "highlights")

        return SearchOptions(
            limit=limit,
            fuzzy=self.search_config.fuzzy if fuzzy is None else fuzzy,
            min_score=min_score,
            include_highlights=True if highlights is None else highlights,
        )

    # =========================================================================
    # Search Endpoints
    # =========================================================================

    async def handle_search_conversations(self, request: web.Request) -> web.Response:
        """Handle GET /search/conversations - ranked search over titles.

        Query Parameters:
            q: Search query (blank lists conversations)
            status: active|archived|all (optional)
            tags: Comma-separated tags, any of which must match (optional)
            since / until: ISO date or epoch milliseconds (optional)
            limit, fuzzy, min_score, highlights: Search options (optional)

        Response 200:
            {
                "query": "login",
                "total": 1,
                "results": [{"conversation": {...}, "score": 100.0, "matches": [...]}]
            }
        """
        if self.search_engine is None:
            return self._unavailable()

        query = request.query.get("q", "")
        try:
            status = request.query.get("status") or None
            if status not in (None, "active", "archived", "all"):
                raise BadRequest(f"Invalid status: {status}")
            tags_str = request.query.get("tags", "")
            tags = [t.strip() for t in tags_str.split(",") if t.strip()]
            filter = ConversationFilter(
                status=status,
                tags=tags,
                date_range=_parse_date_range(request.query),
            )
            options = self._options(request.query, self.search_config.conversation_limit)
        except BadRequest as e:
            return web.json_response({"error": str(e)}, status=400)

        results = await self.search_engine.search_conversations(query, filter, options)
        return web.json_response({
            "query": query,
            "total": len(results),
            "results": [r.to_dict() for r in results],
        })

    async def handle_search_messages(self, request: web.Request) -> web.Response:
        """Handle GET /search/messages - ranked search over message content.

        Query Parameters:
            q: Search query (blank lists the messages of conversation_id)
            conversation_id: Restrict to one conversation (optional)
            sender: user|ai|all (optional)
            has_code_changes: true|false (optional)
            since / until: ISO date or epoch milliseconds (optional)
            limit, fuzzy, min_score, highlights: Search options (optional)
        """
        if self.search_engine is None:
            return self._unavailable()

        query = request.query.get("q", "")
        try:
            sender = request.query.get("sender") or None
            if sender not in (None, "user", "ai", "all"):
                raise BadRequest(f"Invalid sender: {sender}")
            filter = MessageFilter(
                conversation_id=request.query.get("conversation_id") or None,
                sender=sender,
                has_code_changes=_parse_bool(
                    request.query.get("has_code_changes"), "has_code_changes"
                ),
                date_range=_parse_date_range(request.query),
            )
            options = self._options(request.query, self.search_config.message_limit)
        except BadRequest as e:
            return web.json_response({"error": str(e)}, status=400)

        results = await self.search_engine.search_messages(query, filter, options)
        return web.json_response({
            "query": query,
            "total": len(results),
            "results": [r.to_dict() for r in results],
        })

    # =========================================================================
    # Index Endpoints
    # =========================================================================

    async def handle_index_stats(self, request: web.Request) -> web.Response:
        """Handle GET /index/stats - index size and freshness."""
        if self.indexer is None:
            return self._unavailable()
        return web.json_response(self.indexer.get_index_stats().to_dict())

    async def handle_index_rebuild(self, request: web.Request) -> web.Response:
        """Handle POST /index/rebuild - run a build and wait for it.

        Request body (optional):
            {"force": true}

        Response 200: The build result.
        Response 202: A build was already running; it continues in the
            background and this request does not start another.
        """
        if self.indexer is None:
            return self._unavailable()

        force = False
        if request.can_read_body:
            try:
                data = await request.json()
            except json.JSONDecodeError:
                return web.json_response({"error": "Invalid JSON"}, status=400)
            if not isinstance(data, dict):
                return web.json_response({"error": "Expected a JSON object"}, status=400)
            force = data.get("force", False)
            if not isinstance(force, bool):
                return web.json_response({"error": "'force' must be a boolean"}, status=400)

        if self.indexer.is_indexing:
            return web.json_response(
                {"status": "in_progress", "message": "Index build already running"},
                status=202,
            )

        result = await self.indexer.build_index(force_rebuild=force)
        return web.json_response({
            "status": "completed" if result.ok else "failed",
            "result": result.to_dict(),
            "stats": self.indexer.get_index_stats().to_dict(),
        })

    async def handle_update_conversation(self, request: web.Request) -> web.Response:
        """Handle POST /index/conversations/{id} - re-index one conversation.

        The conversation is re-read from the store. If the store no longer
        has it, it is removed from the index and 404 is returned.
        """
        if self.indexer is None:
            return self._unavailable()

        conversation_id = request.match_info["id"]
        try:
            conversation = await self.indexer.store.get_conversation(conversation_id)
        except Exception as e:
            logger.warning(f"Failed to read conversation {conversation_id}: {e}")
            return web.json_response({"error": f"Store error: {e}"}, status=502)

        if conversation is None:
            await self.indexer.remove_conversation_from_index(conversation_id)
            return web.json_response(
                {"error": f"Conversation not found: {conversation_id}"},
                status=404,
            )

        await self.indexer.update_conversation_index(conversation)
        return web.json_response({"updated": True, "id": conversation_id})

    async def handle_update_message(self, request: web.Request) -> web.Response:
        """Handle POST /index/messages/{id} - re-index one message."""
        if self.indexer is None:
            return self._unavailable()

        message_id = request.match_info["id"]
        try:
            message = await self.indexer.store.get_message(message_id)
        except Exception as e:
            logger.warning(f"Failed to read message {message_id}: {e}")
            return web.json_response({"error": f"Store error: {e}"}, status=502)

        if message is None:
            await self.indexer.remove_message_from_index(message_id)
            return web.json_response(
                {"error": f"Message not found: {message_id}"},
                status=404,
            )

        await self.indexer.update_message_index(message)
        return web.json_response({"updated": True, "id": message_id})

    async def handle_remove_conversation(self, request: web.Request) -> web.Response:
        """Handle DELETE /index/conversations/{id}."""
        if self.indexer is None:
            return self._unavailable()
        conversation_id = request.match_info["id"]
        removed = await self.indexer.remove_conversation_from_index(conversation_id)
        return web.json_response({"removed": removed, "id": conversation_id})

    async def handle_remove_message(self, request: web.Request) -> web.Response:
        """Handle DELETE /index/messages/{id}."""
        if self.indexer is None:
            return self._unavailable()
        message_id = request.match_info["id"]
        removed = await self.indexer.remove_message_from_index(message_id)
        return web.json_response({"removed": removed, "id": message_id})

    async def handle_health(self, request: web.Request) -> web.Response:
        """Handle GET /health - liveness with index summary.

        Response 200:
            {
                "status": "healthy",
                "uptime_seconds": 3600,
                "index": {"conversationCount": 12, "messageCount": 340, ...}
            }
        """
        response_data: dict = {
            "status": "healthy",
            "uptime_seconds": int(time.time() - self._start_time),
        }
        if self.indexer is not None:
            response_data["index"] = self.indexer.get_index_stats().to_dict()
        return web.json_response(response_data)

    def create_app(self) -> web.Application:
        """Create and configure the aiohttp web application.

        Returns:
            Configured aiohttp Application with all routes registered.
        """
        app = web.Application()

        app.router.add_get("/health", self.handle_health)

        # Search endpoints
        app.router.add_get("/search/conversations", self.handle_search_conversations)
        app.router.add_get("/search/messages", self.handle_search_messages)

        # Index endpoints
        app.router.add_get("/index/stats", self.handle_index_stats)
        app.router.add_post("/index/rebuild", self.handle_index_rebuild)
        app.router.add_post("/index/conversations/{id}", self.handle_update_conversation)
        app.router.add_delete("/index/conversations/{id}", self.handle_remove_conversation)
        app.router.add_post("/index/messages/{id}", self.handle_update_message)
        app.router.add_delete("/index/messages/{id}", self.handle_remove_message)

        return app
