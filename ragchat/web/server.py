"""aiohttp HTTP API for conversations, documents and chat completions.

``POST /conversations/{id}/completions`` answers with a JSON assistant
message, or with a Server-Sent Events stream when the ``Accept`` header
includes ``text/event-stream``.
"""

from __future__ import annotations

import contextlib
import logging
from typing import Any

from aiohttp import web
from pydantic import BaseModel, Field, ValidationError

from ragchat.chat.models import Role
from ragchat.chat.orchestrator import RagOrchestrator
from ragchat.chat.streaming import StreamingAdapter
from ragchat.errors import BackendUnavailable, NotFound
from ragchat.retrieval.models import SearchOptions

logger = logging.getLogger(__name__)

ORCHESTRATOR = web.AppKey("orchestrator", RagOrchestrator)
STREAMING = web.AppKey("streaming", StreamingAdapter)

DEFAULT_HOST = "0.0.0.0"
DEFAULT_PORT = 3010


# -- Request bodies -----------------------------------------------------------


class CreateConversationRequest(BaseModel):
    title: str = Field(min_length=1)


class AddMessageRequest(BaseModel):
    role: Role
    content: str


class CompletionRequest(BaseModel):
    message: str = Field(min_length=1)


class AddDocumentRequest(BaseModel):
    content: str
    metadata: dict[str, Any] | None = None


class IngestDocumentRequest(AddDocumentRequest):
    chunk_size: int | None = Field(default=None, gt=0)
    chunk_overlap: int | None = Field(default=None, ge=0)


class SearchDocumentsRequest(BaseModel):
    query: str = Field(min_length=1)
    limit: int | None = Field(default=None, ge=1)
    threshold: float | None = Field(default=None, ge=0.0, le=1.0)


# -- Helpers ------------------------------------------------------------------


def _ok(data: Any) -> web.Response:
    return web.json_response({"success": True, "data": data})


def _error(status: int, message: str) -> web.Response:
    return web.json_response({"success": False, "error": message}, status=status)


async def _parse(request: web.Request, model: type[BaseModel]) -> Any:
    """Parse and validate a JSON body. Raises ValidationError or ValueError."""
    try:
        payload = await request.json()
    except ValueError as exc:
        msg = "invalid JSON"
        raise ValueError(msg) from exc
    return model.model_validate(payload)


@web.middleware
async def _error_middleware(request: web.Request, handler) -> web.StreamResponse:
    """Map domain errors onto HTTP status codes."""
    try:
        return await handler(request)
    except NotFound as exc:
        return _error(404, str(exc))
    except ValidationError as exc:
        details = "; ".join(
            f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in exc.errors()
        )
        return _error(400, details)
    except ValueError as exc:
        return _error(400, str(exc))
    except BackendUnavailable as exc:
        logger.warning("Backend unavailable: %s", exc)
        return _error(502, str(exc))


# -- Handlers -----------------------------------------------------------------


async def _health(request: web.Request) -> web.Response:
    """GET /health: basic liveness check."""
    return web.json_response({"status": "ok"})


async def _create_conversation(request: web.Request) -> web.Response:
    body = await _parse(request, CreateConversationRequest)
    conversation = request.app[ORCHESTRATOR].create_conversation(body.title)
    return _ok(conversation.model_dump(mode="json"))


async def _list_conversations(request: web.Request) -> web.Response:
    raw_limit = request.query.get("limit")
    try:
        limit = int(raw_limit) if raw_limit else None
    except ValueError:
        return _error(400, f"invalid limit: {raw_limit!r}")
    conversations = request.app[ORCHESTRATOR].list_conversations(limit)
    return _ok([c.model_dump(mode="json") for c in conversations])


async def _get_conversation(request: web.Request) -> web.Response:
    conversation = request.app[ORCHESTRATOR].get_conversation(request.match_info["id"])
    return _ok(conversation.model_dump(mode="json"))


async def _delete_conversation(request: web.Request) -> web.Response:
    conversation_id = request.match_info["id"]
    request.app[ORCHESTRATOR].delete_conversation(conversation_id)
    return web.json_response(
        {"success": True, "message": f"Conversation with ID {conversation_id} deleted"}
    )


async def _get_messages(request: web.Request) -> web.Response:
    messages = request.app[ORCHESTRATOR].get_messages(request.match_info["id"])
    return _ok([m.model_dump(mode="json") for m in messages])


async def _add_message(request: web.Request) -> web.Response:
    body = await _parse(request, AddMessageRequest)
    message = request.app[ORCHESTRATOR].add_message(
        request.match_info["id"], body.role, body.content
    )
    return _ok(message.model_dump(mode="json"))


async def _completions(request: web.Request) -> web.StreamResponse:
    conversation_id = request.match_info["id"]
    body = await _parse(request, CompletionRequest)

    if "text/event-stream" not in request.headers.get("Accept", ""):
        message = await request.app[ORCHESTRATOR].generate_chat_response(
            conversation_id, body.message
        )
        return _ok(message.model_dump(mode="json"))

    events = request.app[STREAMING].stream_turn(conversation_id, body.message)
    async with contextlib.aclosing(events):
        # Pull the first event before committing to a 200 so NotFound
        # still turns into a 404.
        first = await anext(events)

        response = web.StreamResponse(
            headers={
                "Content-Type": "text/event-stream",
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
            }
        )
        await response.prepare(request)
        try:
            await response.write(first.to_sse().encode())
            async for event in events:
                await response.write(event.to_sse().encode())
        except ConnectionResetError:
            logger.info("Client disconnected from stream (conversation=%s)", conversation_id)
            return response

    await response.write_eof()
    return response


async def _add_document(request: web.Request) -> web.Response:
    body = await _parse(request, AddDocumentRequest)
    doc_id = await request.app[ORCHESTRATOR].add_document(body.content, body.metadata)
    return _ok({"id": doc_id})


async def _ingest_document(request: web.Request) -> web.Response:
    body = await _parse(request, IngestDocumentRequest)
    ids = await request.app[ORCHESTRATOR].ingest_document(
        body.content,
        body.metadata,
        chunk_size=body.chunk_size,
        chunk_overlap=body.chunk_overlap,
    )
    return _ok({"ids": ids, "chunks": len(ids)})


async def _search_documents(request: web.Request) -> web.Response:
    body = await _parse(request, SearchDocumentsRequest)
    orchestrator = request.app[ORCHESTRATOR]
    defaults = orchestrator.search_options or SearchOptions()
    options = SearchOptions(
        limit=defaults.limit if body.limit is None else body.limit,
        threshold=defaults.threshold if body.threshold is None else body.threshold,
    )
    results = await orchestrator.search_documents(body.query, options)
    return _ok([r.model_dump(mode="json") for r in results])


def create_web_app(
    orchestrator: RagOrchestrator, streaming: StreamingAdapter | None = None
) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application(middlewares=[_error_middleware])
    app[ORCHESTRATOR] = orchestrator
    app[STREAMING] = streaming or StreamingAdapter(orchestrator)

    app.router.add_get("/health", _health)
    app.router.add_post("/conversations", _create_conversation)
    app.router.add_get("/conversations", _list_conversations)
    app.router.add_get("/conversations/{id}", _get_conversation)
    app.router.add_delete("/conversations/{id}", _delete_conversation)
    app.router.add_get("/conversations/{id}/messages", _get_messages)
    app.router.add_post("/conversations/{id}/messages", _add_message)
    app.router.add_post("/conversations/{id}/completions", _completions)
    app.router.add_post("/documents", _add_document)
    app.router.add_post("/documents/ingest", _ingest_document)
    app.router.add_post("/documents/search", _search_documents)
    return app


class ChatServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(
        self,
        orchestrator: RagOrchestrator,
        streaming: StreamingAdapter | None = None,
        *,
        host: str = DEFAULT_HOST,
        port: int = DEFAULT_PORT,
    ) -> None:
        self.host = host
        self.port = port
        self._app = create_web_app(orchestrator, streaming)
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        """Start listening for requests."""
        self._runner = web.AppRunner(self._app)
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Chat server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Chat server stopped")
