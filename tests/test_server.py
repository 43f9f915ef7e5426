"""Tests for the chat HTTP API."""

import json

from aiohttp.test_utils import TestClient, TestServer
from conftest import StubGenerator

from ragchat.chat.orchestrator import RagOrchestrator
from ragchat.chat.store import ConversationStore
from ragchat.llm.echo import EchoGenerator
from ragchat.retrieval.embeddings import HashEmbeddingProvider
from ragchat.retrieval.models import SearchOptions
from ragchat.retrieval.store import InMemoryVectorStore
from ragchat.web.server import ChatServer, create_web_app

# -- Helpers -----------------------------------------------------------------


def _orchestrator(generator=None) -> RagOrchestrator:
    return RagOrchestrator(
        ConversationStore(),
        InMemoryVectorStore(HashEmbeddingProvider(dimension=64)),
        generator or EchoGenerator(),
    )


async def _make_client(orchestrator: RagOrchestrator | None = None):
    """Create a TestClient for the chat app."""
    app = create_web_app(orchestrator or _orchestrator())
    server = TestServer(app)
    client = TestClient(server)
    await client.start_server()
    return client


def _parse_sse(body: str) -> list[dict]:
    return [
        json.loads(frame[len("data: ") :])
        for frame in body.split("\n\n")
        if frame.startswith("data: ")
    ]


# -- Health check -----------------------------------------------------------


async def test_health_check() -> None:
    client = await _make_client()
    try:
        resp = await client.get("/health")
        assert resp.status == 200
        data = await resp.json()
        assert data["status"] == "ok"
    finally:
        await client.close()


# -- Conversations ----------------------------------------------------------


async def test_create_and_get_conversation() -> None:
    client = await _make_client()
    try:
        resp = await client.post("/conversations", json={"title": "Test"})
        assert resp.status == 200
        created = (await resp.json())["data"]
        assert created["title"] == "Test"
        assert created["messages"] == []

        resp = await client.get(f"/conversations/{created['id']}")
        assert resp.status == 200
        assert (await resp.json())["data"]["id"] == created["id"]
    finally:
        await client.close()


async def test_create_conversation_requires_title() -> None:
    client = await _make_client()
    try:
        resp = await client.post("/conversations", json={})
        assert resp.status == 400
        data = await resp.json()
        assert data["success"] is False
        assert "title" in data["error"]
    finally:
        await client.close()


async def test_invalid_json_returns_400() -> None:
    client = await _make_client()
    try:
        resp = await client.post(
            "/conversations", data="not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status == 400
        assert (await resp.json())["error"] == "invalid JSON"
    finally:
        await client.close()


async def test_list_conversations_with_limit() -> None:
    orchestrator = _orchestrator()
    for title in ("one", "two", "three"):
        orchestrator.create_conversation(title)
    client = await _make_client(orchestrator)
    try:
        resp = await client.get("/conversations", params={"limit": "2"})
        assert resp.status == 200
        titles = [c["title"] for c in (await resp.json())["data"]]
        assert titles == ["one", "two"]

        resp = await client.get("/conversations", params={"limit": "many"})
        assert resp.status == 400
    finally:
        await client.close()


async def test_unknown_conversation_returns_404() -> None:
    client = await _make_client()
    try:
        for path in ("/conversations/nope", "/conversations/nope/messages"):
            resp = await client.get(path)
            assert resp.status == 404
            assert "nope" in (await resp.json())["error"]
    finally:
        await client.close()


async def test_delete_conversation() -> None:
    orchestrator = _orchestrator()
    conv = orchestrator.create_conversation("Test")
    client = await _make_client(orchestrator)
    try:
        resp = await client.delete(f"/conversations/{conv.id}")
        assert resp.status == 200
        assert (await resp.json())["success"] is True
        assert orchestrator.list_conversations() == []
    finally:
        await client.close()


# -- Messages ---------------------------------------------------------------


async def test_add_and_list_messages() -> None:
    orchestrator = _orchestrator()
    conv = orchestrator.create_conversation("Test")
    client = await _make_client(orchestrator)
    try:
        resp = await client.post(
            f"/conversations/{conv.id}/messages", json={"role": "user", "content": "hello"}
        )
        assert resp.status == 200
        assert (await resp.json())["data"]["role"] == "user"

        resp = await client.get(f"/conversations/{conv.id}/messages")
        messages = (await resp.json())["data"]
        assert [m["content"] for m in messages] == ["hello"]
    finally:
        await client.close()


async def test_add_message_rejects_unknown_role() -> None:
    orchestrator = _orchestrator()
    conv = orchestrator.create_conversation("Test")
    client = await _make_client(orchestrator)
    try:
        resp = await client.post(
            f"/conversations/{conv.id}/messages", json={"role": "robot", "content": "x"}
        )
        assert resp.status == 400
    finally:
        await client.close()


# -- Completions ------------------------------------------------------------


async def test_completion_returns_assistant_message() -> None:
    orchestrator = _orchestrator()
    conv = orchestrator.create_conversation("Test")
    client = await _make_client(orchestrator)
    try:
        resp = await client.post(
            f"/conversations/{conv.id}/completions", json={"message": "What is AI?"}
        )
        assert resp.status == 200
        data = (await resp.json())["data"]
        assert data["role"] == "assistant"
        assert data["content"].startswith('I received your message: "What is AI?"')
        assert len(orchestrator.get_messages(conv.id)) == 2
    finally:
        await client.close()


async def test_completion_unknown_conversation_returns_404() -> None:
    client = await _make_client()
    try:
        resp = await client.post("/conversations/nope/completions", json={"message": "hi"})
        assert resp.status == 404
    finally:
        await client.close()


async def test_completion_backend_failure_returns_502() -> None:
    orchestrator = _orchestrator(StubGenerator(error=RuntimeError("model offline")))
    conv = orchestrator.create_conversation("Test")
    client = await _make_client(orchestrator)
    try:
        resp = await client.post(f"/conversations/{conv.id}/completions", json={"message": "hi"})
        assert resp.status == 502
        assert "model offline" in (await resp.json())["error"]
    finally:
        await client.close()


async def test_completion_streams_sse() -> None:
    orchestrator = _orchestrator(StubGenerator(chunks=["Hel", "lo", "!"]))
    conv = orchestrator.create_conversation("Test")
    client = await _make_client(orchestrator)
    try:
        resp = await client.post(
            f"/conversations/{conv.id}/completions",
            json={"message": "hi"},
            headers={"Accept": "text/event-stream"},
        )
        assert resp.status == 200
        assert resp.headers["Content-Type"].startswith("text/event-stream")
        events = _parse_sse(await resp.text())
        assert [e["content"] for e in events] == ["Hel", "lo", "!", ""]
        assert events[-1]["done"] is True
        assert orchestrator.get_messages(conv.id)[-1].content == "Hello!"
    finally:
        await client.close()


async def test_streaming_unknown_conversation_returns_404() -> None:
    client = await _make_client()
    try:
        resp = await client.post(
            "/conversations/nope/completions",
            json={"message": "hi"},
            headers={"Accept": "text/event-stream"},
        )
        assert resp.status == 404
    finally:
        await client.close()


async def test_streaming_error_is_sent_as_event() -> None:
    gen = StubGenerator(chunks=["Par"], error=RuntimeError("boom"))
    orchestrator = _orchestrator(gen)
    conv = orchestrator.create_conversation("Test")
    client = await _make_client(orchestrator)
    try:
        resp = await client.post(
            f"/conversations/{conv.id}/completions",
            json={"message": "hi"},
            headers={"Accept": "text/event-stream"},
        )
        assert resp.status == 200
        events = _parse_sse(await resp.text())
        assert events[0]["content"] == "Par"
        assert events[-1]["done"] is True
        assert "boom" in events[-1]["error"]
    finally:
        await client.close()


# -- Documents --------------------------------------------------------------


async def test_add_and_search_documents() -> None:
    client = await _make_client()
    try:
        resp = await client.post(
            "/documents", json={"content": "What is AI?", "metadata": {"source": "faq"}}
        )
        assert resp.status == 200
        doc_id = (await resp.json())["data"]["id"]

        resp = await client.post(
            "/documents/search", json={"query": "What is AI?", "threshold": 0.5}
        )
        assert resp.status == 200
        results = (await resp.json())["data"]
        assert results[0]["id"] == doc_id
        assert results[0]["metadata"] == {"source": "faq"}
        assert results[0]["score"] > 0.99
    finally:
        await client.close()


async def test_search_rejects_bad_threshold() -> None:
    client = await _make_client()
    try:
        resp = await client.post("/documents/search", json={"query": "q", "threshold": 1.5})
        assert resp.status == 400
        assert "threshold" in (await resp.json())["error"]
    finally:
        await client.close()


async def test_ingest_document() -> None:
    orchestrator = _orchestrator()
    client = await _make_client(orchestrator)
    text = "\n\n".join("word " * 40 for _ in range(5))
    try:
        resp = await client.post(
            "/documents/ingest",
            json={"content": text, "chunk_size": 300, "chunk_overlap": 50},
        )
        assert resp.status == 200
        data = (await resp.json())["data"]
        assert data["chunks"] == len(data["ids"]) > 1
        assert len(orchestrator.vectors) == data["chunks"]
    finally:
        await client.close()


async def test_ingest_document_rejects_bad_overlap() -> None:
    client = await _make_client()
    try:
        resp = await client.post(
            "/documents/ingest",
            json={"content": "text", "chunk_size": 100, "chunk_overlap": 100},
        )
        assert resp.status == 400
    finally:
        await client.close()


async def test_search_defaults_come_from_orchestrator() -> None:
    orchestrator = RagOrchestrator(
        ConversationStore(),
        InMemoryVectorStore(HashEmbeddingProvider(dimension=64)),
        EchoGenerator(),
        search_options=SearchOptions(limit=1, threshold=0.5),
    )
    await orchestrator.add_document("What is AI?")
    await orchestrator.add_document("What is AI?")
    client = await _make_client(orchestrator)
    try:
        resp = await client.post("/documents/search", json={"query": "What is AI?"})
        assert resp.status == 200
        assert len((await resp.json())["data"]) == 1

        resp = await client.post("/documents/search", json={"query": "What is AI?", "limit": 5})
        assert len((await resp.json())["data"]) == 2
    finally:
        await client.close()


async def test_ingest_defaults_come_from_orchestrator() -> None:
    orchestrator = RagOrchestrator(
        ConversationStore(),
        InMemoryVectorStore(HashEmbeddingProvider(dimension=64)),
        EchoGenerator(),
        chunk_size=300,
        chunk_overlap=50,
    )
    client = await _make_client(orchestrator)
    text = "\n\n".join("word " * 40 for _ in range(3))
    try:
        resp = await client.post("/documents/ingest", json={"content": text})
        assert resp.status == 200
        assert (await resp.json())["data"]["chunks"] == 3
    finally:
        await client.close()


# -- Lifecycle --------------------------------------------------------------


async def test_server_start_and_stop() -> None:
    server = ChatServer(_orchestrator(), host="127.0.0.1", port=0)
    await server.start()
    try:
        assert server._runner is not None
    finally:
        await server.stop()
    assert server._runner is None
