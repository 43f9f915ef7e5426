"""ragchat entry point."""

import asyncio
import logging

from ragchat.chat.orchestrator import RagOrchestrator
from ragchat.chat.store import ConversationStore
from ragchat.chat.streaming import StreamingAdapter
from ragchat.config import Settings, settings
from ragchat.llm.client import create_generator
from ragchat.retrieval.embeddings import create_embedding_provider
from ragchat.retrieval.store import InMemoryVectorStore
from ragchat.web.server import ChatServer

logger = logging.getLogger(__name__)


def build_orchestrator(config: Settings = settings) -> RagOrchestrator:
    """Wire stores and backends into an orchestrator. One per process."""
    return RagOrchestrator(
        ConversationStore(),
        InMemoryVectorStore(create_embedding_provider(config)),
        create_generator(config),
        search_options=config.search_options(),
        chunk_size=config.chunk_size,
        chunk_overlap=config.chunk_overlap,
    )


def build_streaming_adapter(
    orchestrator: RagOrchestrator, config: Settings = settings
) -> StreamingAdapter:
    return StreamingAdapter(
        orchestrator,
        persist_interval=config.stream_persist_interval,
        connect_timeout=config.stream_connect_timeout,
        chunk_timeout=config.stream_chunk_timeout,
    )


async def serve(config: Settings = settings) -> None:
    """Run the HTTP server until cancelled."""
    orchestrator = build_orchestrator(config)
    server = ChatServer(
        orchestrator,
        build_streaming_adapter(orchestrator, config),
        host=config.host,
        port=config.port,
    )
    await server.start()
    try:
        await asyncio.Event().wait()
    finally:
        await server.stop()


def main() -> None:
    """Start the chat server."""
    logging.basicConfig(
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
    )
    logger.info("Starting ragchat on %s:%d...", settings.host, settings.port)
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Shutting down")


if __name__ == "__main__":
    main()
