"""Application settings loaded from environment variables."""

import os

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ragchat.retrieval.models import SearchOptions


def _env_file() -> str | None:
    if os.getenv("PYTEST_CURRENT_TEST"):
        return None
    return ".env"


class Settings(BaseSettings):
    """ragchat configuration. All values come from environment variables."""

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3010)

    # Generation backend: "anthropic" or "echo"
    generation_backend: str = Field(default="echo")
    anthropic_api_key: str = Field(default="")
    chat_model: str = Field(default="sonnet")
    max_tokens: int = Field(default=1024)

    # Embedding backend: "ollama" or "hash"
    embedding_backend: str = Field(default="hash")
    ollama_api_url: str = Field(default="http://localhost:11434")
    embedding_model: str = Field(default="llama3")
    embedding_dimension: int = Field(default=384)
    embedding_timeout: float = Field(default=10.0)

    # Retrieval
    search_limit: int = Field(default=5)
    search_threshold: float = Field(default=0.7)

    # Document ingestion
    chunk_size: int = Field(default=1000)
    chunk_overlap: int = Field(default=200)

    # Streaming (seconds)
    stream_persist_interval: float = Field(default=0.5)
    stream_connect_timeout: float = Field(default=10.0)
    stream_chunk_timeout: float = Field(default=5.0)

    # Logging
    log_level: str = Field(default="INFO")

    model_config = SettingsConfigDict(env_file=_env_file(), env_file_encoding="utf-8")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        if os.getenv("PYTEST_CURRENT_TEST"):
            return (init_settings,)
        return (init_settings, env_settings, dotenv_settings, file_secret_settings)

    def search_options(self) -> SearchOptions:
        """Default retrieval options built from SEARCH_LIMIT / SEARCH_THRESHOLD."""
        return SearchOptions(limit=self.search_limit, threshold=self.search_threshold)


settings = Settings()
