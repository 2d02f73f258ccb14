from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    pg_dsn: str | None = Field(default=None, alias="PG_DSN")
    pg_schema: str = Field(default="public", alias="PG_SCHEMA")

    embedding_dimensions: int = Field(default=1536, alias="EMBEDDING_DIMENSIONS")
    # Comma-separated; the first configured provider is the default.
    embedding_providers: str = Field(default="openai,gemini", alias="EMBEDDING_PROVIDERS")
    embedding_timeout_s: float = Field(default=30.0, alias="EMBEDDING_TIMEOUT_S")
    embedding_batch_timeout_s: float = Field(default=60.0, alias="EMBEDDING_BATCH_TIMEOUT_S")

    openai_base_url: str = Field(default="https://api.openai.com", alias="OPENAI_BASE_URL")
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    openai_embedding_model: str = Field(default="text-embedding-3-small", alias="OPENAI_EMBEDDING_MODEL")

    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com", alias="GEMINI_BASE_URL"
    )
    gemini_api_key: str | None = Field(default=None, alias="GEMINI_API_KEY")
    gemini_embedding_model: str = Field(default="text-embedding-004", alias="GEMINI_EMBEDDING_MODEL")

    chunk_max_tokens: int = Field(default=800, alias="CHUNK_MAX_TOKENS")
    chunk_overlap_tokens: int = Field(default=50, alias="CHUNK_OVERLAP_TOKENS")

    search_match_threshold: float = Field(default=0.7, alias="SEARCH_MATCH_THRESHOLD")
    hybrid_match_threshold: float = Field(default=0.5, alias="HYBRID_MATCH_THRESHOLD")
    search_document_count: int = Field(default=5, alias="SEARCH_DOCUMENT_COUNT")
    search_chunk_count: int = Field(default=10, alias="SEARCH_CHUNK_COUNT")
    hybrid_full_text_weight: float = Field(default=0.3, alias="HYBRID_FULL_TEXT_WEIGHT")
    hybrid_semantic_weight: float = Field(default=0.7, alias="HYBRID_SEMANTIC_WEIGHT")
    snippet_max_chars: int = Field(default=200, alias="SNIPPET_MAX_CHARS")

    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @property
    def provider_order(self) -> list[str]:
        return [p.strip().lower() for p in self.embedding_providers.split(",") if p.strip()]


def load_settings() -> Settings:
    return Settings()
