from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass

import psycopg

from kb_rag_core.citations import CitationLedger
from kb_rag_core.config import Settings
from kb_rag_core.db import connect
from kb_rag_core.migrations.runner import apply_migrations
from kb_rag_core.retrieval import Retriever
from kb_rag_core.store import DocumentStore
from kb_rag_core.vectors import VectorProvider, build_vector_provider


@dataclass(frozen=True)
class KnowledgeBase:
    """The ingestion, retrieval and citation components sharing one connection."""

    vectors: VectorProvider
    store: DocumentStore
    retriever: Retriever
    citations: CitationLedger


def open_knowledge_base(
    conn: psycopg.Connection,
    settings: Settings,
    *,
    vectors: VectorProvider | None = None,
) -> KnowledgeBase:
    vectors = vectors or build_vector_provider(settings)
    return KnowledgeBase(
        vectors=vectors,
        store=DocumentStore(
            conn,
            vectors,
            default_chunk_size=settings.chunk_max_tokens,
            default_chunk_overlap=settings.chunk_overlap_tokens,
        ),
        retriever=Retriever(
            conn,
            vectors,
            match_threshold=settings.search_match_threshold,
            hybrid_threshold=settings.hybrid_match_threshold,
            document_count=settings.search_document_count,
            chunk_count=settings.search_chunk_count,
            full_text_weight=settings.hybrid_full_text_weight,
            semantic_weight=settings.hybrid_semantic_weight,
            snippet_chars=settings.snippet_max_chars,
        ),
        citations=CitationLedger(conn),
    )


def prepare_database(settings: Settings) -> list[str]:
    """Applies pending migrations with vector columns sized to ``EMBEDDING_DIMENSIONS``."""
    if not settings.pg_dsn:
        raise ValueError("PG_DSN is not set")
    return apply_migrations(
        settings.pg_dsn,
        schema=settings.pg_schema,
        dimensions=settings.embedding_dimensions,
    )


@contextmanager
def knowledge_base(settings: Settings, *, vectors: VectorProvider | None = None) -> Iterator[KnowledgeBase]:
    if not settings.pg_dsn:
        raise ValueError("PG_DSN is not set")
    with connect(settings.pg_dsn, schema=settings.pg_schema) as conn:
        yield open_knowledge_base(conn, settings, vectors=vectors)
