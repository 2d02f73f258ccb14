from __future__ import annotations

import os
import uuid
from collections.abc import Generator, Iterator, Sequence
from contextlib import contextmanager
from dataclasses import replace
from datetime import datetime, timedelta, timezone

import psycopg
import pytest

from kb_rag_core.db import connect
from kb_rag_core.migrations.runner import apply_migrations
from kb_rag_core.models import Document, DocumentChunk, DocumentStats, DocumentVersion
from kb_rag_core.store import DocumentStore
from kb_rag_core.vectors import VectorProvider


@pytest.fixture(scope="session")
def pg_dsn() -> str:
    dsn = os.environ.get("PG_DSN")
    if not dsn:
        pytest.skip("PG_DSN not set; skipping DB integration tests")
    return dsn


@pytest.fixture(scope="session")
def pg_schema(pg_dsn: str) -> Generator[str, None, None]:
    schema = f"test_{uuid.uuid4().hex[:10]}"
    apply_migrations(pg_dsn, schema=schema)
    yield schema
    with psycopg.connect(pg_dsn) as conn:
        conn.execute(f'drop schema if exists "{schema}" cascade')
        conn.commit()


@pytest.fixture()
def conn(pg_dsn: str, pg_schema: str) -> Generator[psycopg.Connection, None, None]:
    with connect(pg_dsn, schema=pg_schema) as c:
        yield c


class FakeBackend:
    """Deterministic embedding backend with a configurable native dimension."""

    def __init__(self, name: str = "fake", dim: int = 8, *, error: Exception | None = None):
        self.name = name
        self.dim = dim
        self.error = error
        self.calls: list[list[str]] = []

    def vector_for(self, text: str) -> list[float]:
        seed = sum(ord(ch) for ch in text) or 1
        return [float((seed * (i + 1)) % 97 + 1) for i in range(self.dim)]

    def embed_texts(self, texts: list[str], *, deadline: float | None = None) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.error is not None:
            raise self.error
        return [self.vector_for(t) for t in texts]


class FakeConnection:
    def __init__(self) -> None:
        self.commits = 0
        self.rollbacks = 0

    @contextmanager
    def transaction(self) -> Iterator[None]:
        try:
            yield
        except Exception:
            self.rollbacks += 1
            raise

    def commit(self) -> None:
        self.commits += 1


class InMemoryDocumentRepository:
    def __init__(self) -> None:
        self.documents: dict[str, Document] = {}
        self.versions: list[DocumentVersion] = []
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def _tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    def find_active_by_identity(
        self, title: str, source_url: str | None, *, for_update: bool = False
    ) -> Document | None:
        for doc in self.documents.values():
            if doc.is_active and doc.title == title and doc.source_url == source_url:
                return doc
        return None

    def get_document(self, doc_id: str, *, include_inactive: bool = False) -> Document | None:
        doc = self.documents.get(doc_id)
        if doc is None or (not doc.is_active and not include_inactive):
            return None
        return doc

    def upsert_document(self, doc: Document) -> None:
        previous = self.documents.get(doc.doc_id)
        created_at = previous.created_at if previous else self._tick()
        self.documents[doc.doc_id] = replace(doc, is_active=True, created_at=created_at)

    def archive_version(self, doc_id: str) -> int | None:
        doc = self.documents.get(doc_id)
        if doc is None:
            return None
        self.versions.append(
            DocumentVersion(
                doc_id=doc.doc_id,
                version_number=doc.version_number,
                title=doc.title,
                content=doc.content,
                source_url=doc.source_url,
                author=doc.author,
                published_date=doc.published_date,
                tags=doc.tags,
                embedding=doc.embedding,
            )
        )
        return doc.version_number

    def list_versions(self, doc_id: str) -> list[DocumentVersion]:
        found = [v for v in self.versions if v.doc_id == doc_id]
        return sorted(found, key=lambda v: v.version_number, reverse=True)

    def soft_delete(self, doc_id: str) -> bool:
        doc = self.documents.get(doc_id)
        if doc is None or not doc.is_active:
            return False
        self.documents[doc_id] = replace(doc, is_active=False)
        return True

    def list_active(
        self,
        *,
        author: str | None = None,
        tags: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Document]:
        docs = [d for d in self.documents.values() if d.is_active]
        if author:
            docs = [d for d in docs if d.author == author]
        if tags:
            docs = [d for d in docs if set(d.tags) & set(tags)]
        docs.sort(key=lambda d: d.created_at, reverse=True)
        start = offset or 0
        return docs[start : start + limit] if limit else docs[start:]

    def stats(self) -> DocumentStats:
        active = [d for d in self.documents.values() if d.is_active]
        return DocumentStats(
            total_documents=len(active),
            total_authors=len({d.author for d in active if d.author}),
            total_tags=sum(len(d.tags) for d in active),
            total_chunks=0,
        )


class InMemoryChunkRepository:
    def __init__(self) -> None:
        self.chunks: list[DocumentChunk] = []

    def delete_for_document(self, doc_id: str) -> int:
        before = len(self.chunks)
        self.chunks = [c for c in self.chunks if c.doc_id != doc_id]
        return before - len(self.chunks)

    def insert_chunks(self, chunks: Sequence[DocumentChunk], *, title: str | None = None) -> int:
        ordered = sorted(chunks, key=lambda c: c.chunk_index)
        self.chunks.extend(replace(c, chunk_id=str(uuid.uuid4())) for c in ordered)
        return len(ordered)

    def list_for_document(self, doc_id: str, *, with_embeddings: bool = False) -> list[DocumentChunk]:
        return sorted((c for c in self.chunks if c.doc_id == doc_id), key=lambda c: c.chunk_index)


@pytest.fixture()
def backend() -> FakeBackend:
    return FakeBackend(name="primary", dim=8)


@pytest.fixture()
def vectors(backend: FakeBackend) -> VectorProvider:
    return VectorProvider([backend], dimensions=16)


@pytest.fixture()
def fake_conn() -> FakeConnection:
    return FakeConnection()


@pytest.fixture()
def doc_repo() -> InMemoryDocumentRepository:
    return InMemoryDocumentRepository()


@pytest.fixture()
def chunk_repo() -> InMemoryChunkRepository:
    return InMemoryChunkRepository()


@pytest.fixture()
def memory_store(
    fake_conn: FakeConnection,
    vectors: VectorProvider,
    doc_repo: InMemoryDocumentRepository,
    chunk_repo: InMemoryChunkRepository,
) -> DocumentStore:
    return DocumentStore(fake_conn, vectors, documents=doc_repo, chunks=chunk_repo)  # type: ignore[arg-type]
