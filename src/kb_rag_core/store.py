from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import replace

import psycopg
from psycopg.errors import UniqueViolation

from kb_rag_core.chunking import TextChunk, chunk_text
from kb_rag_core.db import atomic
from kb_rag_core.errors import ConflictError, InputError, NotFoundError
from kb_rag_core.extractors import extract_plain_text
from kb_rag_core.models import (
    Document,
    DocumentChunk,
    DocumentMetadata,
    DocumentStats,
    DocumentVersion,
    IngestAction,
    IngestOptions,
    IngestResult,
)
from kb_rag_core.repositories.chunks import ChunkRepository
from kb_rag_core.repositories.documents import DocumentRepository
from kb_rag_core.util import is_uuid, new_doc_id
from kb_rag_core.vectors import VectorProvider

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 800
DEFAULT_CHUNK_OVERLAP = 50

# (exists, create_version) -> action; must_not_exist overrides both existing cases.
_INGEST_ACTIONS: dict[tuple[bool, bool], IngestAction] = {
    (False, True): IngestAction.CREATE,
    (False, False): IngestAction.CREATE,
    (True, True): IngestAction.VERSION,
    (True, False): IngestAction.OVERWRITE,
}


def decide_ingest_action(*, exists: bool, create_version: bool, must_not_exist: bool = False) -> IngestAction:
    if exists and must_not_exist:
        return IngestAction.REJECT
    return _INGEST_ACTIONS[(exists, create_version)]


def _require_uuid(doc_id: str) -> None:
    if not is_uuid(doc_id):
        raise InputError(f"Invalid document id: {doc_id!r}", invalid=[str(doc_id)])


class DocumentStore:
    """
    Ingestion, versioning and lookup of knowledge base documents.

    Identity is the exact (title, source_url) pair of an active document. Re-ingesting
    a known pair either archives the current row and bumps its version, or overwrites
    it in place when versioning is disabled. Chunks are always regenerated.
    """

    def __init__(
        self,
        conn: psycopg.Connection,
        vectors: VectorProvider,
        *,
        documents: DocumentRepository | None = None,
        chunks: ChunkRepository | None = None,
        default_chunk_size: int = DEFAULT_CHUNK_SIZE,
        default_chunk_overlap: int = DEFAULT_CHUNK_OVERLAP,
    ):
        self._conn = conn
        self._vectors = vectors
        self._documents = documents or DocumentRepository(conn)
        self._chunks = chunks or ChunkRepository(conn)
        self._default_chunk_size = default_chunk_size
        self._default_chunk_overlap = default_chunk_overlap

    def ingest(
        self,
        content: str,
        metadata: DocumentMetadata,
        options: IngestOptions | None = None,
    ) -> IngestResult:
        options = options or IngestOptions()
        if not metadata.title or not metadata.title.strip():
            raise InputError("Document title is required")
        if not content or not content.strip():
            raise InputError("Document content is empty")

        chunk_size = options.chunk_size or self._default_chunk_size
        chunk_overlap = (
            options.chunk_overlap if options.chunk_overlap is not None else self._default_chunk_overlap
        )
        pieces = chunk_text(text=content, max_tokens=chunk_size, overlap_tokens=chunk_overlap)

        # Embeddings come first so a provider failure leaves storage untouched.
        document_embedding = self._vectors.embed(content)
        chunk_embeddings = self._vectors.embed_batch([p.text for p in pieces])
        logger.info(
            "Embedded document %r and %d chunk(s)", metadata.title, len(chunk_embeddings)
        )

        try:
            return self._write(content, metadata, options, pieces, document_embedding, chunk_embeddings)
        except UniqueViolation:
            # A concurrent first ingestion of the same identity committed after our
            # lookup; a second pass sees its row and versions or rejects against it.
            logger.info("Document %r was created concurrently; retrying", metadata.title)
        try:
            return self._write(content, metadata, options, pieces, document_embedding, chunk_embeddings)
        except UniqueViolation as e:
            raise ConflictError(f"Document {metadata.title!r} is being ingested concurrently") from e

    def _write(
        self,
        content: str,
        metadata: DocumentMetadata,
        options: IngestOptions,
        pieces: list[TextChunk],
        document_embedding: list[float],
        chunk_embeddings: list[list[float]],
    ) -> IngestResult:
        with atomic(self._conn):
            existing = self._documents.find_active_by_identity(
                metadata.title, metadata.source_url, for_update=True
            )
            action = decide_ingest_action(
                exists=existing is not None,
                create_version=options.create_version,
                must_not_exist=options.must_not_exist,
            )

            if action is IngestAction.REJECT:
                assert existing is not None
                raise ConflictError(
                    f"Document {metadata.title!r} already exists as {existing.doc_id}"
                )
            if action is IngestAction.CREATE:
                doc_id = new_doc_id()
                version_number = 1
                logger.info("Creating new document %r", metadata.title)
            elif action is IngestAction.VERSION:
                assert existing is not None
                doc_id = existing.doc_id
                self._documents.archive_version(doc_id)
                version_number = existing.version_number + 1
                logger.info("Creating version %d for document %r", version_number, metadata.title)
            else:
                assert existing is not None
                doc_id = existing.doc_id
                version_number = existing.version_number
                logger.info("Updating existing document %r in place", metadata.title)

            if existing is not None:
                self._chunks.delete_for_document(doc_id)

            self._documents.upsert_document(
                Document(
                    doc_id=doc_id,
                    title=metadata.title,
                    source_url=metadata.source_url,
                    content=content,
                    author=metadata.author,
                    published_date=metadata.published_date,
                    tags=tuple(metadata.tags),
                    embedding=document_embedding,
                    version_number=version_number,
                )
            )
            created = self._chunks.insert_chunks(
                [
                    DocumentChunk(
                        doc_id=doc_id,
                        chunk_index=piece.chunk_index,
                        chunk_text=piece.text,
                        token_count=piece.token_count,
                        embedding=embedding,
                    )
                    for piece, embedding in zip(pieces, chunk_embeddings)
                ],
                title=metadata.title,
            )

        logger.info("Document %s ingested: version %d, %d chunk(s)", doc_id, version_number, created)
        return IngestResult(
            doc_id=doc_id,
            title=metadata.title,
            chunks_created=created,
            version_number=version_number,
            action=action,
        )

    def ingest_file(
        self,
        data: bytes,
        content_type: str | None,
        metadata: DocumentMetadata,
        options: IngestOptions | None = None,
        *,
        filename: str | None = None,
    ) -> IngestResult:
        content = extract_plain_text(data, content_type, filename)
        return self.ingest(content, metadata, options)

    def get_by_id(self, doc_id: str) -> Document:
        _require_uuid(doc_id)
        doc = self._documents.get_document(doc_id)
        if doc is None:
            raise NotFoundError(f"Document {doc_id} not found")
        return doc

    def list_active(
        self,
        *,
        author: str | None = None,
        tags: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Document]:
        docs = self._documents.list_active(author=author, tags=tags, limit=limit, offset=offset)
        # Listings don't carry vectors.
        return [replace(d, embedding=None) for d in docs]

    def soft_delete(self, doc_id: str) -> None:
        _require_uuid(doc_id)
        with atomic(self._conn):
            deleted = self._documents.soft_delete(doc_id)
        if not deleted:
            raise NotFoundError(f"Document {doc_id} not found")

    def list_versions(self, doc_id: str) -> list[DocumentVersion]:
        _require_uuid(doc_id)
        if self._documents.get_document(doc_id, include_inactive=True) is None:
            raise NotFoundError(f"Document {doc_id} not found")
        return self._documents.list_versions(doc_id)

    def list_chunks(self, doc_id: str) -> list[DocumentChunk]:
        self.get_by_id(doc_id)
        return self._chunks.list_for_document(doc_id)

    def stats(self) -> DocumentStats:
        return self._documents.stats()
