from __future__ import annotations

import psycopg

from kb_rag_core.errors import InputError, NotFoundError
from kb_rag_core.models import (
    ContextSource,
    DocumentUsage,
    HybridSearchFilters,
    PopularDocument,
    RagContext,
    SearchFilters,
    SearchResult,
)
from kb_rag_core.repositories.citations import CitationRepository
from kb_rag_core.repositories.search import SearchRepository
from kb_rag_core.util import is_uuid
from kb_rag_core.vectors import VectorProvider

CONTEXT_HEADER = "Relevant information from knowledge base:"
SNIPPET_MAX_CHARS = 200


def truncate_snippet(text: str, max_length: int = SNIPPET_MAX_CHARS) -> str:
    """
    Shortens text for display without cutting a word in half.

    Prefers ending on a period found in the last 30% of the window; otherwise cuts at
    the last space and appends an ellipsis; hard-cuts only when there is no space.
    """
    if len(text) <= max_length:
        return text

    truncated = text[:max_length]
    last_period = truncated.rfind(".")
    # Only a period that ends a sentence: followed by whitespace in the full text.
    while last_period > max_length * 0.7 and not text[last_period + 1].isspace():
        last_period = truncated.rfind(".", 0, last_period)
    if last_period > max_length * 0.7:
        return truncated[: last_period + 1]

    last_space = max(truncated.rfind(" "), truncated.rfind("\n"))
    if last_space > 0:
        return truncated[:last_space].rstrip() + "..."

    return truncated + "..."


def render_context(results: list[SearchResult], *, snippet_chars: int = SNIPPET_MAX_CHARS) -> RagContext:
    if not results:
        return RagContext(context_text="", sources=[])

    parts = [CONTEXT_HEADER, ""]
    sources: list[ContextSource] = []
    for n, result in enumerate(results, start=1):
        parts.append(f"[{n}] {result.title}")
        parts.append(result.content)
        if result.source_url:
            parts.append(f"Source: {result.source_url}")
        parts.append("")
        sources.append(
            ContextSource(
                index=n,
                doc_id=result.doc_id,
                chunk_id=result.chunk_id,
                title=result.title,
                snippet=truncate_snippet(result.content, snippet_chars),
                url=result.source_url,
                similarity=result.similarity,
            )
        )
    return RagContext(context_text="\n".join(parts), sources=sources)


class Retriever:
    def __init__(
        self,
        conn: psycopg.Connection,
        vectors: VectorProvider,
        *,
        search: SearchRepository | None = None,
        citations: CitationRepository | None = None,
        match_threshold: float = 0.7,
        hybrid_threshold: float = 0.5,
        document_count: int = 5,
        chunk_count: int = 10,
        full_text_weight: float = 0.3,
        semantic_weight: float = 0.7,
        snippet_chars: int = SNIPPET_MAX_CHARS,
    ):
        self._vectors = vectors
        self._search = search or SearchRepository(conn)
        self._citations = citations or CitationRepository(conn)
        self._match_threshold = match_threshold
        self._hybrid_threshold = hybrid_threshold
        self._document_count = document_count
        self._chunk_count = chunk_count
        self._full_text_weight = full_text_weight
        self._semantic_weight = semantic_weight
        self._snippet_chars = snippet_chars

    def _embed_query(self, query: str) -> list[float]:
        if not query or not query.strip():
            raise InputError("Search query is empty")
        return self._vectors.embed(query)

    @staticmethod
    def _pick(value: float | int | None, default: float | int) -> float | int:
        return default if value is None else value

    def search_documents(self, query: str, filters: SearchFilters | None = None) -> list[SearchResult]:
        filters = filters or SearchFilters()
        vector = self._embed_query(query)
        return self._search.search_documents(
            vector,
            threshold=self._pick(filters.threshold, self._match_threshold),
            count=int(self._pick(filters.count, self._document_count)),
            author=filters.author,
            tags=filters.tags,
        )

    def search_chunks(self, query: str, filters: SearchFilters | None = None) -> list[SearchResult]:
        filters = filters or SearchFilters()
        vector = self._embed_query(query)
        return self._search.search_chunks(
            vector,
            threshold=self._pick(filters.threshold, self._match_threshold),
            count=int(self._pick(filters.count, self._chunk_count)),
            author=filters.author,
            tags=filters.tags,
        )

    def hybrid_search(self, query: str, filters: HybridSearchFilters | None = None) -> list[SearchResult]:
        filters = filters or HybridSearchFilters()
        vector = self._embed_query(query)
        return self._search.hybrid_search(
            query.strip(),
            vector,
            threshold=self._pick(filters.threshold, self._hybrid_threshold),
            count=int(self._pick(filters.count, self._chunk_count)),
            full_text_weight=self._pick(filters.full_text_weight, self._full_text_weight),
            semantic_weight=self._pick(filters.semantic_weight, self._semantic_weight),
            author=filters.author,
            tags=filters.tags,
        )

    def build_context(self, query: str, filters: SearchFilters | None = None) -> RagContext:
        """Numbered context block; the ``[n]`` numbers are the citation vocabulary."""
        return render_context(self.search_chunks(query, filters), snippet_chars=self._snippet_chars)

    def popular_documents(self, limit: int = 10) -> list[PopularDocument]:
        return self._citations.popular_documents(limit)

    def document_usage(self, doc_id: str) -> DocumentUsage:
        if not is_uuid(doc_id):
            raise InputError(f"Invalid document id: {doc_id!r}", invalid=[str(doc_id)])
        if not self._citations.active_doc_ids([doc_id]):
            raise NotFoundError(f"Document {doc_id} not found")
        return self._citations.document_usage(doc_id)
