from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import psycopg

from kb_rag_core.db import vector_literal
from kb_rag_core.models import SearchResult

# Optional filters: a null parameter disables the condition.
_FILTERS = """
  and (%(author)s::text is null or d.author = %(author)s::text)
  and (%(tags)s::text[] is null or d.tags && %(tags)s::text[])
"""


def _params(
    vector: Sequence[float],
    *,
    threshold: float,
    count: int,
    author: str | None,
    tags: Sequence[str] | None,
    **extra: Any,
) -> dict[str, Any]:
    return {
        "q": vector_literal(vector),
        "threshold": threshold,
        "count": count,
        "author": author or None,
        "tags": list(tags) if tags else None,
        **extra,
    }


class SearchRepository:
    """
    Nearest-neighbour and full-text ranking over active documents.

    Ties on score fall back to creation order so repeated queries over unchanged
    data return rows in the same order.
    """

    def __init__(self, conn: psycopg.Connection):
        self._conn = conn

    def search_documents(
        self,
        vector: Sequence[float],
        *,
        threshold: float,
        count: int,
        author: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> list[SearchResult]:
        rows = self._conn.execute(
            f"""
            select
              d.doc_id::text, d.title, d.content, d.source_url, d.author, d.tags, d.published_date,
              1 - (d.embedding <=> %(q)s::vector) as similarity
            from documents d
            where d.is_active
              and d.embedding is not null
              and 1 - (d.embedding <=> %(q)s::vector) > %(threshold)s::float8
              {_FILTERS}
            order by similarity desc, d.created_at asc, d.doc_id asc
            limit %(count)s
            """,
            _params(vector, threshold=threshold, count=count, author=author, tags=tags),
        ).fetchall()
        return [
            SearchResult(
                doc_id=r[0],
                title=r[1],
                content=r[2],
                source_url=r[3],
                author=r[4],
                tags=tuple(r[5] or ()),
                published_date=r[6],
                similarity=float(r[7]),
            )
            for r in rows
        ]

    def search_chunks(
        self,
        vector: Sequence[float],
        *,
        threshold: float,
        count: int,
        author: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> list[SearchResult]:
        rows = self._conn.execute(
            f"""
            select
              dc.chunk_id::text, dc.doc_id::text, d.title, dc.chunk_text, dc.chunk_index,
              d.source_url, d.author, d.tags,
              1 - (dc.embedding <=> %(q)s::vector) as similarity
            from document_chunks dc
            join documents d on d.doc_id = dc.doc_id
            where d.is_active
              and dc.embedding is not null
              and 1 - (dc.embedding <=> %(q)s::vector) > %(threshold)s::float8
              {_FILTERS}
            order by similarity desc, d.created_at asc, dc.chunk_index asc, dc.chunk_id asc
            limit %(count)s
            """,
            _params(vector, threshold=threshold, count=count, author=author, tags=tags),
        ).fetchall()
        return [_chunk_result(r, similarity=float(r[8])) for r in rows]

    def hybrid_search(
        self,
        query: str,
        vector: Sequence[float],
        *,
        threshold: float,
        count: int,
        full_text_weight: float,
        semantic_weight: float,
        author: str | None = None,
        tags: Sequence[str] | None = None,
    ) -> list[SearchResult]:
        rows = self._conn.execute(
            f"""
            with scored as (
              select
                dc.chunk_id, dc.doc_id, d.title, dc.chunk_text, dc.chunk_index,
                d.source_url, d.author, d.tags, d.created_at,
                ts_rank(to_tsvector('english', dc.chunk_text), plainto_tsquery('english', %(query)s))
                  as lexical_rank,
                to_tsvector('english', dc.chunk_text) @@ plainto_tsquery('english', %(query)s)
                  as lexical_match,
                1 - (dc.embedding <=> %(q)s::vector) as semantic_similarity
              from document_chunks dc
              join documents d on d.doc_id = dc.doc_id
              where d.is_active
                and dc.embedding is not null
                {_FILTERS}
            )
            select
              chunk_id::text, doc_id::text, title, chunk_text, chunk_index,
              source_url, author, tags,
              semantic_similarity,
              %(w_text)s::float8 * lexical_rank + %(w_sem)s::float8 * semantic_similarity
                as combined_score
            from scored
            where lexical_match or semantic_similarity > %(threshold)s::float8
            order by combined_score desc, created_at asc, chunk_index asc, chunk_id asc
            limit %(count)s
            """,
            _params(
                vector,
                threshold=threshold,
                count=count,
                author=author,
                tags=tags,
                query=query,
                w_text=full_text_weight,
                w_sem=semantic_weight,
            ),
        ).fetchall()
        return [_chunk_result(r, similarity=float(r[8]), combined_score=float(r[9])) for r in rows]


def _chunk_result(row: Sequence[Any], *, similarity: float, combined_score: float | None = None) -> SearchResult:
    return SearchResult(
        chunk_id=row[0],
        doc_id=row[1],
        title=row[2],
        content=row[3],
        chunk_index=row[4],
        source_url=row[5],
        author=row[6],
        tags=tuple(row[7] or ()),
        similarity=similarity,
        combined_score=combined_score,
    )
