from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

import psycopg

from kb_rag_core.models import Citation, CitationRecord, DocumentUsage, PopularDocument

_RECORD_SELECT = """
select
  c.citation_id::text, c.doc_id::text, c.citation_index, c.snippet, c.relevance_score,
  d.title, c.chunk_id::text, d.source_url, d.author, d.published_date
from citations c
join documents d on c.doc_id = d.doc_id
"""


def _record_from_row(row: Sequence[Any]) -> CitationRecord:
    return CitationRecord(
        citation_id=row[0],
        doc_id=row[1],
        citation_index=row[2],
        snippet=row[3],
        relevance_score=float(row[4]) if row[4] is not None else 0.0,
        title=row[5],
        chunk_id=row[6],
        url=row[7],
        author=row[8],
        published_date=row[9],
    )


class CitationRepository:
    def __init__(self, conn: psycopg.Connection):
        self._conn = conn

    def active_doc_ids(self, doc_ids: Sequence[str]) -> set[str]:
        if not doc_ids:
            return set()
        rows = self._conn.execute(
            "select doc_id::text from documents where doc_id = any(%s::uuid[]) and is_active",
            (list(doc_ids),),
        ).fetchall()
        return {r[0] for r in rows}

    def insert_citations(self, citations: Iterable[Citation]) -> int:
        """Does not commit."""
        params = [
            (
                c.brief_id,
                c.content_id,
                c.doc_id,
                c.chunk_id,
                c.citation_index,
                c.snippet,
                c.relevance_score,
            )
            for c in citations
        ]
        if not params:
            return 0
        with self._conn.cursor() as cur:
            cur.executemany(
                """
                insert into citations (
                  brief_id, content_id, doc_id, chunk_id, citation_index, snippet, relevance_score
                ) values (
                  %s, %s, %s::uuid, %s::uuid, %s, %s, %s
                )
                """,
                params,
            )
        return len(params)

    def list_for_brief(self, brief_id: int) -> list[CitationRecord]:
        rows = self._conn.execute(
            _RECORD_SELECT + " where c.brief_id=%s order by c.citation_index, c.created_at",
            (brief_id,),
        ).fetchall()
        return [_record_from_row(r) for r in rows]

    def list_for_content(self, content_id: int) -> list[CitationRecord]:
        rows = self._conn.execute(
            _RECORD_SELECT + " where c.content_id=%s order by c.citation_index, c.created_at",
            (content_id,),
        ).fetchall()
        return [_record_from_row(r) for r in rows]

    def popular_documents(self, limit: int = 10) -> list[PopularDocument]:
        rows = self._conn.execute(
            """
            select d.doc_id::text, d.title, count(c.citation_id) as citation_count,
                   d.source_url, d.author, d.tags
            from documents d
            left join citations c on d.doc_id = c.doc_id
            where d.is_active
            group by d.doc_id
            order by citation_count desc, d.created_at asc
            limit %s
            """,
            (limit,),
        ).fetchall()
        return [
            PopularDocument(
                doc_id=r[0],
                title=r[1],
                citation_count=int(r[2]),
                source_url=r[3],
                author=r[4],
                tags=tuple(r[5] or ()),
            )
            for r in rows
        ]

    def document_usage(self, doc_id: str) -> DocumentUsage:
        row = self._conn.execute(
            """
            select
              count(distinct c.brief_id),
              count(distinct c.content_id),
              count(c.citation_id),
              avg(c.relevance_score),
              max(c.created_at)
            from citations c
            where c.doc_id=%s::uuid
            """,
            (doc_id,),
        ).fetchone()
        assert row is not None
        return DocumentUsage(
            used_in_briefs=int(row[0]),
            used_in_contents=int(row[1]),
            total_citations=int(row[2]),
            avg_relevance_score=float(row[3]) if row[3] is not None else None,
            last_used=row[4],
        )
