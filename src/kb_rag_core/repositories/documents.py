from __future__ import annotations

from collections.abc import Sequence
from typing import Any

import psycopg

from kb_rag_core.db import parse_vector, vector_literal
from kb_rag_core.models import Document, DocumentStats, DocumentVersion

_DOCUMENT_COLUMNS = """
  doc_id::text, title, source_url, content, embedding::text,
  author, published_date, tags, version_number, is_active,
  created_at, updated_at
"""


def _document_from_row(row: Sequence[Any]) -> Document:
    return Document(
        doc_id=row[0],
        title=row[1],
        source_url=row[2],
        content=row[3],
        embedding=parse_vector(row[4]),
        author=row[5],
        published_date=row[6],
        tags=tuple(row[7] or ()),
        version_number=row[8],
        is_active=row[9],
        created_at=row[10],
        updated_at=row[11],
    )


class DocumentRepository:
    """
    Document rows and their archived versions.

    Write methods do not commit; callers group them with ``kb_rag_core.db.atomic``.
    """

    def __init__(self, conn: psycopg.Connection):
        self._conn = conn

    def find_active_by_identity(
        self,
        title: str,
        source_url: str | None,
        *,
        for_update: bool = False,
    ) -> Document | None:
        # A missing url only ever matches other url-less documents.
        if source_url is None:
            where = "title=%s and source_url is null and is_active"
            params: tuple[Any, ...] = (title,)
        else:
            where = "title=%s and source_url=%s and is_active"
            params = (title, source_url)
        lock = " for update" if for_update else ""
        row = self._conn.execute(
            f"select {_DOCUMENT_COLUMNS} from documents where {where} order by created_at limit 1{lock}",
            params,
        ).fetchone()
        return _document_from_row(row) if row else None

    def get_document(self, doc_id: str, *, include_inactive: bool = False) -> Document | None:
        active = "" if include_inactive else " and is_active"
        row = self._conn.execute(
            f"select {_DOCUMENT_COLUMNS} from documents where doc_id=%s::uuid{active}",
            (doc_id,),
        ).fetchone()
        return _document_from_row(row) if row else None

    def upsert_document(self, doc: Document) -> None:
        self._conn.execute(
            """
            insert into documents (
              doc_id, title, source_url, content, embedding,
              author, published_date, tags, version_number, is_active
            ) values (
              %(doc_id)s::uuid, %(title)s, %(source_url)s, %(content)s, %(embedding)s::vector,
              %(author)s, %(published_date)s, %(tags)s, %(version_number)s, true
            )
            on conflict (doc_id) do update set
              title = excluded.title,
              source_url = excluded.source_url,
              content = excluded.content,
              embedding = excluded.embedding,
              author = excluded.author,
              published_date = excluded.published_date,
              tags = excluded.tags,
              version_number = excluded.version_number,
              is_active = true,
              updated_at = now()
            """,
            {
                "doc_id": doc.doc_id,
                "title": doc.title,
                "source_url": doc.source_url,
                "content": doc.content,
                "embedding": vector_literal(doc.embedding) if doc.embedding is not None else None,
                "author": doc.author,
                "published_date": doc.published_date,
                "tags": list(doc.tags),
                "version_number": doc.version_number,
            },
        )

    def archive_version(self, doc_id: str) -> int | None:
        """Snapshots the current document row; returns the archived version number."""
        row = self._conn.execute(
            """
            insert into document_versions (
              doc_id, version_number, title, source_url, content, embedding,
              author, published_date, tags, metadata
            )
            select
              d.doc_id, d.version_number, d.title, d.source_url, d.content, d.embedding,
              d.author, d.published_date, d.tags,
              jsonb_build_object(
                'title', d.title,
                'author', d.author,
                'source_url', d.source_url,
                'tags', to_jsonb(d.tags),
                'created_at', d.created_at
              )
            from documents d
            where d.doc_id=%s::uuid
            returning version_number
            """,
            (doc_id,),
        ).fetchone()
        return row[0] if row else None

    def list_versions(self, doc_id: str) -> list[DocumentVersion]:
        rows = self._conn.execute(
            """
            select
              version_id::text, doc_id::text, version_number, title, source_url,
              content, author, published_date, tags, created_at
            from document_versions
            where doc_id=%s::uuid
            order by version_number desc
            """,
            (doc_id,),
        ).fetchall()
        return [
            DocumentVersion(
                version_id=r[0],
                doc_id=r[1],
                version_number=r[2],
                title=r[3],
                source_url=r[4],
                content=r[5],
                author=r[6],
                published_date=r[7],
                tags=tuple(r[8] or ()),
                created_at=r[9],
            )
            for r in rows
        ]

    def soft_delete(self, doc_id: str) -> bool:
        cur = self._conn.execute(
            "update documents set is_active=false, updated_at=now() where doc_id=%s::uuid and is_active",
            (doc_id,),
        )
        return cur.rowcount > 0

    def list_active(
        self,
        *,
        author: str | None = None,
        tags: Sequence[str] | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Document]:
        clauses = ["is_active"]
        params: list[Any] = []
        if author:
            clauses.append("author = %s")
            params.append(author)
        if tags:
            clauses.append("tags && %s::text[]")
            params.append(list(tags))
        sql = f"select {_DOCUMENT_COLUMNS} from documents where {' and '.join(clauses)}"
        sql += " order by created_at desc, doc_id"
        if limit:
            sql += " limit %s"
            params.append(limit)
        if offset:
            sql += " offset %s"
            params.append(offset)
        rows = self._conn.execute(sql, params).fetchall()
        return [_document_from_row(r) for r in rows]

    def stats(self) -> DocumentStats:
        row = self._conn.execute(
            """
            select
              count(distinct d.doc_id),
              count(distinct d.author),
              coalesce(sum(cardinality(d.tags)), 0),
              (select count(*) from document_chunks dc join documents a on a.doc_id = dc.doc_id where a.is_active)
            from documents d
            where d.is_active
            """
        ).fetchone()
        assert row is not None
        return DocumentStats(
            total_documents=int(row[0]),
            total_authors=int(row[1]),
            total_tags=int(row[2]),
            total_chunks=int(row[3]),
        )

