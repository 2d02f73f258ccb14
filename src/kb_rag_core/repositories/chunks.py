from __future__ import annotations

import json
from collections.abc import Iterable

import psycopg

from kb_rag_core.db import parse_vector, vector_literal
from kb_rag_core.models import DocumentChunk


class ChunkRepository:
    def __init__(self, conn: psycopg.Connection):
        self._conn = conn

    def delete_for_document(self, doc_id: str) -> int:
        cur = self._conn.execute("delete from document_chunks where doc_id=%s::uuid", (doc_id,))
        return cur.rowcount

    def insert_chunks(self, chunks: Iterable[DocumentChunk], *, title: str | None = None) -> int:
        """
        Inserts a document's chunks in ``chunk_index`` order. Does not commit.
        """
        ordered = sorted(chunks, key=lambda c: c.chunk_index)
        if not ordered:
            return 0
        with self._conn.cursor() as cur:
            cur.executemany(
                """
                insert into document_chunks (
                  doc_id, chunk_index, chunk_text, embedding, token_count, metadata
                ) values (
                  %s::uuid, %s, %s, %s::vector, %s, %s::jsonb
                )
                """,
                [
                    (
                        c.doc_id,
                        c.chunk_index,
                        c.chunk_text,
                        vector_literal(c.embedding) if c.embedding is not None else None,
                        c.token_count,
                        json.dumps({"title": title, "chunk_index": c.chunk_index}),
                    )
                    for c in ordered
                ],
            )
        return len(ordered)

    def list_for_document(self, doc_id: str, *, with_embeddings: bool = False) -> list[DocumentChunk]:
        embedding_col = "embedding::text" if with_embeddings else "null"
        rows = self._conn.execute(
            f"""
            select chunk_id::text, doc_id::text, chunk_index, chunk_text, token_count, {embedding_col}
            from document_chunks
            where doc_id=%s::uuid
            order by chunk_index
            """,
            (doc_id,),
        ).fetchall()
        return [
            DocumentChunk(
                chunk_id=r[0],
                doc_id=r[1],
                chunk_index=r[2],
                chunk_text=r[3],
                token_count=r[4],
                embedding=parse_vector(r[5]),
            )
            for r in rows
        ]
