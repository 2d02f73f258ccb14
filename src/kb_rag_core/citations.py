from __future__ import annotations

import logging
import re
from collections.abc import Iterable, Sequence

import psycopg

from kb_rag_core.db import atomic
from kb_rag_core.errors import InputError, ValidationMismatchError
from kb_rag_core.models import (
    Citation,
    CitationRecord,
    CitationValidation,
    ContextSource,
    ExtractedCitation,
)
from kb_rag_core.repositories.citations import CitationRepository
from kb_rag_core.util import is_uuid

logger = logging.getLogger(__name__)

_MARKER_RE = re.compile(r"\[(\d+)\]")


def extract_citations(text: str, sources: Sequence[ContextSource]) -> list[ExtractedCitation]:
    """
    Maps ``[n]`` markers in generated text to the numbered context sources.

    Each number is taken once, at its first occurrence. Numbers without a source are
    logged and skipped: generated text is not trusted to cite consistently.
    """
    by_index = {s.index: s for s in sources}
    seen: set[int] = set()
    citations: list[ExtractedCitation] = []
    unmatched: list[int] = []

    for match in _MARKER_RE.finditer(text or ""):
        n = int(match.group(1))
        if n in seen:
            continue
        seen.add(n)
        source = by_index.get(n)
        if source is None:
            unmatched.append(n)
            continue
        citations.append(
            ExtractedCitation(
                citation_index=n,
                doc_id=source.doc_id,
                chunk_id=source.chunk_id,
                snippet=source.snippet,
                url=source.url,
                similarity=source.similarity,
            )
        )

    if unmatched:
        logger.info("Ignoring citation marker(s) with no matching source: %s", unmatched)
    return citations


class CitationLedger:
    def __init__(self, conn: psycopg.Connection, *, citations: CitationRepository | None = None):
        self._conn = conn
        self._citations = citations or CitationRepository(conn)

    def validate_cited_ids(self, ids: Iterable[str]) -> CitationValidation:
        unique = list(dict.fromkeys(ids))
        if not unique:
            return CitationValidation(valid=True, missing=[], existing=[])

        malformed = [i for i in unique if not is_uuid(i)]
        if malformed:
            raise InputError("All document IDs must be valid UUIDs", invalid=malformed)

        active = self._citations.active_doc_ids([i.lower() for i in unique])
        existing = [i for i in unique if i.lower() in active]
        missing = [i for i in unique if i.lower() not in active]
        return CitationValidation(valid=not missing, missing=missing, existing=existing)

    def require_valid(self, ids: Iterable[str]) -> CitationValidation:
        result = self.validate_cited_ids(ids)
        if not result.valid:
            raise ValidationMismatchError(result.missing, result.existing)
        return result

    def extract_citations(self, text: str, sources: Sequence[ContextSource]) -> list[ExtractedCitation]:
        return extract_citations(text, sources)

    def persist(self, citations: Sequence[Citation]) -> int:
        if not citations:
            return 0
        with atomic(self._conn):
            return self._citations.insert_citations(citations)

    def record_generation(
        self,
        text: str,
        sources: Sequence[ContextSource],
        *,
        brief_id: int | None = None,
        content_id: int | None = None,
    ) -> list[Citation]:
        """
        Extracts and stores the citations of one generation event.

        Storage failures are logged and yield ``[]``; the generated content they
        belong to has already been saved and stays valid without them.
        """
        if (brief_id is None) == (content_id is None):
            raise InputError("Exactly one of brief_id or content_id must be set")

        rows = [
            Citation(
                brief_id=brief_id,
                content_id=content_id,
                doc_id=c.doc_id,
                chunk_id=c.chunk_id,
                citation_index=c.citation_index,
                snippet=c.snippet,
                relevance_score=c.similarity,
            )
            for c in extract_citations(text, sources)
        ]
        if not rows:
            return []
        try:
            self.persist(rows)
        except psycopg.Error:
            target = f"brief {brief_id}" if brief_id is not None else f"content {content_id}"
            logger.exception("Failed to store %d citation(s) for %s", len(rows), target)
            return []
        logger.info("Stored %d citation(s)", len(rows))
        return rows

    def citations_for_brief(self, brief_id: int) -> list[CitationRecord]:
        return self._citations.list_for_brief(brief_id)

    def citations_for_content(self, content_id: int) -> list[CitationRecord]:
        return self._citations.list_for_content(content_id)
