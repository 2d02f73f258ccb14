from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum


@dataclass(frozen=True)
class DocumentMetadata:
    title: str
    source_url: str | None = None
    author: str | None = None
    published_date: date | None = None
    tags: tuple[str, ...] = ()


@dataclass(frozen=True)
class Document:
    doc_id: str
    title: str
    content: str
    source_url: str | None = None
    author: str | None = None
    published_date: date | None = None
    tags: tuple[str, ...] = ()
    embedding: list[float] | None = field(default=None, repr=False)
    version_number: int = 1
    is_active: bool = True
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class DocumentVersion:
    """Snapshot of a document at the moment a newer version replaced it."""

    doc_id: str
    version_number: int
    title: str
    content: str | None = None
    source_url: str | None = None
    author: str | None = None
    published_date: date | None = None
    tags: tuple[str, ...] = ()
    embedding: list[float] | None = field(default=None, repr=False)
    version_id: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class DocumentChunk:
    doc_id: str
    chunk_index: int
    chunk_text: str
    token_count: int
    embedding: list[float] | None = field(default=None, repr=False)
    chunk_id: str | None = None


@dataclass(frozen=True)
class Citation:
    # Exactly one of brief_id / content_id identifies the citing artifact.
    doc_id: str
    citation_index: int
    snippet: str
    relevance_score: float
    brief_id: int | None = None
    content_id: int | None = None
    chunk_id: str | None = None
    citation_id: str | None = None


class IngestAction(str, Enum):
    CREATE = "create"
    VERSION = "version"
    OVERWRITE = "overwrite"
    REJECT = "reject"


@dataclass(frozen=True)
class IngestOptions:
    chunk_size: int | None = None
    chunk_overlap: int | None = None
    create_version: bool = True
    must_not_exist: bool = False


@dataclass(frozen=True)
class IngestResult:
    doc_id: str
    title: str
    chunks_created: int
    version_number: int
    action: IngestAction


@dataclass(frozen=True)
class SearchFilters:
    author: str | None = None
    tags: tuple[str, ...] | None = None
    threshold: float | None = None
    count: int | None = None


@dataclass(frozen=True)
class HybridSearchFilters(SearchFilters):
    full_text_weight: float | None = None
    semantic_weight: float | None = None


@dataclass(frozen=True)
class SearchResult:
    doc_id: str
    title: str
    content: str
    similarity: float
    chunk_id: str | None = None
    chunk_index: int | None = None
    source_url: str | None = None
    author: str | None = None
    tags: tuple[str, ...] = ()
    published_date: date | None = None
    combined_score: float | None = None

    @property
    def score(self) -> float:
        return self.combined_score if self.combined_score is not None else self.similarity


@dataclass(frozen=True)
class ContextSource:
    index: int
    doc_id: str
    title: str
    snippet: str
    similarity: float
    chunk_id: str | None = None
    url: str | None = None


@dataclass(frozen=True)
class RagContext:
    context_text: str
    sources: list[ContextSource]


@dataclass(frozen=True)
class CitationValidation:
    valid: bool
    missing: list[str]
    existing: list[str]


@dataclass(frozen=True)
class ExtractedCitation:
    citation_index: int
    doc_id: str
    snippet: str
    similarity: float
    chunk_id: str | None = None
    url: str | None = None


@dataclass(frozen=True)
class CitationRecord:
    citation_id: str
    doc_id: str
    citation_index: int
    snippet: str
    relevance_score: float
    title: str
    chunk_id: str | None = None
    url: str | None = None
    author: str | None = None
    published_date: date | None = None


@dataclass(frozen=True)
class DocumentStats:
    total_documents: int
    total_authors: int
    total_tags: int
    total_chunks: int


@dataclass(frozen=True)
class DocumentUsage:
    used_in_briefs: int
    used_in_contents: int
    total_citations: int
    avg_relevance_score: float | None
    last_used: datetime | None


@dataclass(frozen=True)
class PopularDocument:
    doc_id: str
    title: str
    citation_count: int
    source_url: str | None = None
    author: str | None = None
    tags: tuple[str, ...] = ()
