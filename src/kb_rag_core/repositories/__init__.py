from kb_rag_core.repositories.chunks import ChunkRepository
from kb_rag_core.repositories.citations import CitationRepository
from kb_rag_core.repositories.documents import DocumentRepository
from kb_rag_core.repositories.search import SearchRepository

__all__ = [
    "ChunkRepository",
    "CitationRepository",
    "DocumentRepository",
    "SearchRepository",
]
