from kb_rag_core.chunking import TextChunk, chunk_text
from kb_rag_core.citations import CitationLedger, extract_citations
from kb_rag_core.config import Settings, load_settings
from kb_rag_core.embedding import EmbeddingClient, GeminiEmbeddingClient
from kb_rag_core.errors import (
    ConflictError,
    InputError,
    NotFoundError,
    ProviderError,
    ProviderTimeoutError,
    RagError,
    ValidationMismatchError,
)
from kb_rag_core.extractors import extract_plain_text
from kb_rag_core.logging_config import setup_logging
from kb_rag_core.retrieval import Retriever, truncate_snippet
from kb_rag_core.service import KnowledgeBase, knowledge_base, open_knowledge_base, prepare_database
from kb_rag_core.store import DocumentStore, decide_ingest_action
from kb_rag_core.vectors import VectorProvider, build_vector_provider, reconcile

__all__ = [
    "__version__",
    "CitationLedger",
    "ConflictError",
    "DocumentStore",
    "EmbeddingClient",
    "GeminiEmbeddingClient",
    "InputError",
    "KnowledgeBase",
    "NotFoundError",
    "ProviderError",
    "ProviderTimeoutError",
    "RagError",
    "Retriever",
    "Settings",
    "TextChunk",
    "ValidationMismatchError",
    "VectorProvider",
    "build_vector_provider",
    "chunk_text",
    "decide_ingest_action",
    "extract_citations",
    "extract_plain_text",
    "load_settings",
    "knowledge_base",
    "open_knowledge_base",
    "prepare_database",
    "reconcile",
    "setup_logging",
    "truncate_snippet",
]

__version__ = "0.1.0"
