import uuid

import pytest

from conftest import FakeBackend, FakeConnection
from kb_rag_core.config import Settings
from kb_rag_core.models import DocumentMetadata, SearchFilters
from kb_rag_core.service import knowledge_base, open_knowledge_base, prepare_database
from kb_rag_core.vectors import VectorProvider


def test_open_knowledge_base_wires_components() -> None:
    settings = Settings(_env_file=None, OPENAI_API_KEY="sk-test", GEMINI_API_KEY=None)
    kb = open_knowledge_base(FakeConnection(), settings)  # type: ignore[arg-type]

    assert kb.vectors.provider_names == ["openai"]
    assert kb.store is not None
    assert kb.retriever is not None
    assert kb.citations is not None


def test_open_knowledge_base_accepts_vector_provider() -> None:
    vectors = VectorProvider([FakeBackend("fake")], dimensions=8)
    kb = open_knowledge_base(FakeConnection(), Settings(_env_file=None), vectors=vectors)  # type: ignore[arg-type]
    assert kb.vectors is vectors


def test_database_helpers_require_dsn() -> None:
    settings = Settings(_env_file=None, PG_DSN=None)
    with pytest.raises(ValueError, match="PG_DSN"):
        prepare_database(settings)
    with pytest.raises(ValueError, match="PG_DSN"):
        with knowledge_base(settings):
            pass


def test_knowledge_base_round_trip(pg_dsn: str, pg_schema: str) -> None:
    settings = Settings(_env_file=None, PG_DSN=pg_dsn, PG_SCHEMA=pg_schema)
    assert prepare_database(settings) == []

    vectors = VectorProvider([FakeBackend("fake")], dimensions=1536)
    with knowledge_base(settings, vectors=vectors) as kb:
        title = f"Service {uuid.uuid4()}"
        result = kb.store.ingest("Service level body text.", DocumentMetadata(title=title))
        context = kb.retriever.build_context("Service level body text.", SearchFilters(threshold=0.99))
        assert result.doc_id in {s.doc_id for s in context.sources}
