from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from time import monotonic

from kb_rag_core.config import Settings
from kb_rag_core.embedding import EmbeddingBackend, EmbeddingClient, GeminiEmbeddingClient
from kb_rag_core.errors import InputError, ProviderError, ProviderTimeoutError

logger = logging.getLogger(__name__)


def reconcile(vector: Sequence[float], target_dim: int) -> list[float]:
    """
    Truncates or zero-pads ``vector`` to ``target_dim``.

    Lossy on purpose: vectors from providers with different native sizes are made
    comparable under one metric without rescaling or projecting them.
    """
    if target_dim <= 0:
        raise ValueError("target_dim must be > 0")
    values = [float(v) for v in vector]
    if len(values) >= target_dim:
        return values[:target_dim]
    return values + [0.0] * (target_dim - len(values))


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    if len(a) != len(b):
        raise InputError("Embeddings must have same dimension")
    dot = sum(x * y for x, y in zip(a, b))
    norm_a = math.sqrt(sum(x * x for x in a))
    norm_b = math.sqrt(sum(y * y for y in b))
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return dot / (norm_a * norm_b)


class VectorProvider:
    """
    Embeds text through an ordered list of backends.

    The first backend is the default; the others are tried in order when it fails or
    times out. Every returned vector is reconciled to ``dimensions``.
    """

    def __init__(
        self,
        providers: Sequence[EmbeddingBackend],
        *,
        dimensions: int = 1536,
        timeout_s: float = 30.0,
        batch_timeout_s: float = 60.0,
    ):
        if not providers:
            raise ValueError("At least one embedding provider is required")
        if dimensions <= 0:
            raise ValueError("dimensions must be > 0")
        if timeout_s <= 0 or batch_timeout_s <= 0:
            raise ValueError("timeouts must be > 0")
        self._providers = list(providers)
        self.dimensions = dimensions
        self.timeout_s = timeout_s
        self.batch_timeout_s = batch_timeout_s

    @property
    def provider_names(self) -> list[str]:
        return [p.name for p in self._providers]

    def embed(self, text: str) -> list[float]:
        clean = (text or "").strip()
        if not clean:
            raise InputError("Cannot generate embedding for empty text")
        return self._with_fallback([clean], timeout_s=self.timeout_s)[0]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        cleaned = [(t or "").strip() for t in texts]
        empty = [i for i, t in enumerate(cleaned) if not t]
        if empty:
            raise InputError(
                f"Cannot generate embedding for empty text at positions {empty}",
                invalid=[str(i) for i in empty],
            )
        return self._with_fallback(cleaned, timeout_s=self.batch_timeout_s)

    def _with_fallback(self, texts: list[str], *, timeout_s: float) -> list[list[float]]:
        last_error: ProviderError | ProviderTimeoutError | None = None
        for position, provider in enumerate(self._providers):
            deadline = monotonic() + timeout_s
            try:
                vectors = provider.embed_texts(texts, deadline=deadline)
            except (ProviderError, ProviderTimeoutError) as e:
                last_error = e
                remaining = self._providers[position + 1 :]
                if remaining:
                    logger.warning(
                        "Embedding with %s failed (%s); falling back to %s",
                        provider.name,
                        e,
                        remaining[0].name,
                    )
                continue
            if len(vectors) != len(texts):
                last_error = ProviderError(
                    f"Embedding count mismatch: {len(vectors)} != {len(texts)}", provider=provider.name
                )
                continue
            if position > 0:
                logger.info("Embedded %d text(s) with fallback provider %s", len(texts), provider.name)
            return [reconcile(v, self.dimensions) for v in vectors]

        assert last_error is not None
        raise last_error


def build_vector_provider(settings: Settings) -> VectorProvider:
    available: dict[str, EmbeddingBackend] = {}
    if settings.openai_api_key:
        available["openai"] = EmbeddingClient(
            base_url=settings.openai_base_url,
            api_key=settings.openai_api_key,
            model=settings.openai_embedding_model,
            timeout_s=settings.embedding_batch_timeout_s,
        )
    if settings.gemini_api_key:
        available["gemini"] = GeminiEmbeddingClient(
            base_url=settings.gemini_base_url,
            api_key=settings.gemini_api_key,
            model=settings.gemini_embedding_model,
            timeout_s=settings.embedding_batch_timeout_s,
        )

    unknown = [name for name in settings.provider_order if name not in ("openai", "gemini")]
    if unknown:
        raise ValueError(f"Unknown embedding provider(s): {', '.join(unknown)}")

    ordered = [available[name] for name in settings.provider_order if name in available]
    if not ordered:
        raise ValueError(
            "No embedding provider configured. Please set OPENAI_API_KEY or GEMINI_API_KEY"
        )
    return VectorProvider(
        ordered,
        dimensions=settings.embedding_dimensions,
        timeout_s=settings.embedding_timeout_s,
        batch_timeout_s=settings.embedding_batch_timeout_s,
    )
