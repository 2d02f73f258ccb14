from __future__ import annotations

from dataclasses import dataclass, field
from time import monotonic, sleep
from typing import Any, Protocol

import httpx

from kb_rag_core.errors import ProviderError, ProviderTimeoutError


class EmbeddingBackend(Protocol):
    """One external embedding service producing native-dimension vectors."""

    name: str

    def embed_texts(self, texts: list[str], *, deadline: float | None = None) -> list[list[float]]: ...


def _error_detail(resp: httpx.Response) -> str:
    try:
        payload = resp.json()
    except ValueError:
        return resp.text[:200]
    err = payload.get("error") if isinstance(payload, dict) else None
    if isinstance(err, dict) and err.get("message"):
        return str(err["message"])
    return resp.text[:200]


@dataclass(frozen=True)
class _HttpEmbeddingClient:
    base_url: str
    api_key: str | None = None
    model: str = "default"
    name: str = "http"
    max_batch_texts: int = 16
    max_batch_chars: int = 12_000
    timeout_s: float = 120.0
    max_retries: int = 0
    retry_backoff_s: float = 1.0
    transport: httpx.BaseTransport | None = field(default=None, repr=False, compare=False)

    def _batch(self, texts: list[str]) -> list[list[str]]:
        if self.max_batch_texts <= 0:
            raise ValueError("max_batch_texts must be > 0")
        if self.max_batch_chars <= 0:
            raise ValueError("max_batch_chars must be > 0")
        if self.timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.retry_backoff_s < 0:
            raise ValueError("retry_backoff_s must be >= 0")

        batches: list[list[str]] = []
        cur: list[str] = []
        cur_chars = 0

        for t in texts:
            t = t or ""
            t_chars = len(t)
            would_exceed = cur and (
                (len(cur) + 1 > self.max_batch_texts) or (cur_chars + t_chars > self.max_batch_chars)
            )
            if would_exceed:
                batches.append(cur)
                cur = []
                cur_chars = 0
            cur.append(t)
            cur_chars += t_chars

        if cur:
            batches.append(cur)

        return batches

    def _remaining(self, deadline: float | None) -> float:
        if deadline is None:
            return self.timeout_s
        remaining = deadline - monotonic()
        if remaining <= 0:
            raise ProviderTimeoutError(
                f"Embedding deadline exceeded before calling {self.name}", provider=self.name
            )
        return min(remaining, self.timeout_s)

    def _headers(self) -> dict[str, str]:
        return {}

    def _post(
        self,
        client: httpx.Client,
        url: str,
        body: dict[str, Any],
        *,
        deadline: float | None,
    ) -> httpx.Response:
        attempt = 0
        while True:
            timeout = self._remaining(deadline)
            try:
                resp = client.post(url, headers=self._headers(), json=body, timeout=timeout)
                resp.raise_for_status()
                return resp
            except httpx.TimeoutException as e:
                raise ProviderTimeoutError(
                    f"{self.name} embedding request timed out after {timeout:.1f}s",
                    provider=self.name,
                    timeout_s=timeout,
                ) from e
            except httpx.TransportError as e:
                if attempt >= self.max_retries:
                    raise ProviderError(
                        f"{self.name} embedding request failed: {e}", provider=self.name
                    ) from e
                sleep(self.retry_backoff_s * (2**attempt))
                attempt += 1

    def _embed_batch(self, client: httpx.Client, batch: list[str], *, deadline: float | None) -> list[list[float]]:
        raise NotImplementedError

    def embed_texts(self, texts: list[str], *, deadline: float | None = None) -> list[list[float]]:
        if not texts:
            return []

        embeddings: list[list[float]] = []
        with httpx.Client(transport=self.transport) as client:
            for batch in self._batch(texts):
                embeddings.extend(self._embed_batch(client, batch, deadline=deadline))

        if len(embeddings) != len(texts):
            raise ProviderError(
                f"Embedding count mismatch: {len(embeddings)} != {len(texts)}", provider=self.name
            )
        return embeddings


@dataclass(frozen=True)
class EmbeddingClient(_HttpEmbeddingClient):
    """OpenAI-compatible ``/v1/embeddings`` backend (text-embedding-3-small is 1536-d)."""

    model: str = "text-embedding-3-small"
    name: str = "openai"
    max_batch_texts: int = 2048
    max_batch_chars: int = 1_000_000

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}

    def _embed_batch(self, client: httpx.Client, batch: list[str], *, deadline: float | None) -> list[list[float]]:
        url = self.base_url.rstrip("/") + "/v1/embeddings"
        try:
            resp = self._post(
                client,
                url,
                {"model": self.model, "input": batch, "encoding_format": "float"},
                deadline=deadline,
            )
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 413:
                if len(batch) == 1:
                    raise ProviderError(
                        "Embedding request too large (413) for a single chunk. "
                        "Reduce CHUNK_MAX_TOKENS or decrease per-chunk size.",
                        provider=self.name,
                    ) from e
                mid = len(batch) // 2
                return self._embed_batch(client, batch[:mid], deadline=deadline) + self._embed_batch(
                    client, batch[mid:], deadline=deadline
                )
            raise ProviderError(
                f"{self.name} returned HTTP {e.response.status_code}: {_error_detail(e.response)}",
                provider=self.name,
            ) from e

        payload = resp.json()
        data = payload.get("data") if isinstance(payload, dict) else None
        if not isinstance(data, list):
            raise ProviderError("Unexpected embeddings response shape", provider=self.name)
        # Results carry their input position; don't rely on response order.
        ordered = sorted(data, key=lambda item: item.get("index", 0))
        return [item["embedding"] for item in ordered]


@dataclass(frozen=True)
class GeminiEmbeddingClient(_HttpEmbeddingClient):
    """Gemini ``embedContent``/``batchEmbedContents`` backend (text-embedding-004 is 768-d)."""

    base_url: str = "https://generativelanguage.googleapis.com"
    model: str = "text-embedding-004"
    name: str = "gemini"
    max_batch_texts: int = 100
    max_batch_chars: int = 1_000_000

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"x-goog-api-key": self.api_key}

    def _model_path(self) -> str:
        return f"models/{self.model}"

    def _embed_batch(self, client: httpx.Client, batch: list[str], *, deadline: float | None) -> list[list[float]]:
        base = self.base_url.rstrip("/") + f"/v1beta/{self._model_path()}"
        single = len(batch) == 1
        if single:
            url = base + ":embedContent"
            body: dict[str, Any] = {
                "model": self._model_path(),
                "content": {"parts": [{"text": batch[0]}]},
            }
        else:
            url = base + ":batchEmbedContents"
            body = {
                "requests": [
                    {"model": self._model_path(), "content": {"parts": [{"text": t}]}} for t in batch
                ]
            }

        try:
            resp = self._post(client, url, body, deadline=deadline)
        except httpx.HTTPStatusError as e:
            raise ProviderError(
                f"{self.name} returned HTTP {e.response.status_code}: {_error_detail(e.response)}",
                provider=self.name,
            ) from e

        payload = resp.json()
        if not isinstance(payload, dict):
            raise ProviderError("Unexpected Gemini response shape", provider=self.name)
        feedback = payload.get("promptFeedback") or {}
        block_reason = feedback.get("blockReason") if isinstance(feedback, dict) else None
        if block_reason:
            raise ProviderError(
                f"{self.name} blocked the request: {block_reason}",
                provider=self.name,
                reason=str(block_reason),
            )

        if single:
            embedding = payload.get("embedding") or {}
            values = embedding.get("values") if isinstance(embedding, dict) else None
            if not isinstance(values, list):
                raise ProviderError("Unexpected Gemini embedContent response shape", provider=self.name)
            return [values]

        embeddings = payload.get("embeddings")
        if not isinstance(embeddings, list):
            raise ProviderError("Unexpected Gemini batchEmbedContents response shape", provider=self.name)
        return [item.get("values") or [] for item in embeddings]
