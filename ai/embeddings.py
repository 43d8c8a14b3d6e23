"""Query embedding for the catalog similarity search.

Two providers: the OpenAI embeddings endpoint (default) and a local
sentence-transformers model. Request-path calls never retry; the offline
batch helper retries with backoff. Queries must be embedded by the same
model the catalog snapshot was built with.
"""
from __future__ import annotations

import asyncio
import logging
from functools import lru_cache
from typing import Iterable, Protocol

import openai
from openai import AsyncOpenAI

# sentence-transformers is only needed for the local provider (the "local" extra)
try:
    from sentence_transformers import SentenceTransformer
    LOCAL_EMBEDDINGS_AVAILABLE = True
except ImportError:
    LOCAL_EMBEDDINGS_AVAILABLE = False
    SentenceTransformer = None

from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from intent.config import settings

logger = logging.getLogger(__name__)


class EmbeddingError(Exception):
    """Raised when the embedding API fails, times out, or returns bad data."""
    pass


class Embedder(Protocol):
    """Anything that turns query text into a vector."""

    async def embed(self, text: str) -> list[float]:
        ...

    async def embed_batch(self, texts: Iterable[str], *, batch_size: int | None = None) -> list[list[float]]:
        ...


def _check_texts(texts: Iterable[str]) -> list[str]:
    text_list = list(texts)
    if not all(isinstance(t, str) and t.strip() for t in text_list):
        raise ValueError("All texts must be non-empty strings")
    return text_list


def build_openai_client(*, max_retries: int = 0) -> AsyncOpenAI:
    """Create an async OpenAI client from settings.

    Args:
        max_retries: Client-level retries; zero keeps retry policy with the caller
    """
    api_key = settings.openai.api_key.get_secret_value() if settings.openai.api_key else None
    return AsyncOpenAI(
        api_key=api_key,
        base_url=settings.openai.base_url,
        organization=settings.openai.organization,
        max_retries=max_retries,
    )


class QueryEmbedder:
    """Turns raw query text into a fixed-length vector."""

    def __init__(
        self,
        client: AsyncOpenAI | None = None,
        *,
        model: str | None = None,
        timeout: float | None = None,
        dim: int | None = None,
    ) -> None:
        self._client = client
        self.model = model or settings.embeddings.model_name
        self.timeout = timeout or settings.embeddings.timeout_seconds
        self.dim = dim if dim is not None else settings.embeddings.dim

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            self._client = build_openai_client()
        return self._client

    async def _request(self, texts: list[str]) -> list[list[float]]:
        try:
            response = await asyncio.wait_for(
                self.client.embeddings.create(
                    model=self.model,
                    input=texts,
                    encoding_format="float",
                ),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingError(f"Embedding request timed out after {self.timeout}s") from e
        except openai.OpenAIError as e:
            raise EmbeddingError(f"Embedding request failed: {e}") from e

        data = sorted(response.data, key=lambda item: item.index)
        if len(data) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(data)}")

        vectors = [list(item.embedding) for item in data]
        for vector in vectors:
            if not vector:
                raise EmbeddingError("Embedding API returned an empty vector")
            if self.dim and len(vector) != self.dim:
                raise EmbeddingError(f"Embedding dimension {len(vector)} != configured {self.dim}")
        return vectors

    async def embed(self, text: str) -> list[float]:
        """Embed a single query.

        Args:
            text: Normalized, non-empty query text

        Returns:
            Embedding vector

        Raises:
            EmbeddingError: On API error, timeout, or malformed response
        """
        logger.debug(f"Embedding query of {len(text)} chars with {self.model}")
        vectors = await self._request([text])
        return vectors[0]

    @retry(
        retry=retry_if_exception_type(EmbeddingError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=2, max=10),
        reraise=True,
    )
    async def _request_with_retry(self, texts: list[str]) -> list[list[float]]:
        return await self._request(texts)

    async def embed_batch(self, texts: Iterable[str], *, batch_size: int | None = None) -> list[list[float]]:
        """Embed many texts in batches with retry logic (offline use).

        Args:
            texts: Texts to embed
            batch_size: Texts per request (default from config)

        Returns:
            One vector per input text, in input order

        Raises:
            EmbeddingError: If a batch still fails after retries
            ValueError: If any text is empty
        """
        text_list = _check_texts(texts)
        if not text_list:
            return []

        size = batch_size or settings.embeddings.batch_size
        vectors: list[list[float]] = []
        for start in range(0, len(text_list), size):
            batch = text_list[start:start + size]
            vectors.extend(await self._request_with_retry(batch))
            logger.info(f"Embedded {len(vectors)}/{len(text_list)} texts")
        return vectors


@lru_cache(maxsize=2)
def _load_model(model_name: str, device: str) -> SentenceTransformer:
    """Load and cache a sentence-transformers model.

    Raises:
        EmbeddingError: If the library is missing or the model cannot be loaded
    """
    if not LOCAL_EMBEDDINGS_AVAILABLE:
        raise EmbeddingError("sentence-transformers is not installed (pip install '.[local]')")

    try:
        logger.info(f"Loading embedding model: {model_name} on device: {device}")
        return SentenceTransformer(model_name, device=device)
    except Exception as e:
        logger.error(f"Failed to load embedding model: {e}")
        raise EmbeddingError(f"Model loading failed: {e}") from e


class LocalEmbedder:
    """Embeds text with a local sentence-transformers model.

    Encoding is CPU/GPU bound, so it runs in a worker thread to keep the
    event loop free.
    """

    def __init__(
        self,
        model: SentenceTransformer | None = None,
        *,
        model_name: str | None = None,
        device: str | None = None,
        normalize: bool | None = None,
        dim: int | None = None,
    ) -> None:
        self._model = model
        self.model_name = model_name or settings.embeddings.local_model_name
        self.device = device or settings.embeddings.device
        self.normalize = settings.embeddings.normalize_embeddings if normalize is None else normalize
        self.dim = dim if dim is not None else settings.embeddings.dim

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            self._model = _load_model(self.model_name, self.device)
        return self._model

    def _encode(self, texts: list[str], batch_size: int) -> list[list[float]]:
        try:
            embeddings = self.model.encode(
                texts,
                batch_size=batch_size,
                show_progress_bar=False,
                convert_to_numpy=True,
                normalize_embeddings=self.normalize,
            )
        except EmbeddingError:
            raise
        except Exception as e:
            logger.error(f"Embedding computation failed: {e}")
            raise EmbeddingError(f"Failed to compute embeddings: {e}") from e

        vectors = [list(map(float, row)) for row in embeddings]
        if len(vectors) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        if self.dim and any(len(v) != self.dim for v in vectors):
            raise EmbeddingError(f"Embedding dimension {len(vectors[0])} != configured {self.dim}")
        return vectors

    async def embed(self, text: str) -> list[float]:
        """Embed a single query.

        Raises:
            EmbeddingError: If the model is unavailable or encoding fails
        """
        vectors = await asyncio.to_thread(self._encode, [text], 1)
        return vectors[0]

    async def embed_batch(self, texts: Iterable[str], *, batch_size: int | None = None) -> list[list[float]]:
        """Embed many texts (offline use)."""
        text_list = _check_texts(texts)
        if not text_list:
            return []
        size = batch_size or settings.embeddings.batch_size
        vectors = await asyncio.to_thread(self._encode, text_list, size)
        logger.info(f"Embedded {len(vectors)} texts with {self.model_name}")
        return vectors


def build_embedder() -> Embedder:
    """Embedder for the configured provider."""
    if settings.embeddings.provider == "local":
        return LocalEmbedder()
    return QueryEmbedder()
