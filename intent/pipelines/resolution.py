"""Intent resolution pipeline: embed → rank → constrained extraction.

Implements the three caller-facing entry points (text, image, document text)
plus the chat assistant and recommendation flows. Every call is
independent; the only shared state is the read-only catalog.

Failure policy:
- invalid input is rejected before any external call (InvalidInputError)
- embedding failure or timeout ends in an empty, retriable result
- an empty candidate list skips extraction and returns a "no match" result
- extraction failure or timeout ends in an empty, degraded result
"""
from __future__ import annotations

import asyncio
import dataclasses
import io
import logging
import time
from enum import Enum
from functools import lru_cache
from typing import Any, Sequence

from ai.embeddings import Embedder, EmbeddingError, build_embedder
from ai.extraction import (
    CHAT_FALLBACK_REPLY,
    ConstrainedExtractor,
    ExtractionVariant,
    ParseSuccess,
    parse_model_output,
)
from ai.generation import GenerationError, GenerativeClient
from intent.catalog import CatalogStore, get_catalog
from intent.config import Settings, settings as default_settings
from intent.models import (
    NO_MATCH_SUMMARY,
    Candidate,
    ConversationReply,
    Recommendation,
    ResolutionResult,
    ResolutionStatus,
)
from intent.parsers import ParseError, combine_documents, extract_pdf_text, prepare_image, sniff_image_type
from intent.pipelines.normalization import normalize_query
from intent.ranking import ExactRanker, Ranker

logger = logging.getLogger(__name__)

CHAT_ROLES = {"user", "assistant"}


class InvalidInputError(ValueError):
    """Raised when a query is empty or malformed; the caller must fix the input."""
    pass


class ResolverState(str, Enum):
    """Stages of one resolution call."""
    EMBEDDING = "embedding"
    RANKING = "ranking"
    EXTRACTING = "extracting"
    DONE = "done"
    ERRORED = "errored"


def image_query_text(description_output: str) -> str:
    """Query text built from the vision model's description of a photo."""
    parsed = parse_model_output(description_output)
    if not isinstance(parsed, ParseSuccess):
        return description_output.strip()

    payload = parsed.payload
    parts: list[str] = []
    description = payload.get("description")
    if isinstance(description, str) and description.strip():
        parts.append(description.strip())
    work = payload.get("work")
    if isinstance(work, list):
        tasks = [w.strip() for w in work if isinstance(w, str) and w.strip()]
        if tasks:
            parts.append("Work needed: " + "; ".join(tasks) + ".")
    quantities = payload.get("quantities")
    if isinstance(quantities, dict) and quantities:
        parts.append("Quantities: " + ", ".join(f"{k}: {v}" for k, v in quantities.items()) + ".")
    recommendation = payload.get("recommendation")
    if isinstance(recommendation, str) and recommendation.strip():
        parts.append(recommendation.strip())
    return " ".join(parts)


class IntentResolver:
    """Sequences embedder, ranker, and extractor for one query at a time.

    Holds no mutable state; one instance serves any number of concurrent
    calls.
    """

    def __init__(
        self,
        catalog: CatalogStore,
        embedder: Embedder,
        extractor: ConstrainedExtractor,
        *,
        ranker: Ranker | None = None,
        describer: GenerativeClient | None = None,
        config: Settings | None = None,
    ) -> None:
        self.catalog = catalog
        self.embedder = embedder
        self.extractor = extractor
        self.ranker = ranker or ExactRanker()
        self.describer = describer or extractor.generator
        self.config = config or default_settings

    # -- validation --------------------------------------------------------

    def _validate_text(self, text: Any, *, what: str = "text") -> str:
        if not isinstance(text, str):
            raise InvalidInputError(f"Query {what} must be a string, got {type(text).__name__}")
        normalized = normalize_query(text, max_chars=self.config.resolver.max_input_chars)
        if not normalized:
            raise InvalidInputError(f"Query {what} is empty")
        return normalized

    def _validate_image(self, image_bytes: Any, mime_type: str | None) -> str:
        if not isinstance(image_bytes, (bytes, bytearray)) or not image_bytes:
            raise InvalidInputError("Image is empty")
        if len(image_bytes) > self.config.resolver.max_image_bytes:
            raise InvalidInputError(
                f"Image is too large ({len(image_bytes)} bytes, max {self.config.resolver.max_image_bytes})"
            )
        allowed = self.config.resolver.allowed_image_types
        declared = (mime_type or "").split(";")[0].strip().lower()
        if declared in allowed:
            return declared
        sniffed = sniff_image_type(bytes(image_bytes))
        if sniffed in allowed:
            return sniffed
        raise InvalidInputError(f"Unsupported image type: {mime_type or 'unknown'}")

    def _validate_messages(self, messages: Any) -> list[dict[str, str]]:
        if not isinstance(messages, (list, tuple)) or not messages:
            raise InvalidInputError("Messages must be a non-empty list")
        if len(messages) > self.config.resolver.max_chat_messages:
            raise InvalidInputError(f"Too many messages (max {self.config.resolver.max_chat_messages})")

        cleaned: list[dict[str, str]] = []
        for idx, message in enumerate(messages):
            if not isinstance(message, dict):
                raise InvalidInputError(f"Message {idx} must be an object")
            role, content = message.get("role"), message.get("content")
            if role not in CHAT_ROLES or not isinstance(content, str):
                raise InvalidInputError(f"Message {idx} needs a role in {sorted(CHAT_ROLES)} and string content")
            cleaned.append({"role": role, "content": content})

        if not any(m["role"] == "user" and m["content"].strip() for m in cleaned):
            raise InvalidInputError("Conversation has no user message")
        return cleaned

    # -- pipeline stages ---------------------------------------------------

    def _transition(self, state: ResolverState, variant: ExtractionVariant) -> ResolverState:
        logger.debug(f"[{variant.value}] -> {state.value}")
        return state

    async def _embed(self, query_text: str) -> list[float]:
        try:
            return await asyncio.wait_for(
                self.embedder.embed(query_text),
                timeout=self.config.embeddings.timeout_seconds,
            )
        except asyncio.TimeoutError as e:
            raise EmbeddingError(
                f"Embedding timed out after {self.config.embeddings.timeout_seconds}s"
            ) from e

    def _rank(self, vector: Sequence[float], k: int) -> list[Candidate]:
        return self.ranker.rank(vector, self.catalog, k, min_score=self.config.retrieval.min_score)

    async def _retrieve(self, query_text: str, k: int, variant: ExtractionVariant) -> list[Candidate]:
        """Embedding and ranking stages.

        Raises:
            EmbeddingError: If the query vector cannot be obtained or does not
                fit the catalog
        """
        self._transition(ResolverState.EMBEDDING, variant)
        vector = await self._embed(query_text)

        self._transition(ResolverState.RANKING, variant)
        try:
            return self._rank(vector, k)
        except ValueError as e:
            raise EmbeddingError(f"Query vector rejected by ranker: {e}") from e

    async def _resolve(self, query_text: str, variant: ExtractionVariant, k: int) -> ResolutionResult:
        started = time.perf_counter()
        try:
            candidates = await self._retrieve(query_text, k, variant)
        except EmbeddingError as e:
            self._transition(ResolverState.ERRORED, variant)
            logger.warning(f"[{variant.value}] embedding failed: {e}")
            return ResolutionResult.empty(ResolutionStatus.EMBEDDING_FAILED, retriable=True)

        if not candidates:
            self._transition(ResolverState.DONE, variant)
            logger.info(f"[{variant.value}] no candidates, skipping extraction")
            return ResolutionResult.empty(ResolutionStatus.NO_MATCH, summary=NO_MATCH_SUMMARY)

        self._transition(ResolverState.EXTRACTING, variant)
        try:
            result = await asyncio.wait_for(
                self.extractor.extract(query_text, candidates, variant),
                timeout=self.config.generation.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[{variant.value}] extraction timed out, returning empty result")
            result = ResolutionResult.empty(ResolutionStatus.DEGRADED, candidates=tuple(candidates))

        self._transition(ResolverState.DONE, variant)
        logger.info(
            f"[{variant.value}] resolved {len(result.items)} items from {len(candidates)} candidates "
            f"in {time.perf_counter() - started:.3f}s ({result.status.value})"
        )
        return result

    # -- entry points ------------------------------------------------------

    async def resolve_from_text(self, text: str) -> ResolutionResult:
        """Resolve a free-text project description.

        Raises:
            InvalidInputError: If the text is empty or not a string
        """
        query = self._validate_text(text)
        return await self._resolve(query, ExtractionVariant.TEXT, self.config.retrieval.text_top_k)

    async def resolve_from_document_text(self, text: str) -> ResolutionResult:
        """Resolve concatenated text of one or more PDF documents.

        Raises:
            InvalidInputError: If the text is empty or not a string
        """
        query = self._validate_text(text, what="document text")
        return await self._resolve(query, ExtractionVariant.DOCUMENT, self.config.retrieval.document_top_k)

    async def resolve_from_documents(self, files: Sequence[tuple[str, bytes]]) -> ResolutionResult:
        """Extract text from uploaded PDFs, then resolve it as one document.

        Args:
            files: (filename, content) pairs

        Raises:
            InvalidInputError: If no file is given or a PDF has no readable text
        """
        if not files:
            raise InvalidInputError("No PDF files provided")

        documents = []
        for filename, content in files:
            if not content:
                raise InvalidInputError(f"File {filename} is empty")
            try:
                documents.append(extract_pdf_text(io.BytesIO(content), filename))
            except ParseError as e:
                raise InvalidInputError(str(e)) from e

        return await self.resolve_from_document_text(combine_documents(documents))

    async def resolve_from_image(self, image_bytes: bytes, mime_type: str) -> ResolutionResult:
        """Resolve a photo: describe it, then rank and extract against the description.

        Raises:
            InvalidInputError: If the image is empty, too large, unsupported,
                or unreadable
        """
        declared = self._validate_image(image_bytes, mime_type)
        try:
            prepared = prepare_image(bytes(image_bytes), declared)
        except ParseError as e:
            raise InvalidInputError(str(e)) from e

        try:
            description_output = await asyncio.wait_for(
                self.describer.describe_image(prepared.content, prepared.mime_type),
                timeout=self.config.generation.timeout_seconds,
            )
        except (GenerationError, asyncio.TimeoutError) as e:
            logger.warning(f"Image description failed, returning empty result: {e!r}")
            return ResolutionResult.empty(ResolutionStatus.DEGRADED)

        query = normalize_query(
            image_query_text(description_output),
            max_chars=self.config.resolver.max_input_chars,
        )
        if not query:
            logger.warning(f"Image description unusable: {description_output[:300]!r}")
            return ResolutionResult.empty(ResolutionStatus.DEGRADED, raw_output=description_output)

        return await self._resolve(query, ExtractionVariant.IMAGE, self.config.retrieval.image_top_k)

    async def resolve_conversation(
        self,
        messages: Sequence[dict[str, str]],
        *,
        emergency: bool = False,
    ) -> ConversationReply:
        """Chat assistant turn: services are looked up from the last user message.

        Raises:
            InvalidInputError: If the conversation is malformed
        """
        cleaned = self._validate_messages(messages)
        last_user = next(m["content"] for m in reversed(cleaned) if m["role"] == "user" and m["content"].strip())
        query = normalize_query(last_user, max_chars=self.config.resolver.max_input_chars)

        embedding_failed = False
        candidates: list[Candidate] = []
        try:
            candidates = await self._retrieve(query, self.config.retrieval.chat_top_k, ExtractionVariant.CHAT)
        except EmbeddingError as e:
            logger.warning(f"[chat] embedding failed, answering without services: {e}")
            embedding_failed = True

        try:
            reply = await asyncio.wait_for(
                self.extractor.extract_conversation(cleaned, candidates, emergency=emergency),
                timeout=self.config.generation.timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("[chat] generation timed out")
            reply = ConversationReply(
                reply=CHAT_FALLBACK_REPLY,
                result=ResolutionResult.empty(ResolutionStatus.DEGRADED, candidates=tuple(candidates)),
            )

        if embedding_failed:
            reply = dataclasses.replace(
                reply,
                result=dataclasses.replace(
                    reply.result,
                    status=ResolutionStatus.EMBEDDING_FAILED,
                    retriable=True,
                ),
            )
        return reply

    async def recommend(self, text: str, k: int | None = None) -> Recommendation:
        """Short advice for a project description plus the services it was based on.

        No structured extraction happens here; the ranked services are
        returned as they came out of the ranker.

        Raises:
            InvalidInputError: If the text is empty or not a string
        """
        query = self._validate_text(text)
        try:
            candidates = await self._retrieve(query, k or self.config.retrieval.search_top_k, ExtractionVariant.TEXT)
        except EmbeddingError as e:
            logger.warning(f"[recommend] embedding failed: {e}")
            return Recommendation(text="", status=ResolutionStatus.EMBEDDING_FAILED, retriable=True)

        if not candidates:
            return Recommendation(text=NO_MATCH_SUMMARY, status=ResolutionStatus.NO_MATCH)

        try:
            advice = await asyncio.wait_for(
                self.extractor.recommend(query, candidates),
                timeout=self.config.generation.timeout_seconds,
            )
        except (GenerationError, asyncio.TimeoutError) as e:
            logger.warning(f"[recommend] generation failed: {e!r}")
            return Recommendation(text="", candidates=tuple(candidates), status=ResolutionStatus.DEGRADED)

        return Recommendation(text=advice, candidates=tuple(candidates))

    async def search(self, text: str, k: int | None = None) -> list[Candidate]:
        """Raw vector search, no extraction.

        Raises:
            InvalidInputError: If the text is empty
            EmbeddingError: If the embedding call fails
        """
        query = self._validate_text(text)
        return await self._retrieve(query, k or self.config.retrieval.search_top_k, ExtractionVariant.TEXT)


@lru_cache(maxsize=1)
def get_resolver() -> IntentResolver:
    """Default resolver wired from settings and the process-wide catalog."""
    catalog = get_catalog()
    generator = GenerativeClient()
    return IntentResolver(
        catalog=catalog,
        embedder=build_embedder(),
        extractor=ConstrainedExtractor(generator, catalog),
        describer=generator,
    )
