"""FastAPI app exposing the intent resolution entry points.

Thin adapter over IntentResolver: request validation, multipart handling,
and error mapping. Resolution outcomes, including degraded ones, are always
returned as 200 with a well-formed body.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Literal

from fastapi import Depends, FastAPI, File, HTTPException, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ai.embeddings import EmbeddingError

from .catalog import CatalogLoadError, get_catalog
from .config import settings
from .logging_config import setup_logging
from .models import ResolutionResult
from .parsers import FileType, ParseError, detect_file_type
from .pipelines.resolution import IntentResolver, InvalidInputError, get_resolver

logger = logging.getLogger(__name__)


# Pydantic request/response models
class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    catalog_version: str | None = None
    catalog_entries: int = 0


class ErrorResponse(BaseModel):
    """Error response."""
    error: str
    detail: str | None = None


class ResolveTextRequest(BaseModel):
    """Free-text resolution request."""
    text: str = Field(max_length=50000)


class ResolveDocumentTextRequest(BaseModel):
    """Already-extracted document text."""
    text: str = Field(max_length=500000)


class ChatMessage(BaseModel):
    """One conversation turn."""
    role: Literal["user", "assistant"]
    content: str


class ChatRequest(BaseModel):
    """Chat assistant request."""
    messages: list[ChatMessage] = Field(min_length=1)
    emergency: bool = False


class ResolutionItemDTO(BaseModel):
    """Selected catalog service."""
    id: str
    title: str
    description: str
    estimatedQuantity: float
    price: float | None = None


class ResolutionResponse(BaseModel):
    """Resolution result."""
    items: list[ResolutionItemDTO] = Field(default_factory=list)
    summary: str = ""
    notes: str = ""
    status: str
    retriable: bool = False


class ChatResponse(BaseModel):
    """Assistant reply with recommended services."""
    role: str = "assistant"
    content: str
    services: ResolutionResponse


class SearchRequest(BaseModel):
    """Raw vector search request."""
    text: str = Field(max_length=50000)
    k: int | None = Field(default=None, ge=1, le=100)


class CandidateDTO(BaseModel):
    """Ranked catalog entry."""
    id: str
    title: str
    score: float


class SearchResponse(BaseModel):
    """Raw vector search response."""
    results: list[CandidateDTO]


class RecommendResponse(BaseModel):
    """Short recommendation with the ranked services behind it."""
    recommendation: str
    services: list[CandidateDTO] = Field(default_factory=list)
    status: str
    retriable: bool = False


def _to_response(result: ResolutionResult) -> ResolutionResponse:
    return ResolutionResponse.model_validate(result.to_dict())


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup/shutdown logic."""
    # Startup
    setup_logging()
    logger.info("Application starting up")

    # A broken snapshot must stop the process before it serves traffic
    catalog = get_catalog()
    logger.info(f"Catalog ready: {catalog!r}")

    yield

    # Shutdown
    logger.info("Application shutting down")


app = FastAPI(
    title="Service Intent Engine",
    version=settings.version,
    description="Resolve free text, photos, and PDFs into catalog services",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://localhost:3001"],  # Frontend URLs
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Exception handlers
@app.exception_handler(InvalidInputError)
async def invalid_input_handler(request, exc: InvalidInputError):
    """Input the caller must fix."""
    logger.info(f"Invalid input: {exc}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error="invalid_input", detail=str(exc)).model_dump(),
    )


@app.exception_handler(ParseError)
async def parse_error_handler(request, exc: ParseError):
    """Handle document parsing errors."""
    logger.info(f"Parse error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=ErrorResponse(error="parse_error", detail=str(exc)).model_dump(),
    )


@app.exception_handler(CatalogLoadError)
async def catalog_error_handler(request, exc: CatalogLoadError):
    """Catalog unavailable; the process should not be serving."""
    logger.error(f"Catalog error: {exc}")
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content=ErrorResponse(error="catalog_unavailable", detail=str(exc)).model_dump(),
    )


@app.get("/health", response_model=HealthResponse)
async def health() -> HealthResponse:
    """Health check endpoint."""
    try:
        catalog = get_catalog()
    except CatalogLoadError:
        return HealthResponse(status="catalog_unavailable", version=settings.version)

    return HealthResponse(
        status="ok",
        version=settings.version,
        catalog_version=catalog.version,
        catalog_entries=len(catalog),
    )


@app.post("/resolve/text", response_model=ResolutionResponse)
async def resolve_text(
    request: ResolveTextRequest,
    resolver: IntentResolver = Depends(get_resolver),
) -> ResolutionResponse:
    """Resolve a free-text project description into catalog services."""
    result = await resolver.resolve_from_text(request.text)
    return _to_response(result)


@app.post("/resolve/document-text", response_model=ResolutionResponse)
async def resolve_document_text(
    request: ResolveDocumentTextRequest,
    resolver: IntentResolver = Depends(get_resolver),
) -> ResolutionResponse:
    """Resolve text already extracted from documents."""
    result = await resolver.resolve_from_document_text(request.text)
    return _to_response(result)


@app.post("/resolve/documents", response_model=ResolutionResponse)
async def resolve_documents(
    files: list[UploadFile] = File(..., description="One or more PDF files"),
    resolver: IntentResolver = Depends(get_resolver),
) -> ResolutionResponse:
    """Resolve the concatenated text of uploaded PDFs."""
    payload: list[tuple[str, bytes]] = []
    try:
        for upload in files:
            filename = upload.filename or "document.pdf"
            content = await upload.read()
            if detect_file_type(filename, content) != FileType.PDF:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Unsupported file type for {filename}. Allowed: .pdf",
                )
            payload.append((filename, content))
    finally:
        for upload in files:
            await upload.close()

    logger.info(f"Received {len(payload)} PDF files")
    result = await resolver.resolve_from_documents(payload)
    return _to_response(result)


@app.post("/resolve/image", response_model=ResolutionResponse)
async def resolve_image(
    file: UploadFile = File(..., description="Photo (JPEG, PNG, WebP, GIF)"),
    resolver: IntentResolver = Depends(get_resolver),
) -> ResolutionResponse:
    """Resolve a photo into catalog services."""
    try:
        content = await file.read()
    finally:
        await file.close()

    logger.info(f"Received image upload: {file.filename} ({file.content_type}, {len(content)} bytes)")
    result = await resolver.resolve_from_image(content, file.content_type or "")
    return _to_response(result)


@app.post("/resolve/chat", response_model=ChatResponse)
async def resolve_chat(
    request: ChatRequest,
    resolver: IntentResolver = Depends(get_resolver),
) -> ChatResponse:
    """Chat assistant turn with whitelisted service recommendations."""
    reply = await resolver.resolve_conversation(
        [m.model_dump() for m in request.messages],
        emergency=request.emergency,
    )
    return ChatResponse(content=reply.reply, services=_to_response(reply.result))


@app.post("/recommend", response_model=RecommendResponse)
async def recommend(
    request: SearchRequest,
    resolver: IntentResolver = Depends(get_resolver),
) -> RecommendResponse:
    """1-2 sentence recommendation for a project description."""
    result = await resolver.recommend(request.text, request.k)
    return RecommendResponse.model_validate(result.to_dict())


@app.post("/vector-search", response_model=SearchResponse)
async def vector_search(
    request: SearchRequest,
    resolver: IntentResolver = Depends(get_resolver),
) -> SearchResponse:
    """Top catalog matches for a text, without extraction."""
    try:
        candidates = await resolver.search(request.text, request.k)
    except EmbeddingError as e:
        logger.warning(f"Vector search failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Embedding service unavailable, try again later",
        )

    return SearchResponse(
        results=[CandidateDTO(id=c.id, title=c.title, score=c.score) for c in candidates]
    )


@app.get("/")
async def root():
    """Root endpoint with API info."""
    return {
        "app": settings.app_name,
        "version": settings.version,
        "endpoints": {
            "health": "/health",
            "resolve_text": "/resolve/text",
            "resolve_document_text": "/resolve/document-text",
            "resolve_documents": "/resolve/documents",
            "resolve_image": "/resolve/image",
            "resolve_chat": "/resolve/chat",
            "vector_search": "/vector-search",
            "recommend": "/recommend",
            "docs": "/docs",
        },
    }
