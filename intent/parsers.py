"""PDF text extraction and image preprocessing for the resolution entry points.

PDFs go through pdfplumber with a pypdf fallback; photos are re-encoded as
small JPEGs before they reach the vision model.
"""
from __future__ import annotations

import io
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import BinaryIO, Sequence

import pdfplumber
from PIL import Image, ImageOps, UnidentifiedImageError
from pypdf import PdfReader

from .config import settings

logger = logging.getLogger(__name__)


class FileType(str, Enum):
    """Supported upload types."""
    PDF = "pdf"
    IMAGE = "image"
    UNKNOWN = "unknown"


class ParseError(Exception):
    """Raised when an uploaded document or image cannot be read."""
    pass


@dataclass
class ParsedDocument:
    """Text extracted from one PDF."""
    filename: str
    text: str
    page_count: int
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class PreparedImage:
    """Image re-encoded for the vision model."""
    content: bytes
    mime_type: str
    width: int
    height: int


_IMAGE_MAGIC = (
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"\x89PNG\r\n\x1a\n", "image/png"),
    (b"GIF87a", "image/gif"),
    (b"GIF89a", "image/gif"),
)


def detect_file_type(filename: str, content: bytes | None = None) -> FileType:
    """Detect upload type from filename, then from magic numbers."""
    filename_lower = (filename or "").lower()

    if filename_lower.endswith(".pdf"):
        return FileType.PDF
    if filename_lower.endswith((".jpg", ".jpeg", ".png", ".webp", ".gif")):
        return FileType.IMAGE

    if content:
        if content.startswith(b"%PDF"):
            return FileType.PDF
        if sniff_image_type(content):
            return FileType.IMAGE

    return FileType.UNKNOWN


def sniff_image_type(content: bytes) -> str | None:
    """Mime type from image magic bytes, if recognised."""
    for magic, mime in _IMAGE_MAGIC:
        if content.startswith(magic):
            return mime
    if content[:4] == b"RIFF" and content[8:12] == b"WEBP":
        return "image/webp"
    return None


def _extract_with_pdfplumber(file_obj: BinaryIO) -> tuple[str, int]:
    with pdfplumber.open(file_obj) as pdf:
        pages = [(page.extract_text() or "").strip() for page in pdf.pages]
    return "\n\n".join(p for p in pages if p), len(pages)


def _extract_with_pypdf(file_obj: BinaryIO) -> tuple[str, int]:
    reader = PdfReader(file_obj)
    pages = [(page.extract_text() or "").strip() for page in reader.pages]
    return "\n\n".join(p for p in pages if p), len(pages)


def extract_pdf_text(file_obj: BinaryIO, filename: str) -> ParsedDocument:
    """Extract the text layer of a PDF.

    Args:
        file_obj: Binary file object positioned at the start
        filename: Original filename

    Returns:
        ParsedDocument with page text joined by blank lines

    Raises:
        ParseError: If neither extractor yields any text
    """
    method = "pdfplumber"
    try:
        text, page_count = _extract_with_pdfplumber(file_obj)
    except Exception as e:
        logger.warning(f"pdfplumber extraction failed for {filename}: {e}, trying pypdf")
        text, page_count = "", 0

    if not text.strip():
        method = "pypdf"
        try:
            file_obj.seek(0)
            text, page_count = _extract_with_pypdf(file_obj)
        except Exception as e:
            logger.error(f"pypdf extraction also failed for {filename}: {e}")
            raise ParseError(f"Failed to read PDF {filename}: {e}") from e

    if not text.strip():
        raise ParseError(f"No text could be extracted from {filename}")

    logger.info(f"Extracted {len(text)} chars from {page_count} pages of {filename} ({method})")
    return ParsedDocument(
        filename=filename,
        text=text,
        page_count=page_count,
        metadata={"method": method},
    )


def combine_documents(documents: Sequence[ParsedDocument]) -> str:
    """Concatenate several PDFs into one query text, each under its name."""
    return "\n\n".join(f"PDF name: {doc.filename}\n{doc.text.strip()}" for doc in documents)


def prepare_image(content: bytes, mime_type: str | None = None) -> PreparedImage:
    """Shrink and re-encode an uploaded photo as JPEG.

    Args:
        content: Raw image bytes
        mime_type: Declared mime type (informational; the bytes decide)

    Returns:
        PreparedImage no larger than ``settings.image.max_side`` on either side

    Raises:
        ParseError: If the bytes are not a readable image
    """
    if not content:
        raise ParseError("Image is empty")

    try:
        with Image.open(io.BytesIO(content)) as img:
            img = ImageOps.exif_transpose(img)
            if img.mode != "RGB":
                img = img.convert("RGB")
            max_side = settings.image.max_side
            img.thumbnail((max_side, max_side))

            out = io.BytesIO()
            img.save(out, format="JPEG", quality=settings.image.jpeg_quality)
            width, height = img.size
    except (UnidentifiedImageError, OSError) as e:
        raise ParseError(f"Unreadable image ({mime_type or 'unknown type'}): {e}") from e

    logger.debug(f"Prepared image {width}x{height}, {len(out.getvalue())} bytes")
    return PreparedImage(content=out.getvalue(), mime_type="image/jpeg", width=width, height=height)
